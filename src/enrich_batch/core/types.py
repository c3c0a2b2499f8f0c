"""Core data types that flow through the enrichment pipeline.

Items enter the engine, are grouped into Chunks, travel to the completion
service as payloads, come back as RawResponses and leave as Results. All of
them are immutable so concurrent tasks can share them freely.
"""

from __future__ import annotations

import dataclasses
import enum
import typing


def _require(*, condition: bool, message: str, field_name: str | None = None) -> None:
    if not condition:
        if field_name:
            raise ValueError(f"{field_name}: {message}")
        raise ValueError(message)


# --- Result Monad ---


@dataclasses.dataclass(frozen=True, slots=True)
class Success[TSuccess]:
    """A successful outcome."""

    value: TSuccess


@dataclasses.dataclass(frozen=True, slots=True)
class Failure[TFailure]:
    """A failed outcome, carrying the error."""

    error: TFailure


type Outcome[TSuccess, TFailure] = Success[TSuccess] | Failure[TFailure]


# --- Items and chunks ---


class ItemKind(enum.StrEnum):
    """Shape of an item, which decides its prompt and fallback template."""

    MCQ = "mcq"
    FREE_RESPONSE = "free_response"

    @classmethod
    def parse(cls, value: str | ItemKind) -> ItemKind:
        """Accept enum values plus the common aliases used by importers."""
        if isinstance(value, ItemKind):
            return value
        normalized = str(value).strip().lower()
        aliases = {
            "mcq": cls.MCQ,
            "qcm": cls.MCQ,
            "multiple_choice": cls.MCQ,
            "free_response": cls.FREE_RESPONSE,
            "qroc": cls.FREE_RESPONSE,
            "open": cls.FREE_RESPONSE,
        }
        if normalized not in aliases:
            raise ValueError(f"Unknown item kind: {value!r}")
        return aliases[normalized]


@dataclasses.dataclass(frozen=True, slots=True)
class Item:
    """One unit of input content to enrich.

    ``case_text`` carries the shared clinical case or stem for case-series
    items and ``question_number`` the item's position inside that series.
    """

    id: str
    kind: ItemKind
    text: str
    options: tuple[str, ...] = ()
    provided_answer: str = ""
    case_text: str = ""
    question_number: int | None = None

    def __post_init__(self) -> None:
        _require(
            condition=isinstance(self.id, str) and bool(self.id.strip()),
            message="must be a non-empty string",
            field_name="id",
        )
        _require(
            condition=isinstance(self.options, tuple),
            message="must be a tuple",
            field_name="options",
        )

    @classmethod
    def from_dict(cls, data: typing.Mapping[str, typing.Any]) -> Item:
        """Build an Item from a loosely-typed mapping (e.g. decoded JSON)."""
        number = data.get("question_number")
        return cls(
            id=str(data["id"]),
            kind=ItemKind.parse(data.get("kind", ItemKind.MCQ)),
            text=str(data.get("text", "")),
            options=tuple(str(o) for o in data.get("options") or ()),
            provided_answer=str(data.get("provided_answer") or ""),
            case_text=str(data.get("case_text") or ""),
            question_number=int(number) if number not in (None, "") else None,
        )

    @property
    def is_mcq(self) -> bool:
        return self.kind is ItemKind.MCQ

    def content_key(self) -> str:
        """Text content that seeds deterministic fallback selection."""
        return "\n".join((self.case_text, self.text, *self.options))


@dataclasses.dataclass(frozen=True, slots=True)
class Chunk:
    """An ordered, non-empty slice of items sent as one request."""

    index: int
    items: tuple[Item, ...]

    def __post_init__(self) -> None:
        _require(condition=bool(self.items), message="must not be empty", field_name="items")

    def __len__(self) -> int:
        return len(self.items)

    @property
    def ids(self) -> tuple[str, ...]:
        return tuple(item.id for item in self.items)


# --- Completion service boundary ---


class StatusKind(enum.StrEnum):
    """Classification of a completion-service reply."""

    OK = "ok"
    RATE_LIMITED = "rate_limited"
    TRANSPORT_ERROR = "transport_error"
    REJECTED = "rejected"


@dataclasses.dataclass(frozen=True, slots=True)
class RawResponse:
    """What the completion client returns for one request."""

    status: StatusKind
    text: str = ""
    retry_after: float | None = None
    status_code: int | None = None
    error: str | None = None

    @classmethod
    def ok(cls, text: str) -> RawResponse:
        return cls(status=StatusKind.OK, text=text)

    @classmethod
    def rate_limited(
        cls, retry_after: float | None = None, *, error: str | None = None
    ) -> RawResponse:
        return cls(
            status=StatusKind.RATE_LIMITED,
            retry_after=retry_after,
            status_code=429,
            error=error,
        )

    @classmethod
    def transport_error(
        cls, error: str, *, status_code: int | None = None
    ) -> RawResponse:
        return cls(status=StatusKind.TRANSPORT_ERROR, error=error, status_code=status_code)

    @classmethod
    def rejected(cls, error: str, *, status_code: int | None = None) -> RawResponse:
        return cls(status=StatusKind.REJECTED, error=error, status_code=status_code)


# --- Output ---


class ResultStatus(enum.StrEnum):
    OK = "ok"
    ERROR = "error"


class ResultOrigin(enum.StrEnum):
    """Which path produced the result's AI content."""

    BATCH = "batch"
    SINGLE_ITEM = "single_item"
    ENHANCEMENT = "enhancement"
    FALLBACK = "fallback"


@dataclasses.dataclass(frozen=True, slots=True)
class Result:
    """Final enriched verdict for one item."""

    id: str
    kind: ItemKind
    status: ResultStatus
    answer: str
    option_explanations: tuple[str, ...]
    summary: str
    fallback_used: bool
    origin: ResultOrigin
    fallback_fields: tuple[str, ...] = ()
    error: str | None = None

    def to_dict(self) -> dict[str, typing.Any]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "status": self.status.value,
            "answer": self.answer,
            "option_explanations": list(self.option_explanations),
            "summary": self.summary,
            "fallback_used": self.fallback_used,
            "fallback_fields": list(self.fallback_fields),
            "origin": self.origin.value,
            "error": self.error,
        }


__all__ = [
    "Chunk",
    "Failure",
    "Item",
    "ItemKind",
    "Outcome",
    "RawResponse",
    "Result",
    "ResultOrigin",
    "ResultStatus",
    "StatusKind",
    "Success",
]
