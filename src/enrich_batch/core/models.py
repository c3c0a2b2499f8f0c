"""Typed schema for completion-service output.

Salvaged JSON is validated into these models before anything else in the
pipeline touches it. Field names follow the JSON contract the prompts ask
for (``correctAnswers``, ``optionExplanations``...) through aliases, so the
rest of the code works with snake_case attributes.
"""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from enrich_batch.constants import OPTION_LETTERS
from enrich_batch.core.text import canonical_letters


class ItemVerdict(BaseModel):
    """The completion service's verdict for a single item."""

    model_config = ConfigDict(
        populate_by_name=True,
        extra="ignore",
        frozen=True,
    )

    id: str
    status: Literal["ok", "error"] = "ok"
    correct_answers: tuple[str, ...] = Field(default=(), alias="correctAnswers")
    no_answer: bool = Field(default=False, alias="noAnswer")
    option_explanations: tuple[str, ...] = Field(
        default=(), alias="optionExplanations"
    )
    summary: str = Field(default="", alias="globalExplanation")
    answer: str = ""
    explanation: str = ""
    error: str | None = None

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> str:
        """Models often echo numeric ids back as numbers."""
        if v is None:
            raise ValueError("id is required")
        return str(v).strip()

    @field_validator("status", mode="before")
    @classmethod
    def coerce_status(cls, v: Any) -> str:
        return "error" if str(v or "ok").strip().lower() == "error" else "ok"

    @field_validator("correct_answers", mode="before")
    @classmethod
    def coerce_answers(cls, v: Any) -> tuple[str, ...]:
        """Accept zero-based indices or letters; always store letters.

        Letter strings may be packed or separated (``"AC"``, ``"A, C"``).
        """
        if v is None:
            return ()
        if isinstance(v, int | str):
            v = [v]
        letters: list[str] = []
        for entry in v:
            if isinstance(entry, bool):
                continue
            if isinstance(entry, int):
                if 0 <= entry < len(OPTION_LETTERS):
                    letters.append(OPTION_LETTERS[entry])
                continue
            text = str(entry).strip().upper()
            if text.isdigit():
                index = int(text)
                if 0 <= index < len(OPTION_LETTERS):
                    letters.append(OPTION_LETTERS[index])
            else:
                letters.extend(ch for ch in canonical_letters(text).split(", ") if ch)
        return tuple(letters)

    @field_validator("option_explanations", mode="before")
    @classmethod
    def coerce_explanations(cls, v: Any) -> tuple[str, ...]:
        if v is None:
            return ()
        if isinstance(v, str):
            return (v,)
        return tuple("" if e is None else str(e) for e in v)

    @field_validator("summary", "answer", "explanation", mode="before")
    @classmethod
    def coerce_text(cls, v: Any) -> str:
        return "" if v is None else str(v)

    @property
    def has_answer(self) -> bool:
        return bool(self.correct_answers) or self.no_answer

    @property
    def free_text(self) -> str:
        """Summary text for free-response items (``explanation`` or summary)."""
        return self.explanation or self.summary


class BatchVerdict(BaseModel):
    """Top-level response envelope: ``{"results": [...]}``."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    results: tuple[ItemVerdict, ...] = ()

    def by_id(self) -> dict[str, ItemVerdict]:
        """Index verdicts by id; the first occurrence of a duplicate wins."""
        indexed: dict[str, ItemVerdict] = {}
        for verdict in self.results:
            indexed.setdefault(verdict.id, verdict)
        return indexed
