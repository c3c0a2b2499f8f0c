"""Recovering structured verdicts from imperfect completion text.

The salvager runs a fixed chain of stages in priority order. Each stage is a
pure function that proposes a JSON candidate from the raw text; the first
candidate that parses *and* validates against ``BatchVerdict`` wins. When no
stage succeeds the salvager returns an empty result instead of raising, so
callers can treat "no usable AI output" as an ordinary outcome.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
import json
import logging
import re
from typing import Any

from pydantic import ValidationError

from enrich_batch.core.models import BatchVerdict, ItemVerdict

log = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```", re.IGNORECASE)
_KEYED_RE = re.compile(r'\{\s*"results"\s*:')
_CLOSERS = {"{": "}", "[": "]"}


@dataclass(frozen=True, slots=True)
class SalvageStage:
    """A named candidate extractor. Returns ``None`` when it does not apply."""

    name: str
    extract: Callable[[str], str | None]


@dataclass
class SalvageDiagnostics:
    attempted_stages: list[str] = field(default_factory=list)
    successful_stage: str | None = None
    stage_errors: dict[str, str] = field(default_factory=dict)
    dropped_entries: int = 0


@dataclass(frozen=True)
class SalvageResult:
    verdicts: tuple[ItemVerdict, ...]
    stage: str | None
    diagnostics: SalvageDiagnostics

    @classmethod
    def empty(cls, diagnostics: SalvageDiagnostics | None = None) -> "SalvageResult":
        return cls(verdicts=(), stage=None, diagnostics=diagnostics or SalvageDiagnostics())

    @property
    def ok(self) -> bool:
        return self.stage is not None

    def by_id(self) -> dict[str, ItemVerdict]:
        return BatchVerdict(results=self.verdicts).by_id()


# --- Stages (pure) ---


def direct_candidate(text: str) -> str | None:
    return text.strip() or None


def fenced_candidate(text: str) -> str | None:
    match = _FENCE_RE.search(text)
    return match.group(1).strip() if match else None


def keyed_candidate(text: str) -> str | None:
    match = _KEYED_RE.search(text)
    return text[match.start() :].strip() if match else None


def balance_brackets(text: str) -> str:
    """Close every unmatched ``{``/``[`` (and an open string) in nesting order.

    Brackets inside JSON strings are ignored. A trailing comma before the
    appended closers is dropped.
    """
    stack: list[str] = []
    in_string = False
    escaped = False
    for ch in text:
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
        elif ch == '"':
            in_string = True
        elif ch in _CLOSERS:
            stack.append(ch)
        elif ch in "}]" and stack and _CLOSERS[stack[-1]] == ch:
            stack.pop()

    repaired = text + '"' if in_string else text
    repaired = repaired.rstrip().rstrip(",")
    return repaired + "".join(_CLOSERS[opener] for opener in reversed(stack))


def balanced_candidate(text: str) -> str | None:
    match = _KEYED_RE.search(text)
    start = match.start() if match else text.find("{")
    if start < 0:
        return None
    return balance_brackets(text[start:].rstrip().removesuffix("```"))


def default_stages() -> tuple[SalvageStage, ...]:
    return (
        SalvageStage("direct", direct_candidate),
        SalvageStage("fenced", fenced_candidate),
        SalvageStage("keyed", keyed_candidate),
        SalvageStage("balanced", balanced_candidate),
    )


# --- Salvager ---


class ResponseSalvager:
    """Turn raw completion text into typed verdicts, as leniently as is safe."""

    def __init__(self, stages: tuple[SalvageStage, ...] | None = None) -> None:
        self.stages = stages if stages is not None else default_stages()

    def salvage(self, text: str | None) -> SalvageResult:
        diagnostics = SalvageDiagnostics()
        if not text or not text.strip():
            return SalvageResult.empty(diagnostics)

        for stage in self.stages:
            diagnostics.attempted_stages.append(stage.name)
            candidate = stage.extract(text)
            if candidate is None:
                continue
            try:
                data = json.loads(candidate)
            except json.JSONDecodeError as e:
                diagnostics.stage_errors[stage.name] = str(e)
                continue
            verdicts = self._validate(data, diagnostics)
            if verdicts is None:
                diagnostics.stage_errors[stage.name] = "no results array"
                continue
            diagnostics.successful_stage = stage.name
            if stage.name != "direct":
                log.debug("Salvaged response via '%s' stage", stage.name)
            return SalvageResult(verdicts=verdicts, stage=stage.name, diagnostics=diagnostics)

        log.warning(
            "Unsalvageable response (%d chars), stages tried: %s",
            len(text),
            ", ".join(diagnostics.attempted_stages),
        )
        return SalvageResult.empty(diagnostics)

    @staticmethod
    def _validate(
        data: Any, diagnostics: SalvageDiagnostics
    ) -> tuple[ItemVerdict, ...] | None:
        """Validate entries one by one; a bad entry never sinks its siblings."""
        if isinstance(data, dict):
            entries = data.get("results")
        elif isinstance(data, list):
            entries = data
        else:
            return None
        if not isinstance(entries, list):
            return None

        verdicts: list[ItemVerdict] = []
        for entry in entries:
            try:
                verdicts.append(ItemVerdict.model_validate(entry))
            except ValidationError as e:
                diagnostics.dropped_entries += 1
                log.warning("Dropping malformed verdict entry: %s", e.errors()[:1])
        return tuple(verdicts)
