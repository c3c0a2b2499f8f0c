"""Deciding which parts of an AI verdict are usable.

The gate is a pure predicate over ``(item, verdict)``: it never edits
content, it only names the fields that need fallback text.
"""

from dataclasses import dataclass

from enrich_batch.core.models import ItemVerdict
from enrich_batch.core.text import is_explanation_sufficient
from enrich_batch.core.types import Item

ANSWER_FIELD = "answer"
SUMMARY_FIELD = "summary"


def option_field(index: int) -> str:
    return f"option_explanation[{index}]"


@dataclass(frozen=True, slots=True)
class GateVerdict:
    """Outcome of judging one item.

    ``structurally_valid`` is False when the verdict is absent or unusable as a
    whole; in that case every field is listed in ``deficient_fields``.
    """

    structurally_valid: bool
    deficient_fields: tuple[str, ...] = ()
    reason: str | None = None

    @property
    def acceptable(self) -> bool:
        return self.structurally_valid and not self.deficient_fields

    def needs(self, field: str) -> bool:
        return field in self.deficient_fields


def all_fields(item: Item) -> tuple[str, ...]:
    if item.is_mcq:
        count = max(1, len(item.options))
        return (ANSWER_FIELD, *(option_field(i) for i in range(count)), SUMMARY_FIELD)
    return (ANSWER_FIELD, SUMMARY_FIELD)


class QualityGate:
    """Pure acceptance rules for AI verdicts."""

    def judge(self, item: Item, verdict: ItemVerdict | None) -> GateVerdict:
        if verdict is None:
            return GateVerdict(False, all_fields(item), reason="no verdict")
        if verdict.status == "error":
            return GateVerdict(
                False, all_fields(item), reason=verdict.error or "service reported error"
            )
        if item.is_mcq:
            return self._judge_mcq(item, verdict)
        return self._judge_free(verdict)

    def _judge_mcq(self, item: Item, verdict: ItemVerdict) -> GateVerdict:
        deficient: list[str] = []
        if not verdict.has_answer:
            deficient.append(ANSWER_FIELD)
        for index in range(max(1, len(item.options))):
            text = (
                verdict.option_explanations[index]
                if index < len(verdict.option_explanations)
                else ""
            )
            if not is_explanation_sufficient(text):
                deficient.append(option_field(index))
        if not is_explanation_sufficient(verdict.summary):
            deficient.append(SUMMARY_FIELD)
        return GateVerdict(True, tuple(deficient))

    def _judge_free(self, verdict: ItemVerdict) -> GateVerdict:
        deficient: list[str] = []
        if not verdict.answer.strip():
            deficient.append(ANSWER_FIELD)
        if not is_explanation_sufficient(verdict.free_text):
            deficient.append(SUMMARY_FIELD)
        return GateVerdict(True, tuple(deficient))
