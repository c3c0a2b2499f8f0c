"""Combining AI verdicts, fallback content and normalization into final results."""

from collections.abc import Mapping, Sequence
import logging

from enrich_batch import constants as c
from enrich_batch.core.exceptions import InvariantViolationError
from enrich_batch.core.models import ItemVerdict
from enrich_batch.core.text import (
    canonical_letters,
    clamp_sentences,
    clean_answer_text,
    is_explanation_sufficient,
    is_missing_answer,
    strip_option_label,
)
from enrich_batch.core.types import Item, Result, ResultOrigin, ResultStatus
from enrich_batch.progress import Session
from enrich_batch.telemetry import TelemetryContext, TelemetryContextProtocol

from .fallback import FallbackSynthesizer, framing_for
from .phrasing import OpenerPicker, leading_connective
from .quality import ANSWER_FIELD, SUMMARY_FIELD, GateVerdict, QualityGate, option_field
from .scheduler import SourcedVerdict

log = logging.getLogger(__name__)


def _normalize_summary(text: str) -> str:
    """Clamp prose summaries; keep line-structured ones as written."""
    stripped = text.strip()
    if "\n" in stripped:
        return "\n".join(line.rstrip() for line in stripped.splitlines() if line.strip())
    return clamp_sentences(stripped)


def _with_opener(opener: str, text: str) -> str:
    return f"{opener}, {text[:1].lower()}{text[1:]}"


class Merger:
    """Produces exactly one ``Result`` per item, in input order."""

    def __init__(
        self,
        *,
        gate: QualityGate | None = None,
        synthesizer: FallbackSynthesizer | None = None,
        telemetry: TelemetryContextProtocol | None = None,
        progress_window: tuple[int, int] = (c.SCHEDULER_PROGRESS_END, c.MERGE_PROGRESS_END),
    ) -> None:
        self.gate = gate or QualityGate()
        self.synthesizer = synthesizer or FallbackSynthesizer()
        self._tele = telemetry or TelemetryContext()
        self._progress_window = progress_window

    def merge(
        self,
        items: Sequence[Item],
        verdicts: Mapping[str, SourcedVerdict],
        session: Session | None = None,
    ) -> list[Result]:
        results: list[Result] = []
        start, end = self._progress_window
        step = max(1, len(items) // 20)

        with self._tele("enrich.merge", items=len(items)):
            for position, item in enumerate(items, start=1):
                sourced = verdicts.get(item.id)
                results.append(self.merge_item(item, sourced))
                if session is not None and (position % step == 0 or position == len(items)):
                    session.update(progress=min(end - 1, start + (end - start) * position / len(items)))

        self._check_complete(items, results)
        synthesized = sum(1 for r in results if r.origin is ResultOrigin.FALLBACK)
        self._tele.count("enrich.fallback", synthesized)
        if items:
            self._tele.gauge(
                "enrich.fallback_ratio",
                sum(1 for r in results if r.fallback_used) / len(items),
            )
        if session is not None:
            session.set_counts(fixed=len(results), errors=synthesized)
            session.update(
                message="Merging results",
                log_line=(
                    f"Merged {len(results)} item(s): {synthesized} fully synthesized, "
                    f"{sum(1 for r in results if r.fallback_used)} with fallback content"
                ),
            )
        return results

    def merge_item(self, item: Item, sourced: SourcedVerdict | None) -> Result:
        verdict = sourced.verdict if sourced else None
        gate = self.gate.judge(item, verdict)
        if item.is_mcq:
            answer, explanations, summary, fields = self._merge_mcq(item, verdict, gate)
        else:
            answer, summary, fields = self._merge_free(item, verdict, gate)
            explanations = ()

        if gate.structurally_valid and sourced is not None:
            origin, status, error = sourced.origin, ResultStatus.OK, None
        else:
            origin, status, error = ResultOrigin.FALLBACK, ResultStatus.ERROR, gate.reason
        if fields:
            log.debug("Item %s: fallback for %s", item.id, ", ".join(fields))
        return Result(
            id=item.id,
            kind=item.kind,
            status=status,
            answer=answer,
            option_explanations=explanations,
            summary=summary,
            fallback_used=bool(fields),
            origin=origin,
            fallback_fields=tuple(fields),
            error=error,
        )

    # --- Per kind ---

    def _mcq_answer(self, item: Item, verdict: ItemVerdict | None, gate: GateVerdict) -> str | None:
        """AI answer in canonical form, or None when fallback must supply one."""
        if not gate.structurally_valid or verdict is None:
            return None
        option_count = len(self.synthesizer.ensure_options(item))
        if verdict.correct_answers:
            return canonical_letters("".join(verdict.correct_answers), option_count) or None
        return c.PLACEHOLDER_MCQ_ANSWER if verdict.no_answer else None

    def _merge_mcq(
        self, item: Item, verdict: ItemVerdict | None, gate: GateVerdict
    ) -> tuple[str, tuple[str, ...], str, list[str]]:
        fields: list[str] = []
        answer = self._mcq_answer(item, verdict, gate)
        if answer is None:
            answer = self.synthesizer.answer(item)
            fields.append(ANSWER_FIELD)

        known = "" if answer == c.PLACEHOLDER_MCQ_ANSWER else answer
        picker = self.synthesizer.picker_for(item)
        explanations: list[str] = []
        for index in range(len(self.synthesizer.ensure_options(item))):
            name = option_field(index)
            text = ""
            if verdict is not None and not gate.needs(name) and index < len(verdict.option_explanations):
                text = clamp_sentences(strip_option_label(verdict.option_explanations[index]))
                if not is_explanation_sufficient(text):
                    text = ""
            if text:
                explanations.append(self._vary(text, index, known, picker))
            else:
                explanations.append(
                    self.synthesizer.option_explanation(
                        item, index, framing_for(index, known), picker
                    )
                )
                fields.append(name)

        summary = self._summary(verdict.summary if verdict else "", gate)
        if summary is None:
            summary = self.synthesizer.summary(item)
            fields.append(SUMMARY_FIELD)
        return answer, tuple(explanations), summary, fields

    def _merge_free(
        self, item: Item, verdict: ItemVerdict | None, gate: GateVerdict
    ) -> tuple[str, str, list[str]]:
        fields: list[str] = []
        answer = "" if is_missing_answer(item.provided_answer) else clean_answer_text(item.provided_answer)
        if not answer and verdict is not None and gate.structurally_valid:
            answer = clean_answer_text(verdict.answer)
        if not answer:
            answer = c.PLACEHOLDER_FREE_ANSWER
            fields.append(ANSWER_FIELD)

        summary = self._summary(verdict.free_text if verdict else "", gate)
        if summary is None:
            summary = self.synthesizer.summary(item)
            fields.append(SUMMARY_FIELD)
        return answer, summary, fields

    # --- Helpers ---

    def _summary(self, text: str, gate: GateVerdict) -> str | None:
        if not gate.structurally_valid or gate.needs(SUMMARY_FIELD):
            return None
        normalized = _normalize_summary(text)
        return normalized if is_explanation_sufficient(normalized) else None

    def _vary(self, text: str, index: int, known: str, picker: OpenerPicker) -> str:
        """Keep the AI wording unless its opening word was already used.

        A repeated phrase-book connective is swapped for a fresh one rather
        than stacked. Connectives from another locale's book mark text in
        another language, which is left alone.
        """
        if not picker.is_used(text):
            picker.reserve(text)
            return text
        connective = leading_connective(text)
        if connective is not None:
            written, locales = connective
            if self.synthesizer.locale not in locales:
                return text
            text = text.lstrip()[len(written) :].lstrip(" ,:;")
        return _with_opener(picker.pick(framing_for(index, known), index), text)

    @staticmethod
    def _check_complete(items: Sequence[Item], results: Sequence[Result]) -> None:
        if len(results) != len(items) or any(
            r.id != i.id for r, i in zip(results, items, strict=False)
        ):
            raise InvariantViolationError(
                f"Merged {len(results)} result(s) for {len(items)} item(s)",
                expected=len(items),
                actual=len(results),
            )
