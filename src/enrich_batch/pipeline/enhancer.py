"""Optional second AI pass over items whose explanations were too thin.

After the first pass, items with deficient explanation or summary fields are
resubmitted with a prompt that asks only for richer text. Enhanced text
replaces a field only when the field was deficient and the new text passes
the quality heuristic; answers always come from the first pass or the
fallback. Whatever is still deficient afterwards goes to the merger's
fallback as usual.
"""

import asyncio
from collections.abc import Mapping, Sequence
import logging

from enrich_batch.client.base import BatchPayload, CompletionClient
from enrich_batch.client.prompts import build_payload
from enrich_batch.config import FrozenConfig
from enrich_batch.constants import ENHANCE_PROGRESS_END, SCHEDULER_PROGRESS_END
from enrich_batch.core.models import ItemVerdict
from enrich_batch.core.text import is_explanation_sufficient
from enrich_batch.core.types import Chunk, Item, ResultOrigin
from enrich_batch.progress import Session
from enrich_batch.telemetry import TelemetryContext, TelemetryContextProtocol

from .chunker import chunk_by_kind
from .quality import ANSWER_FIELD, GateVerdict, QualityGate
from .retry import Sleeper
from .scheduler import SourcedVerdict, VerdictMap, WaveScheduler

log = logging.getLogger(__name__)


class EnhancementScheduler(WaveScheduler):
    """Wave scheduler whose requests ask for rewritten explanations."""

    stage_message = "Enhancing explanations"
    resubmit_singles = False

    def _payload(self, chunk: Chunk) -> BatchPayload:
        return build_payload(
            chunk,
            max_output_tokens=self.config.token_budget_hint,
            locale=self.config.locale,
            instructions=self.config.instructions,
            enhance=True,
        )


def needs_enhancement(gate: GateVerdict) -> bool:
    """True when any field other than the answer is deficient."""
    return any(field != ANSWER_FIELD for field in gate.deficient_fields)


def _pick(current: str, candidate: str) -> str:
    if is_explanation_sufficient(current) or not is_explanation_sufficient(candidate):
        return current
    return candidate


def combine_verdicts(
    item: Item, base: ItemVerdict | None, enhanced: ItemVerdict
) -> ItemVerdict:
    """Fill the deficient text fields of ``base`` from ``enhanced``."""
    if base is None or base.status == "error":
        base = ItemVerdict(id=item.id)
    if item.is_mcq:
        count = max(1, len(item.options), len(base.option_explanations))
        explanations = tuple(
            _pick(
                base.option_explanations[i] if i < len(base.option_explanations) else "",
                enhanced.option_explanations[i]
                if i < len(enhanced.option_explanations)
                else "",
            )
            for i in range(count)
        )
        return base.model_copy(
            update={
                "status": "ok",
                "error": None,
                "option_explanations": explanations,
                "summary": _pick(base.summary, enhanced.summary),
            }
        )
    return base.model_copy(
        update={
            "status": "ok",
            "error": None,
            "explanation": _pick(base.free_text, enhanced.free_text),
        }
    )


class Enhancer:
    def __init__(
        self,
        client: CompletionClient,
        config: FrozenConfig,
        *,
        gate: QualityGate | None = None,
        sleep: Sleeper = asyncio.sleep,
        telemetry: TelemetryContextProtocol | None = None,
    ) -> None:
        self.config = config
        self.gate = gate or QualityGate()
        self._tele = telemetry or TelemetryContext()
        self.scheduler = EnhancementScheduler(
            client,
            config,
            sleep=sleep,
            telemetry=self._tele,
            progress_window=(SCHEDULER_PROGRESS_END, ENHANCE_PROGRESS_END),
        )

    def _judge(self, item: Item, sourced: SourcedVerdict | None) -> GateVerdict:
        return self.gate.judge(item, sourced.verdict if sourced else None)

    def targets(
        self, items: Sequence[Item], verdicts: Mapping[str, SourcedVerdict]
    ) -> list[Item]:
        return [
            item for item in items if needs_enhancement(self._judge(item, verdicts.get(item.id)))
        ]

    async def run(
        self,
        items: Sequence[Item],
        verdicts: Mapping[str, SourcedVerdict],
        session: Session,
    ) -> VerdictMap | None:
        """Return ``verdicts`` with enhanced text folded in; ``None`` if stopped."""
        targets = self.targets(items, verdicts)
        if not targets:
            return dict(verdicts)

        chunks = chunk_by_kind(targets, self.config.batch_size)
        session.add_batches(len(chunks))
        session.update(
            message="Enhancing explanations",
            log_line=f"Enhancement pass: {len(targets)} item(s) in {len(chunks)} batch(es)",
        )
        with self._tele("enrich.enhance", items=len(targets)):
            enhanced = await self.scheduler.run(chunks, session)
        if enhanced is None:
            return None

        merged: VerdictMap = dict(verdicts)
        improved = 0
        for item in targets:
            fresh = enhanced.get(item.id)
            if fresh is None or fresh.verdict.status == "error":
                continue
            base = verdicts.get(item.id)
            combined = combine_verdicts(item, base.verdict if base else None, fresh.verdict)
            before = self._judge(item, base)
            after = self.gate.judge(item, combined)
            if len(after.deficient_fields) >= len(before.deficient_fields):
                continue
            keeps_origin = base is not None and base.verdict.status == "ok"
            origin = base.origin if keeps_origin else ResultOrigin.ENHANCEMENT
            merged[item.id] = SourcedVerdict(combined, origin)
            improved += 1

        self._tele.count("enrich.enhanced", improved)
        session.update(log_line=f"Enhancement pass: {improved}/{len(targets)} item(s) improved")
        log.info("Enhancement pass improved %d/%d item(s)", improved, len(targets))
        return merged
