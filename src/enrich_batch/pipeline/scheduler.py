"""Running chunks against the completion service in bounded waves.

Waves execute strictly one after another; the chunks inside a wave run
concurrently. Each chunk goes through the retry loop, then the salvager, and
its verdicts are matched back to items by id. Items a chunk could not
deliver are resubmitted one at a time; whatever is still missing afterwards
is left for the merger's fallback.
"""

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass
import logging

from enrich_batch.client.base import BatchPayload, CompletionClient
from enrich_batch.client.prompts import build_payload
from enrich_batch.config import FrozenConfig
from enrich_batch.constants import PREPARE_PROGRESS_END, SCHEDULER_PROGRESS_END
from enrich_batch.core.models import ItemVerdict
from enrich_batch.core.types import Chunk, Item, ResultOrigin
from enrich_batch.progress import Session
from enrich_batch.telemetry import TelemetryContext, TelemetryContextProtocol

from .chunker import partition_waves
from .retry import RetryPolicy, Sleeper, send_with_retry
from .salvage import ResponseSalvager

log = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SourcedVerdict:
    """A verdict plus the path that obtained it."""

    verdict: ItemVerdict
    origin: ResultOrigin


type VerdictMap = dict[str, SourcedVerdict]


class WaveScheduler:
    # Subclasses change what is asked, not how waves run.
    stage_message = "Processing batches"
    resubmit_singles = True

    def __init__(
        self,
        client: CompletionClient,
        config: FrozenConfig,
        *,
        salvager: ResponseSalvager | None = None,
        sleep: Sleeper = asyncio.sleep,
        telemetry: TelemetryContextProtocol | None = None,
        progress_window: tuple[int, int] = (PREPARE_PROGRESS_END, SCHEDULER_PROGRESS_END),
    ) -> None:
        self.client = client
        self.config = config
        self.salvager = salvager or ResponseSalvager()
        self._sleep = sleep
        self._tele = telemetry or TelemetryContext()
        self._progress_window = progress_window
        self._chunk_policy = RetryPolicy.from_config(config)
        self._single_policy = RetryPolicy.from_config(config, single_item=True)

    async def run(self, chunks: Sequence[Chunk], session: Session) -> VerdictMap | None:
        """Process every chunk; ``None`` when the session was stopped."""
        waves = partition_waves(chunks, self.config.concurrency)
        total = len(chunks)
        start, end = self._progress_window
        collected: VerdictMap = {}
        done = 0

        for number, wave in enumerate(waves, start=1):
            if number > 1 and self.config.inter_wave_pace_seconds > 0:
                await self._sleep(self.config.inter_wave_pace_seconds)
            if session.should_stop:
                log.info(
                    "Session %s stopped; skipping waves %d-%d", session.id, number, len(waves)
                )
                return None

            with self._tele("enrich.wave", wave=number, size=len(wave)):
                outcomes = await asyncio.gather(*(self._process_chunk(c) for c in wave))
            for outcome in outcomes:
                collected.update(outcome)

            done += len(wave)
            session.advance_batches(len(wave))
            delivered = sum(len(o) for o in outcomes)
            requested = sum(len(c) for c in wave)
            session.update(
                progress=start + (end - start) * done / total,
                message=f"{self.stage_message} ({done}/{total})",
                log_line=(
                    f"Wave {number}/{len(waves)}: {len(wave)} batch(es), "
                    f"{delivered}/{requested} item(s) answered"
                ),
            )
            log.info(
                "Wave %d/%d done: %d/%d items answered",
                number,
                len(waves),
                delivered,
                requested,
            )

        if session.should_stop:
            return None
        return collected

    def _payload(self, chunk: Chunk) -> BatchPayload:
        return build_payload(
            chunk,
            max_output_tokens=self.config.token_budget_hint,
            locale=self.config.locale,
            instructions=self.config.instructions,
        )

    async def _process_chunk(self, chunk: Chunk) -> VerdictMap:
        found: VerdictMap = {}
        with self._tele("enrich.chunk", size=len(chunk)):
            payload = self._payload(chunk)
            report = await send_with_retry(
                lambda: self.client.send(payload),
                self._chunk_policy,
                timeout=self.config.request_timeout,
                sleep=self._sleep,
                telemetry=self._tele,
                label=f"batch {chunk.index}",
            )
            if report.ok:
                salvaged = self.salvager.salvage(report.response.text)
                self._tele.count(f"enrich.salvage.{salvaged.stage or 'failed'}")
                by_id = salvaged.by_id()
                for item in chunk.items:
                    verdict = by_id.get(item.id)
                    if verdict is not None:
                        found[item.id] = SourcedVerdict(verdict, ResultOrigin.BATCH)
                stray = set(by_id) - set(chunk.ids)
                if stray:
                    log.debug("Batch %d: ignoring unknown ids %s", chunk.index, sorted(stray))

        missing = [item for item in chunk.items if item.id not in found]
        if missing:
            log.warning(
                "Batch %d: %d/%d item(s) without a usable verdict",
                chunk.index,
                len(missing),
                len(chunk),
            )
        if missing and len(chunk) > 1 and self.resubmit_singles and self.config.single_item_salvage:
            for item in missing:
                verdict = await self._salvage_single(chunk.index, item)
                if verdict is not None:
                    found[item.id] = SourcedVerdict(verdict, ResultOrigin.SINGLE_ITEM)
        return found

    async def _salvage_single(self, index: int, item: Item) -> ItemVerdict | None:
        """Resubmit one item on its own."""
        with self._tele("enrich.single_item"):
            payload = self._payload(Chunk(index=index, items=(item,)))
            report = await send_with_retry(
                lambda: self.client.send(payload),
                self._single_policy,
                timeout=self.config.request_timeout,
                sleep=self._sleep,
                telemetry=self._tele,
                label=f"item {item.id}",
            )
            if not report.ok:
                return None
            salvaged = self.salvager.salvage(report.response.text)
        if not salvaged.ok or not salvaged.verdicts:
            return None
        verdict = salvaged.by_id().get(item.id)
        if verdict is None and len(salvaged.verdicts) == 1:
            # A lone verdict under a different id can only belong to this item.
            verdict = salvaged.verdicts[0].model_copy(update={"id": item.id})
        return verdict
