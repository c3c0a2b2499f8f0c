"""The user-facing entry point: run a list of items through the enrichment pipeline.

The engine validates the job, chunks items by kind, hands the chunks to the
wave scheduler, optionally runs the enhancement pass, passes the collected
verdicts to the merger, and keeps the session in step. It guarantees that a
``complete`` session holds exactly one result per input item; anything else
ends in the ``error`` phase.
"""

import asyncio
from collections import Counter
from collections.abc import Sequence
from dataclasses import dataclass
import logging

from enrich_batch.client.base import CompletionClient
from enrich_batch.client.gemini import GeminiCompletionClient
from enrich_batch.config import FrozenConfig, load_config
from enrich_batch.constants import PREPARE_PROGRESS_END, PREPARE_PROGRESS_START
from enrich_batch.core.exceptions import EngineError, ValidationError
from enrich_batch.core.types import Chunk, Failure, Item, Outcome, Result, Success
from enrich_batch.pipeline.chunker import chunk_by_kind
from enrich_batch.pipeline.enhancer import Enhancer
from enrich_batch.pipeline.fallback import FallbackSynthesizer
from enrich_batch.pipeline.merger import Merger
from enrich_batch.pipeline.quality import QualityGate
from enrich_batch.pipeline.retry import Sleeper
from enrich_batch.pipeline.scheduler import WaveScheduler
from enrich_batch.progress import JobRegistry, Session
from enrich_batch.telemetry import TelemetryContext, TelemetryReporter

log = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class PreparedJob:
    items: tuple[Item, ...]
    chunks: tuple[Chunk, ...]


def prepare_job(
    items: Sequence[Item], batch_size: int
) -> Outcome[PreparedJob, ValidationError]:
    """Check job preconditions and build the chunk list."""
    if not items:
        return Failure(
            ValidationError("No items to process: the input contained no recognizable content")
        )
    duplicates = sorted(i for i, n in Counter(item.id for item in items).items() if n > 1)
    if duplicates:
        shown = ", ".join(duplicates[:5])
        suffix = " ..." if len(duplicates) > 5 else ""
        return Failure(ValidationError(f"Duplicate item ids: {shown}{suffix}"))

    chunks = chunk_by_kind(items, batch_size)
    return Success(PreparedJob(items=tuple(items), chunks=chunks))


class EnrichmentEngine:
    """Runs enrichment jobs against one completion client."""

    def __init__(
        self,
        config: FrozenConfig,
        client: CompletionClient,
        *,
        registry: JobRegistry | None = None,
        sleep: Sleeper = asyncio.sleep,
        reporters: Sequence[TelemetryReporter] = (),
    ) -> None:
        self.config = config
        self.client = client
        self.registry = registry or JobRegistry()
        self._tele = TelemetryContext(*reporters)
        gate = QualityGate()
        self.scheduler = WaveScheduler(client, config, sleep=sleep, telemetry=self._tele)
        self.enhancer = (
            Enhancer(client, config, gate=gate, sleep=sleep, telemetry=self._tele)
            if config.enhancement_pass
            else None
        )
        self.merger = Merger(
            gate=gate, synthesizer=FallbackSynthesizer(config.locale), telemetry=self._tele
        )

    async def run(self, items: Sequence[Item], session: Session | None = None) -> list[Result] | None:
        """Enrich ``items``; returns results, or ``None`` if the job did not complete.

        Precondition failures and stop requests are reported through the
        session rather than raised.

        Raises:
            EngineError: On an unexpected failure; the session is marked
                ``error`` first.
        """
        session = session or self.registry.create()
        with self._tele("enrich.job", items=len(items)):
            prepared = prepare_job(items, self.config.batch_size)
            if isinstance(prepared, Failure):
                log.error("Job %s rejected: %s", session.id, prepared.error)
                session.fail(str(prepared.error))
                return None
            job = prepared.value

            if not session.start("Preparing items"):
                log.info("Job %s was stopped before it started", session.id)
                return None
            session.update(progress=PREPARE_PROGRESS_START)
            session.set_total_batches(len(job.chunks))
            session.update(
                progress=PREPARE_PROGRESS_END,
                message=f"Processing {len(job.items)} item(s)",
                log_line=(
                    f"{len(job.items)} item(s) in {len(job.chunks)} batch(es) of up to "
                    f"{self.config.batch_size}, {self.config.concurrency} concurrent"
                ),
            )
            log.info(
                "Job %s: %d item(s), %d batch(es)", session.id, len(job.items), len(job.chunks)
            )

            try:
                verdicts = await self.scheduler.run(job.chunks, session)
                if verdicts is not None and self.enhancer is not None:
                    verdicts = await self.enhancer.run(job.items, verdicts, session)
                if verdicts is None:
                    return None
                results = self.merger.merge(job.items, verdicts, session)
            except asyncio.CancelledError:
                session.fail("Cancelled")
                raise
            except Exception as e:
                session.fail(f"Unexpected failure: {type(e).__name__}: {e}")
                log.exception("Job %s failed", session.id)
                raise EngineError(str(e), job_id=session.id) from e

            if not session.complete(results, message=f"Done: {len(results)} item(s) enriched"):
                # Stopped while merging; the session is already terminal.
                return None
            log.info("Job %s complete", session.id)
            return results

    def launch(self, items: Sequence[Item], job_id: str | None = None) -> tuple[Session, asyncio.Task[list[Result] | None]]:
        """Start a job in the background on the running loop.

        Poll the returned session, or ``registry.stop(session.id)`` to cancel.
        """
        session = self.registry.create(job_id)
        task = asyncio.create_task(self.run(items, session), name=f"enrich-{session.id}")
        return session, task


def create_engine(
    config: FrozenConfig | None = None,
    *,
    client: CompletionClient | None = None,
    registry: JobRegistry | None = None,
    reporters: Sequence[TelemetryReporter] = (),
) -> EnrichmentEngine:
    """Create an engine, resolving configuration from the environment if needed.

    Without an explicit ``client`` the Gemini client is used, which requires
    an API key.
    """
    final_config = config if config is not None else load_config()
    final_client = client if client is not None else GeminiCompletionClient.from_config(final_config)
    return EnrichmentEngine(final_config, final_client, registry=registry, reporters=reporters)
