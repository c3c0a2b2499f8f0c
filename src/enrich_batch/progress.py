"""Job sessions: phase, progress, counters and an activity log.

A ``Session`` is written by the engine's stages and read by whoever polls
it. All mutations take the session's lock, so a stop request may arrive from
any thread. Once a session reaches a terminal phase (``complete`` or
``error``) every mutator becomes a no-op.
"""

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
import enum
import logging
import threading
import time
from typing import Any
import uuid

from enrich_batch.constants import DEFAULT_SESSION_TTL_SECONDS, STOP_MESSAGE
from enrich_batch.core.types import Result

log = logging.getLogger(__name__)


class SessionPhase(enum.StrEnum):
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETE = "complete"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionPhase.COMPLETE, SessionPhase.ERROR)


_ALLOWED = {
    SessionPhase.QUEUED: {SessionPhase.RUNNING, SessionPhase.ERROR},
    SessionPhase.RUNNING: {SessionPhase.COMPLETE, SessionPhase.ERROR},
    SessionPhase.COMPLETE: set(),
    SessionPhase.ERROR: set(),
}


@dataclass(frozen=True, slots=True)
class Counters:
    processed_batches: int = 0
    total_batches: int = 0
    fixed_count: int = 0
    error_count: int = 0


@dataclass(frozen=True, slots=True)
class SessionSnapshot:
    """Point-in-time copy of a session, safe to hand to other threads."""

    id: str
    phase: SessionPhase
    progress_percent: int
    message: str
    counters: Counters
    log: tuple[str, ...]
    error: str | None = None
    results: tuple[Result, ...] | None = None

    def to_dict(self) -> dict[str, Any]:
        """The polling contract, keyed the way API consumers expect."""
        return {
            "id": self.id,
            "phase": self.phase.value,
            "progressPercent": self.progress_percent,
            "message": self.message,
            "counters": {
                "processedBatches": self.counters.processed_batches,
                "totalBatches": self.counters.total_batches,
                "fixedCount": self.counters.fixed_count,
                "errorCount": self.counters.error_count,
            },
            "log": list(self.log),
            "error": self.error,
        }


@dataclass
class Session:
    """Mutable, lock-guarded state of one enrichment job."""

    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    clock: Callable[[], float] = field(default=time.time, repr=False)
    phase: SessionPhase = SessionPhase.QUEUED
    progress_percent: int = 0
    message: str = "Queued"
    processed_batches: int = 0
    total_batches: int = 0
    fixed_count: int = 0
    error_count: int = 0
    error: str | None = None
    results: tuple[Result, ...] | None = None
    _log: list[str] = field(default_factory=list, repr=False)
    _lock: threading.RLock = field(default_factory=threading.RLock, repr=False)
    updated_at: float = 0.0

    def __post_init__(self) -> None:
        self.updated_at = self.clock()

    # --- Queries ---

    @property
    def is_terminal(self) -> bool:
        with self._lock:
            return self.phase.is_terminal

    @property
    def should_stop(self) -> bool:
        """Cooperative cancellation flag, read before each new wave."""
        with self._lock:
            return self.phase is SessionPhase.ERROR

    @property
    def log(self) -> tuple[str, ...]:
        with self._lock:
            return tuple(self._log)

    def snapshot(self) -> SessionSnapshot:
        with self._lock:
            return SessionSnapshot(
                id=self.id,
                phase=self.phase,
                progress_percent=self.progress_percent,
                message=self.message,
                counters=Counters(
                    self.processed_batches,
                    self.total_batches,
                    self.fixed_count,
                    self.error_count,
                ),
                log=tuple(self._log),
                error=self.error,
                results=self.results,
            )

    # --- Mutators ---

    def _append_log(self, text: str) -> None:
        stamp = datetime.fromtimestamp(self.clock(), tz=UTC).strftime("%H:%M:%S")
        self._log.append(f"[{stamp}] {text}")

    def _touch(self) -> None:
        self.updated_at = self.clock()

    def _transition(self, target: SessionPhase) -> bool:
        if target not in _ALLOWED[self.phase]:
            log.debug("Session %s: ignoring %s -> %s", self.id, self.phase, target)
            return False
        self.phase = target
        return True

    def start(self, message: str = "Starting") -> bool:
        with self._lock:
            if not self._transition(SessionPhase.RUNNING):
                return False
            self.message = message
            self._append_log(message)
            self._touch()
            return True

    def update(
        self,
        *,
        progress: float | None = None,
        message: str | None = None,
        log_line: str | None = None,
    ) -> bool:
        """Move progress forward and/or set the message.

        Progress never decreases; a lower value is ignored.
        """
        with self._lock:
            if self.phase.is_terminal:
                return False
            if progress is not None:
                self.progress_percent = max(
                    self.progress_percent, min(100, max(0, int(progress)))
                )
            if message is not None:
                self.message = message
            if log_line is not None:
                self._append_log(log_line)
            self._touch()
            return True

    def set_total_batches(self, total: int) -> None:
        with self._lock:
            if not self.phase.is_terminal:
                self.total_batches = max(self.total_batches, total)
                self._touch()

    def add_batches(self, count: int) -> None:
        """Grow ``total_batches`` for work scheduled after the first pass."""
        with self._lock:
            if not self.phase.is_terminal and count > 0:
                self.total_batches += count
                self._touch()

    def advance_batches(self, count: int) -> int:
        """Count finished chunks; returns the new ``processed_batches``."""
        with self._lock:
            if not self.phase.is_terminal and count > 0:
                self.processed_batches += count
                self._touch()
            return self.processed_batches

    def set_counts(self, *, fixed: int, errors: int) -> None:
        with self._lock:
            if not self.phase.is_terminal:
                self.fixed_count = max(self.fixed_count, fixed)
                self.error_count = max(self.error_count, errors)
                self._touch()

    def complete(self, results: Sequence[Result], message: str = "Complete") -> bool:
        with self._lock:
            if not self._transition(SessionPhase.COMPLETE):
                return False
            self.results = tuple(results)
            self.progress_percent = 100
            self.message = message
            self._append_log(message)
            self._touch()
            return True

    def fail(self, error: str, message: str | None = None) -> bool:
        with self._lock:
            if not self._transition(SessionPhase.ERROR):
                return False
            self.error = error
            self.message = message or error
            self._append_log(f"Error: {error}")
            self._touch()
            return True

    def request_stop(self) -> bool:
        """Flip a live session to ``error``; a no-op on terminal sessions."""
        with self._lock:
            stopped = self.fail(STOP_MESSAGE, message=STOP_MESSAGE)
            if stopped:
                log.info("Session %s: stop requested", self.id)
            return stopped


class JobRegistry:
    """In-memory map of live sessions. Eviction is driven by the owner via ``sweep``."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._sessions: dict[str, Session] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def create(self, job_id: str | None = None) -> Session:
        session = Session(id=job_id, clock=self._clock) if job_id else Session(clock=self._clock)
        with self._lock:
            if session.id in self._sessions:
                raise KeyError(f"Job {session.id!r} already exists")
            self._sessions[session.id] = session
        return session

    def get(self, job_id: str) -> Session | None:
        with self._lock:
            return self._sessions.get(job_id)

    def stop(self, job_id: str) -> bool:
        session = self.get(job_id)
        return session.request_stop() if session is not None else False

    def remove(self, job_id: str) -> Session | None:
        with self._lock:
            return self._sessions.pop(job_id, None)

    def sweep(self, ttl: float = DEFAULT_SESSION_TTL_SECONDS) -> list[str]:
        """Drop sessions idle for longer than ``ttl`` seconds."""
        cutoff = self._clock() - ttl
        with self._lock:
            expired = [
                job_id
                for job_id, session in self._sessions.items()
                if session.updated_at < cutoff
            ]
            for job_id in expired:
                del self._sessions[job_id]
        if expired:
            log.info("Swept %d expired session(s)", len(expired))
        return expired
