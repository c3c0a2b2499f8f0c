"""AI-assisted batch enrichment of question items."""

import importlib.metadata
import logging

from enrich_batch.client import (
    BatchPayload,
    CompletionClient,
    GeminiCompletionClient,
    MockCompletionClient,
)
from enrich_batch.config import FrozenConfig, load_config, resolve_config
from enrich_batch.core.exceptions import (
    ConfigurationError,
    EngineError,
    EnrichBatchError,
    InvariantViolationError,
    ValidationError,
)
from enrich_batch.core.types import (
    Chunk,
    Item,
    ItemKind,
    RawResponse,
    Result,
    ResultOrigin,
    StatusKind,
)
from enrich_batch.engine import EnrichmentEngine, create_engine
from enrich_batch.progress import JobRegistry, Session, SessionPhase, SessionSnapshot
from enrich_batch.telemetry import InMemoryReporter, TelemetryContext, TelemetryReporter

try:
    __version__ = importlib.metadata.version("enrich-batch")
except importlib.metadata.PackageNotFoundError:
    __version__ = "development"

# Library code logs; applications decide where it goes.
logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "BatchPayload",
    "Chunk",
    "CompletionClient",
    "ConfigurationError",
    "EngineError",
    "EnrichBatchError",
    "EnrichmentEngine",
    "FrozenConfig",
    "GeminiCompletionClient",
    "InMemoryReporter",
    "InvariantViolationError",
    "Item",
    "ItemKind",
    "JobRegistry",
    "MockCompletionClient",
    "RawResponse",
    "Result",
    "ResultOrigin",
    "Session",
    "SessionPhase",
    "SessionSnapshot",
    "StatusKind",
    "TelemetryContext",
    "TelemetryReporter",
    "ValidationError",
    "create_engine",
    "load_config",
    "resolve_config",
]
