"""Configuration for the enrichment engine.

Resolve once, freeze, then pass the frozen object down:

    >>> cfg = resolve_config({"batch_size": 8}).to_frozen()
    >>> cfg.batch_size
    8
"""

from collections.abc import Mapping
from pathlib import Path
from typing import Any

from .loaders import ConfigFileError
from .resolver import resolve_config
from .schema import EnrichSettings
from .types import ConfigOrigin, FrozenConfig, ResolvedConfig, SourceMap


def load_config(
    overrides: Mapping[str, Any] | None = None, *, project_root: Path | None = None
) -> FrozenConfig:
    """Shorthand for ``resolve_config(...).to_frozen()``."""
    return resolve_config(overrides, project_root=project_root).to_frozen()


__all__ = [
    "ConfigFileError",
    "ConfigOrigin",
    "EnrichSettings",
    "FrozenConfig",
    "ResolvedConfig",
    "SourceMap",
    "load_config",
    "resolve_config",
]
