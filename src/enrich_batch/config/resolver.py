"""Configuration resolution with precedence handling.

Precedence, highest first: Programmatic > Environment > Project file > Defaults
"""

from collections.abc import Mapping
from pathlib import Path
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from enrich_batch.core.exceptions import ConfigurationError

from .loaders import ConfigFileError, load_env_config, load_project_config
from .schema import EnrichSettings
from .types import ConfigOrigin, ResolvedConfig, SourceMap


class SourceTracker:
    """Records the origin of each field while sources are merged."""

    def __init__(self) -> None:
        self._origins: dict[str, ConfigOrigin] = {}

    def set_multiple(self, fields: Mapping[str, Any], origin: ConfigOrigin) -> None:
        for field in fields:
            self._origins[field] = origin

    def get_source_map(self) -> SourceMap:
        return dict(self._origins)


def _schema_defaults() -> dict[str, Any]:
    # Read field defaults directly; instantiating the settings class would
    # pull in the environment and blur the origin map.
    return {
        name: field.get_default(call_default_factory=True)
        for name, field in EnrichSettings.model_fields.items()
    }


def resolve_config(
    programmatic: Mapping[str, Any] | None = None,
    *,
    project_root: Path | None = None,
) -> ResolvedConfig:
    """Resolve configuration from all sources.

    Args:
        programmatic: Overrides with the highest precedence. Unknown keys
            raise, since they are almost always typos.
        project_root: Directory to start the ``pyproject.toml`` search from.

    Raises:
        ConfigurationError: If a source is malformed or validation fails.
    """
    tracker = SourceTracker()
    merged = _schema_defaults()
    tracker.set_multiple(merged, "default")

    try:
        file_values = load_project_config(project_root)
    except ConfigFileError as e:
        raise ConfigurationError(str(e)) from e
    merged.update(file_values)
    tracker.set_multiple(file_values, "file")

    env_values = load_env_config()
    merged.update(env_values)
    tracker.set_multiple(env_values, "env")

    if programmatic:
        unknown = set(programmatic) - set(merged)
        if unknown:
            raise ConfigurationError(
                f"Unknown configuration field(s): {', '.join(sorted(unknown))}"
            )
        merged.update(programmatic)
        tracker.set_multiple(programmatic, "programmatic")

    try:
        settings = EnrichSettings(**merged)
    except PydanticValidationError as e:
        raise ConfigurationError(f"Configuration validation failed: {e}") from e

    return ResolvedConfig(values=settings.to_dict(), origin=tracker.get_source_map())
