"""Configuration sources: ``pyproject.toml`` and ``ENRICH_*`` environment variables."""

import logging
import os
from pathlib import Path
import tomllib
from typing import Any

from .schema import EnrichSettings

log = logging.getLogger(__name__)

ENV_PREFIX = "ENRICH_"
TOOL_SECTION = "enrich_batch"


class ConfigFileError(Exception):
    """Raised when a configuration file exists but cannot be used."""

    def __init__(
        self, file_path: Path, message: str, cause: Exception | None = None
    ) -> None:
        self.file_path = file_path
        self.message = message
        self.cause = cause
        super().__init__(f"Config file error in {file_path}: {message}")


def _find_pyproject_toml(start: Path | None) -> Path | None:
    current = (start or Path.cwd()).resolve()
    for directory in (current, *current.parents):
        candidate = directory / "pyproject.toml"
        if candidate.is_file():
            return candidate
    return None


def load_project_config(project_root: Path | None = None) -> dict[str, Any]:
    """Read ``[tool.enrich_batch]`` from the nearest ``pyproject.toml``.

    Returns an empty dict when there is no file or no section.

    Raises:
        ConfigFileError: If the file exists but is not valid TOML, or the
            section is not a table.
    """
    path = _find_pyproject_toml(project_root)
    if path is None:
        return {}
    try:
        with path.open(mode="rb") as f:
            data = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        raise ConfigFileError(path, f"Failed to parse TOML: {e}", cause=e) from e

    section = data.get("tool", {}).get(TOOL_SECTION, {})
    if not isinstance(section, dict):
        raise ConfigFileError(path, f"[tool.{TOOL_SECTION}] must be a table")
    unknown = set(section) - set(EnrichSettings.model_fields)
    if unknown:
        log.warning(
            "Ignoring unknown keys in %s [tool.%s]: %s",
            path,
            TOOL_SECTION,
            ", ".join(sorted(unknown)),
        )
    return {k: v for k, v in section.items() if k in EnrichSettings.model_fields}


def load_env_config() -> dict[str, str]:
    """Collect raw ``ENRICH_<FIELD>`` values that are actually set.

    Values are left as strings; coercion happens once, in the final
    validation step of the resolver.
    """
    found: dict[str, str] = {}
    for field in EnrichSettings.model_fields:
        env_var = f"{ENV_PREFIX}{field.upper()}"
        if env_var in os.environ:
            found[field] = os.environ[env_var]
    return found
