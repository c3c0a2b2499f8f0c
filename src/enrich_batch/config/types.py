"""Configuration data types, following the resolve-once, freeze-then-flow pattern."""

from collections.abc import Mapping
from dataclasses import dataclass, fields
from typing import Any, Literal, NamedTuple

ConfigOrigin = Literal["programmatic", "env", "file", "default"]
SourceMap = Mapping[str, ConfigOrigin]

_SENSITIVE_FIELDS = frozenset({"api_key"})


@dataclass(frozen=True)
class FrozenConfig:
    """Immutable configuration handed to the engine and its stages.

    Contains only field values, no audit metadata. Any attempt to modify it
    raises.
    """

    batch_size: int
    concurrency: int
    inter_wave_pace_seconds: float
    max_retry_attempts: int
    rate_limit_attempts: int
    salvage_attempts: int
    single_item_salvage: bool
    enhancement_pass: bool
    retry_base_delay: float
    rate_limit_base_delay: float
    retry_max_delay: float
    request_timeout: float
    token_budget_hint: int
    model: str
    api_key: str | None
    instructions: str | None
    locale: str

    def __repr__(self) -> str:
        parts = []
        for f in fields(self):
            value = getattr(self, f.name)
            if f.name in _SENSITIVE_FIELDS and value:
                value = "[REDACTED]"
            parts.append(f"{f.name}={value!r}")
        return f"FrozenConfig({', '.join(parts)})"

    __str__ = __repr__


class ResolvedConfig(NamedTuple):
    """Configuration after resolution from all sources, before freezing.

    ``origin`` records where each field's value came from.
    """

    values: Mapping[str, Any]
    origin: SourceMap

    def __repr__(self) -> str:
        return f"ResolvedConfig({self.audit()!r})"

    def to_frozen(self) -> FrozenConfig:
        return FrozenConfig(**dict(self.values))

    def audit(self) -> str:
        """Redacted report of each field's value and origin."""
        lines = []
        for field, value in self.values.items():
            origin = self.origin.get(field, "default")
            if field in _SENSITIVE_FIELDS:
                shown = "None" if value is None else "<redacted>"
                lines.append(f"{field}: {origin}:{shown}")
            elif origin == "env":
                lines.append(f"{field}: env:ENRICH_{field.upper()}={value}")
            else:
                lines.append(f"{field}: {origin}:{value}")
        return "\n".join(lines)
