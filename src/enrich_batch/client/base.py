"""The completion-client boundary."""

from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from enrich_batch.core.types import Item, ItemKind, RawResponse


@dataclass(frozen=True, slots=True)
class BatchPayload:
    """One request's worth of prompt material."""

    kind: ItemKind
    items: tuple[Item, ...]
    system_prompt: str
    user_prompt: str
    max_output_tokens: int

    @property
    def item_ids(self) -> tuple[str, ...]:
        return tuple(item.id for item in self.items)


@runtime_checkable
class CompletionClient(Protocol):
    """Sends a payload and classifies the reply.

    Implementations should map service signals onto ``RawResponse`` statuses
    rather than raise; the retry loop still converts stray exceptions.
    """

    async def send(self, payload: BatchPayload) -> RawResponse: ...  # noqa: D102
