"""Splitting items into request-sized chunks and chunks into waves."""

from collections.abc import Sequence

from enrich_batch.core.types import Chunk, Item, ItemKind

# Chunks never mix kinds; MCQ chunks are scheduled first.
KIND_ORDER = (ItemKind.MCQ, ItemKind.FREE_RESPONSE)


def chunk_items(
    items: Sequence[Item], batch_size: int, *, start_index: int = 0
) -> tuple[Chunk, ...]:
    """Partition ``items`` into consecutive chunks of at most ``batch_size``.

    Order is preserved; only the last chunk may be short. Non-positive batch
    sizes are treated as 1. Empty input yields no chunks. Chunk indices
    count up from ``start_index``.
    """
    size = max(1, int(batch_size))
    return tuple(
        Chunk(index=start_index + n, items=tuple(items[start : start + size]))
        for n, start in enumerate(range(0, len(items), size))
    )


def chunk_by_kind(
    items: Sequence[Item], batch_size: int, kinds: Sequence[ItemKind] = KIND_ORDER
) -> tuple[Chunk, ...]:
    """Chunk each kind separately, in ``kinds`` order, with running indices."""
    chunks: list[Chunk] = []
    for kind in kinds:
        group = [item for item in items if item.kind is kind]
        chunks.extend(chunk_items(group, batch_size, start_index=len(chunks)))
    return tuple(chunks)


def partition_waves(
    chunks: Sequence[Chunk], concurrency: int
) -> tuple[tuple[Chunk, ...], ...]:
    """Group chunks into waves of at most ``concurrency`` members."""
    width = max(1, int(concurrency))
    return tuple(
        tuple(chunks[start : start + width]) for start in range(0, len(chunks), width)
    )
