import pytest

from enrich_batch.pipeline.chunker import chunk_items, partition_waves
from tests.helpers import make_mcq

pytestmark = pytest.mark.unit


def _items(n):
    return [make_mcq(f"q{i}") for i in range(n)]


def test_chunks_preserve_order_and_only_last_is_short():
    chunks = chunk_items(_items(12), 5)
    assert [len(c) for c in chunks] == [5, 5, 2]
    flattened = [item.id for chunk in chunks for item in chunk.items]
    assert flattened == [f"q{i}" for i in range(12)]


def test_chunk_indices_start_from_offset():
    chunks = chunk_items(_items(4), 2, start_index=3)
    assert [c.index for c in chunks] == [3, 4]


@pytest.mark.parametrize("size", [0, -4])
def test_non_positive_batch_size_is_treated_as_one(size):
    assert [len(c) for c in chunk_items(_items(3), size)] == [1, 1, 1]


def test_empty_input_yields_no_chunks():
    assert chunk_items([], 5) == ()


def test_waves_hold_at_most_concurrency_chunks():
    chunks = chunk_items(_items(12), 5)
    waves = partition_waves(chunks, 2)
    assert [len(w) for w in waves] == [2, 1]
    assert waves[0][0] is chunks[0]


def test_zero_concurrency_runs_one_chunk_per_wave():
    chunks = chunk_items(_items(3), 1)
    assert [len(w) for w in partition_waves(chunks, 0)] == [1, 1, 1]
