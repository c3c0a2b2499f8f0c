import asyncio
import json

import pytest

from enrich_batch.core.types import RawResponse, ResultOrigin
from enrich_batch.pipeline.chunker import chunk_items
from enrich_batch.pipeline.scheduler import WaveScheduler
from enrich_batch.progress import Session
from tests.helpers import (
    RecordingSleep,
    ScriptedClient,
    good_response,
    good_verdict,
    make_mcq,
)

pytestmark = [pytest.mark.unit, pytest.mark.asyncio]


def _items(n):
    return [make_mcq(f"q{i}") for i in range(n)]


def _running_session():
    session = Session()
    session.start()
    return session


def _first_item_only(payload, _n):
    """Batches come back with a single verdict; single-item requests succeed."""
    if len(payload.items) > 1:
        return good_response(payload.items[:1])
    return good_response(payload.items)


async def test_all_chunks_run_in_bounded_waves(config_factory):
    config = config_factory(batch_size=5, concurrency=2)
    in_flight = 0
    peak = 0

    async def track(_payload):
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0)
        in_flight -= 1

    client = ScriptedClient(on_send=track)
    session = _running_session()
    scheduler = WaveScheduler(client, config, sleep=RecordingSleep())

    verdicts = await scheduler.run(chunk_items(_items(12), 5), session)

    assert set(verdicts) == {f"q{i}" for i in range(12)}
    assert all(v.origin is ResultOrigin.BATCH for v in verdicts.values())
    assert client.batch_sizes == [5, 5, 2]
    assert peak == 2
    snapshot = session.snapshot()
    assert snapshot.counters.processed_batches == 3
    assert snapshot.progress_percent == 85
    assert snapshot.message == "Processing batches (3/3)"
    assert any("Wave 1/2" in line for line in snapshot.log)
    assert any("Wave 2/2" in line for line in snapshot.log)


async def test_pace_applies_between_waves_only(config_factory):
    config = config_factory(concurrency=1, inter_wave_pace_seconds=0.5)
    sleep = RecordingSleep()
    scheduler = WaveScheduler(ScriptedClient(), config, sleep=sleep)

    await scheduler.run(chunk_items(_items(3), 1), _running_session())

    assert sleep.delays == [0.5, 0.5]


async def test_missing_items_are_resubmitted_alone(config_factory):
    client = ScriptedClient(_first_item_only)
    scheduler = WaveScheduler(client, config_factory(), sleep=RecordingSleep())

    verdicts = await scheduler.run(chunk_items(_items(5), 5), _running_session())

    assert client.batch_sizes == [5, 1, 1, 1, 1]
    assert verdicts["q0"].origin is ResultOrigin.BATCH
    assert {verdicts[f"q{i}"].origin for i in range(1, 5)} == {ResultOrigin.SINGLE_ITEM}


async def test_single_item_salvage_can_be_disabled(config_factory):
    client = ScriptedClient(_first_item_only)
    config = config_factory(single_item_salvage=False)
    scheduler = WaveScheduler(client, config, sleep=RecordingSleep())

    verdicts = await scheduler.run(chunk_items(_items(5), 5), _running_session())

    assert client.batch_sizes == [5]
    assert set(verdicts) == {"q0"}


async def test_single_chunk_item_is_not_resubmitted(config_factory):
    client = ScriptedClient(lambda _p, _n: RawResponse.ok("not json"))
    scheduler = WaveScheduler(client, config_factory(), sleep=RecordingSleep())

    verdicts = await scheduler.run(chunk_items(_items(1), 5), _running_session())

    assert verdicts == {}
    assert client.batch_sizes == [1]


async def test_lone_single_item_verdict_is_rebound_to_the_item(config_factory):
    def handler(payload, _n):
        if len(payload.items) > 1:
            return RawResponse.rejected("too large", status_code=400)
        entry = good_verdict(payload.items[0]) | {"id": "999"}
        return RawResponse.ok(json.dumps({"results": [entry]}))

    scheduler = WaveScheduler(ScriptedClient(handler), config_factory(), sleep=RecordingSleep())

    verdicts = await scheduler.run(chunk_items(_items(2), 5), _running_session())

    assert verdicts["q0"].verdict.id == "q0"
    assert verdicts["q1"].origin is ResultOrigin.SINGLE_ITEM


async def test_unknown_ids_in_a_batch_are_ignored(config_factory):
    def handler(payload, _n):
        entries = [good_verdict(i) for i in payload.items]
        entries.append(good_verdict(make_mcq("stranger")))
        return RawResponse.ok(json.dumps({"results": entries}))

    scheduler = WaveScheduler(ScriptedClient(handler), config_factory(), sleep=RecordingSleep())

    verdicts = await scheduler.run(chunk_items(_items(2), 5), _running_session())

    assert set(verdicts) == {"q0", "q1"}


async def test_stop_during_pacing_skips_remaining_waves(config_factory):
    config = config_factory(concurrency=1, inter_wave_pace_seconds=1.0)
    session = _running_session()
    sleep = RecordingSleep(hook=lambda _delay: session.request_stop())
    client = ScriptedClient()
    scheduler = WaveScheduler(client, config, sleep=sleep)

    verdicts = await scheduler.run(chunk_items(_items(3), 1), session)

    assert verdicts is None
    assert len(client.calls) == 1
    assert sleep.delays == [1.0]
    assert session.snapshot().counters.processed_batches == 1


async def test_stop_during_last_wave_returns_nothing(config_factory):
    session = _running_session()

    async def stop(_payload):
        session.request_stop()

    scheduler = WaveScheduler(ScriptedClient(on_send=stop), config_factory(), sleep=RecordingSleep())

    assert await scheduler.run(chunk_items(_items(2), 5), session) is None
