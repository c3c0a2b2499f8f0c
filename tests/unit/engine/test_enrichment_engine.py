import asyncio
import json

import pytest

from enrich_batch.client.mock import MockCompletionClient
from enrich_batch.core.exceptions import EngineError, ValidationError
from enrich_batch.core.types import Failure, ItemKind, RawResponse, ResultOrigin, Success
from enrich_batch.engine import EnrichmentEngine, create_engine, prepare_job
from enrich_batch.progress import JobRegistry, SessionPhase
from enrich_batch.telemetry import InMemoryReporter
from tests.helpers import (
    RecordingSleep,
    ScriptedClient,
    good_response,
    good_verdict,
    make_free,
    make_mcq,
)

pytestmark = pytest.mark.unit


def mixed_items():
    items = [make_mcq(f"q{i}", provided_answer="A") for i in range(7)]
    items[3:3] = [make_free(f"f{i}") for i in range(3)]
    return items


class TestPrepareJob:
    def test_chunks_never_mix_kinds_and_mcq_comes_first(self):
        prepared = prepare_job(mixed_items(), batch_size=3)
        assert isinstance(prepared, Success)
        chunks = prepared.value.chunks
        assert [c.index for c in chunks] == [0, 1, 2, 3]
        assert [len(c) for c in chunks] == [3, 3, 1, 3]
        assert [{i.kind for i in c.items} for c in chunks] == [
            {ItemKind.MCQ},
            {ItemKind.MCQ},
            {ItemKind.MCQ},
            {ItemKind.FREE_RESPONSE},
        ]

    def test_empty_input_fails(self):
        prepared = prepare_job([], batch_size=3)
        assert isinstance(prepared, Failure)
        assert isinstance(prepared.error, ValidationError)

    def test_duplicate_ids_fail(self):
        prepared = prepare_job([make_mcq("a"), make_mcq("b"), make_mcq("a")], batch_size=3)
        assert isinstance(prepared, Failure)
        assert "Duplicate item ids: a" in str(prepared.error)


@pytest.mark.asyncio
class TestRun:
    async def test_mock_run_completes_with_every_item(self, config_factory):
        client = MockCompletionClient()
        engine = EnrichmentEngine(
            config_factory(batch_size=3, concurrency=2), client, sleep=RecordingSleep()
        )
        items = mixed_items()
        session = engine.registry.create()

        results = await engine.run(items, session)

        assert [r.id for r in results] == [i.id for i in items]
        assert all(r.origin is ResultOrigin.BATCH for r in results)
        assert all(len(p.items) <= 3 for p in client.calls)
        assert all(len({i.kind for i in p.items}) == 1 for p in client.calls)
        snapshot = session.snapshot()
        assert snapshot.phase is SessionPhase.COMPLETE
        assert snapshot.progress_percent == 100
        assert snapshot.counters.processed_batches == snapshot.counters.total_batches == 4
        assert snapshot.counters.fixed_count == 10
        assert snapshot.counters.error_count == 0
        assert snapshot.results == tuple(results)

    async def test_empty_input_ends_in_error(self, config):
        engine = EnrichmentEngine(config, MockCompletionClient())
        session = engine.registry.create()
        assert await engine.run([], session) is None
        assert session.phase is SessionPhase.ERROR
        assert "No items" in session.error

    async def test_duplicate_ids_end_in_error(self, config):
        client = MockCompletionClient()
        engine = EnrichmentEngine(config, client)
        session = engine.registry.create()
        assert await engine.run([make_mcq("a"), make_mcq("a")], session) is None
        assert session.phase is SessionPhase.ERROR
        assert client.calls == []

    async def test_failing_service_still_yields_complete_results(self, config_factory):
        def refuse(_payload, _n):
            raise RuntimeError("service exploded")

        engine = EnrichmentEngine(
            config_factory(batch_size=2), ScriptedClient(refuse), sleep=RecordingSleep()
        )
        items = [make_mcq("q0", provided_answer="C"), make_mcq("q1"), make_free("f0")]
        session = engine.registry.create()

        results = await engine.run(items, session)

        assert [r.id for r in results] == ["q0", "q1", "f0"]
        assert all(r.origin is ResultOrigin.FALLBACK for r in results)
        assert results[0].answer == "C"
        assert session.phase is SessionPhase.COMPLETE
        assert session.snapshot().counters.error_count == 3

    async def test_stopped_session_is_not_started(self, config):
        client = MockCompletionClient()
        engine = EnrichmentEngine(config, client)
        session = engine.registry.create()
        session.request_stop()
        assert await engine.run([make_mcq("a")], session) is None
        assert client.calls == []
        assert session.error == "Stopped by user"

    async def test_stop_between_waves(self, config_factory):
        registry = JobRegistry()
        engine_ref = {}

        async def stop_after_first(_payload):
            registry.stop(engine_ref["id"])

        client = ScriptedClient(on_send=stop_after_first)
        engine = EnrichmentEngine(
            config_factory(batch_size=1, concurrency=1),
            client,
            registry=registry,
            sleep=RecordingSleep(),
        )
        session = registry.create("job-1")
        engine_ref["id"] = session.id

        assert await engine.run([make_mcq("a"), make_mcq("b"), make_mcq("c")], session) is None
        assert len(client.calls) == 1
        assert session.phase is SessionPhase.ERROR
        assert session.results is None

    async def test_unexpected_failure_raises_engine_error(self, config, monkeypatch):
        engine = EnrichmentEngine(config, MockCompletionClient())

        def broken_merge(*_args, **_kwargs):
            raise RuntimeError("merge bug")

        monkeypatch.setattr(engine.merger, "merge", broken_merge)
        session = engine.registry.create()
        with pytest.raises(EngineError) as excinfo:
            await engine.run([make_mcq("a")], session)
        assert excinfo.value.job_id == session.id
        assert session.phase is SessionPhase.ERROR
        assert "merge bug" in session.error

    async def test_launch_runs_in_background(self, config):
        engine = EnrichmentEngine(config, MockCompletionClient())
        session, task = engine.launch([make_mcq("a")], job_id="bg")
        assert engine.registry.get("bg") is session
        results = await task
        assert len(results) == 1
        assert session.phase is SessionPhase.COMPLETE

    async def test_cancellation_marks_the_session(self, config):
        blocker = asyncio.Event()

        async def hang(_payload):
            await blocker.wait()

        client = ScriptedClient(on_send=hang)
        engine = EnrichmentEngine(config, client)
        session, task = engine.launch([make_mcq("a")])
        for _ in range(100):
            if client.calls:
                break
            await asyncio.sleep(0)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert session.phase is SessionPhase.ERROR
        assert session.error == "Cancelled"

    async def test_telemetry_collects_scopes_when_enabled(self, config, monkeypatch):
        monkeypatch.setenv("ENRICH_TELEMETRY", "1")
        reporter = InMemoryReporter()
        engine = EnrichmentEngine(config, MockCompletionClient(), reporters=(reporter,))
        await engine.run([make_mcq("a")])
        assert "enrich.job" in reporter.timings
        assert any(scope.endswith("enrich.salvage.direct") for scope in reporter.metrics)


def _thin_then_rich(payload, _n):
    """First-pass replies have one thin explanation; enhancement replies are full."""
    if json.loads(payload.user_prompt)["task"].endswith("_enhance"):
        return good_response(payload.items)
    results = []
    for item in payload.items:
        data = good_verdict(item)
        data["optionExplanations"][1] = "Too short."
        results.append(data)
    return RawResponse.ok(json.dumps({"results": results}))


@pytest.mark.asyncio
class TestEnhancementPass:
    async def test_enhancement_replaces_thin_explanations(self, config_factory):
        client = ScriptedClient(_thin_then_rich)
        engine = EnrichmentEngine(
            config_factory(enhancement_pass=True), client, sleep=RecordingSleep()
        )
        session = engine.registry.create()

        results = await engine.run([make_mcq("q0"), make_mcq("q1")], session)

        assert [json.loads(p.user_prompt)["task"] for p in client.calls] == [
            "mcq_review",
            "mcq_enhance",
        ]
        assert not any(r.fallback_used for r in results)
        assert all(r.origin is ResultOrigin.BATCH for r in results)
        snapshot = session.snapshot()
        assert snapshot.phase is SessionPhase.COMPLETE
        assert snapshot.counters.processed_batches == snapshot.counters.total_batches == 2
        assert any("Enhancement pass: 2/2" in line for line in snapshot.log)

    async def test_pass_is_off_by_default(self, config):
        client = ScriptedClient(_thin_then_rich)
        engine = EnrichmentEngine(config, client, sleep=RecordingSleep())

        results = await engine.run([make_mcq("q0"), make_mcq("q1")])

        assert engine.enhancer is None
        assert len(client.calls) == 1
        assert [r.fallback_fields for r in results] == [("option_explanation[1]",)] * 2


def test_create_engine_uses_given_client(monkeypatch):
    monkeypatch.setenv("ENRICH_BATCH_SIZE", "4")
    client = MockCompletionClient()
    engine = create_engine(client=client)
    assert engine.client is client
    assert engine.config.batch_size == 4
