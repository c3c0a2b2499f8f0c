import json

import pytest

from enrich_batch.__main__ import load_items, main

pytestmark = pytest.mark.unit

ITEMS = [
    {
        "id": "1",
        "kind": "qcm",
        "text": "Which drug is first-line?",
        "options": ["Thiazide", "Nitrate"],
        "provided_answer": "A",
    },
    {"id": "2", "kind": "qroc", "text": "Main cause of microcytic anemia?"},
]


def test_load_items_accepts_list_or_wrapper(tmp_path):
    listed = tmp_path / "list.json"
    listed.write_text(json.dumps(ITEMS), encoding="utf-8")
    wrapped = tmp_path / "wrapped.json"
    wrapped.write_text(json.dumps({"items": ITEMS}), encoding="utf-8")
    assert load_items(listed) == load_items(wrapped)
    assert [i.id for i in load_items(listed)] == ["1", "2"]


def test_mock_run_writes_results(tmp_path):
    source = tmp_path / "items.json"
    source.write_text(json.dumps(ITEMS), encoding="utf-8")
    target = tmp_path / "out.json"

    assert main([str(source), "--mock", "--batch-size", "1", "-o", str(target)]) == 0

    payload = json.loads(target.read_text(encoding="utf-8"))
    assert payload["session"]["phase"] == "complete"
    assert payload["session"]["progressPercent"] == 100
    assert [r["id"] for r in payload["results"]] == ["1", "2"]
    assert payload["results"][0]["answer"] == "A"


def test_show_config_prints_audit(capsys):
    assert main(["--show-config", "--concurrency", "3"]) == 0
    assert "concurrency: programmatic:3" in capsys.readouterr().out


def test_missing_input_is_a_usage_error():
    assert main([]) == 2


def test_unreadable_input_is_a_usage_error(tmp_path):
    source = tmp_path / "broken.json"
    source.write_text("{not json", encoding="utf-8")
    assert main([str(source), "--mock"]) == 2


def test_invalid_override_is_a_usage_error():
    assert main(["--show-config", "--batch-size", "0"]) == 2


def test_empty_input_reports_error(tmp_path, capsys):
    source = tmp_path / "empty.json"
    source.write_text("[]", encoding="utf-8")
    assert main([str(source), "--mock"]) == 1
    payload = json.loads(capsys.readouterr().out)
    assert payload["session"]["phase"] == "error"
    assert payload["results"] is None


def test_enhance_flag_turns_on_the_enhancement_pass(capsys):
    assert main(["--show-config", "--enhance"]) == 0
    out = capsys.readouterr().out
    assert "enhancement_pass: programmatic:True" in out
