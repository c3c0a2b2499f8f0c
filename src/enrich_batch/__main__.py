"""Command-line entry point.

Usage:
    python -m enrich_batch items.json -o results.json
    python -m enrich_batch items.json --mock --batch-size 3
    python -m enrich_batch --show-config

The input file holds a JSON list of items (or ``{"items": [...]}``) with the
keys ``id``, ``kind``, ``text``, ``options``, ``provided_answer``,
``case_text`` and ``question_number``.
"""

import argparse
import asyncio
import json
import logging
from pathlib import Path
import sys
from typing import Any

from enrich_batch.client.mock import MockCompletionClient
from enrich_batch.config import resolve_config
from enrich_batch.core.exceptions import EnrichBatchError
from enrich_batch.core.types import Item
from enrich_batch.engine import create_engine
from enrich_batch.telemetry import InMemoryReporter

log = logging.getLogger("enrich_batch")


def load_items(path: Path) -> list[Item]:
    data = json.loads(path.read_text(encoding="utf-8"))
    records = data.get("items", []) if isinstance(data, dict) else data
    return [Item.from_dict(record) for record in records]


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Enrich question items with AI-generated answers and explanations",
        prog="python -m enrich_batch",
    )
    parser.add_argument("input", nargs="?", type=Path, help="JSON file of items")
    parser.add_argument("-o", "--output", type=Path, help="Write results here (default: stdout)")
    parser.add_argument("--mock", action="store_true", help="Use the offline mock client")
    parser.add_argument("--batch-size", type=int, help="Items per request")
    parser.add_argument("--concurrency", type=int, help="Requests per wave")
    parser.add_argument("--locale", choices=("fr", "en"), help="Language of fallback text")
    parser.add_argument(
        "--enhance", action="store_true", default=None, help="Run the enhancement pass"
    )
    parser.add_argument("--show-config", action="store_true", help="Print resolved configuration and exit")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    overrides: dict[str, Any] = {
        key: value
        for key, value in (
            ("batch_size", args.batch_size),
            ("concurrency", args.concurrency),
            ("locale", args.locale),
            ("enhancement_pass", args.enhance),
        )
        if value is not None
    }
    try:
        resolved = resolve_config(overrides)
    except EnrichBatchError as e:
        log.error("%s", e)
        return 2

    if args.show_config:
        print(resolved.audit())  # noqa: T201
        return 0
    if args.input is None:
        log.error("An input file is required")
        return 2

    reporter = InMemoryReporter()
    try:
        items = load_items(args.input)
        engine = create_engine(
            resolved.to_frozen(),
            client=MockCompletionClient() if args.mock else None,
            reporters=(reporter,),
        )
        session = engine.registry.create()
        results = asyncio.run(engine.run(items, session))
    except (OSError, ValueError, KeyError) as e:
        log.error("Could not read %s: %s", args.input, e)
        return 2
    except EnrichBatchError as e:
        log.error("%s", e)
        return 1

    payload = {
        "session": session.snapshot().to_dict(),
        "results": [r.to_dict() for r in results] if results is not None else None,
    }
    text = json.dumps(payload, ensure_ascii=False, indent=2)
    if args.output:
        args.output.write_text(text + "\n", encoding="utf-8")
    else:
        print(text)  # noqa: T201
    if reporter.timings or reporter.metrics:
        log.debug("%s", reporter.get_report())
    return 0 if results is not None else 1


if __name__ == "__main__":
    sys.exit(main())
