"""Builders and fakes shared across the test suite."""

from collections.abc import Awaitable, Callable
import json
from typing import Any

from enrich_batch.client.base import BatchPayload
from enrich_batch.core.types import Item, ItemKind, RawResponse


def make_mcq(
    item_id: str,
    *,
    text: str = "Which drug is first-line for uncomplicated hypertension?",
    options: tuple[str, ...] = ("Thiazide diuretic", "Beta blocker", "Nitrate"),
    provided_answer: str = "",
    case_text: str = "",
    question_number: int | None = None,
) -> Item:
    return Item(
        id=item_id,
        kind=ItemKind.MCQ,
        text=text,
        options=options,
        provided_answer=provided_answer,
        case_text=case_text,
        question_number=question_number,
    )


def make_free(
    item_id: str,
    *,
    text: str = "Name the main cause of microcytic anemia.",
    provided_answer: str = "",
) -> Item:
    return Item(
        id=item_id,
        kind=ItemKind.FREE_RESPONSE,
        text=text,
        provided_answer=provided_answer,
    )


# Each passes the explanation heuristic: over 120 characters, three sentences.
GOOD_EXPLANATIONS = (
    "Indeed, thiazides are first-line agents. They lower volume and peripheral "
    "resistance. Outcome trials support their use in most adults.",
    "Actually, beta blockers are not preferred first-line. They perform worse on "
    "stroke outcomes. Keep them for specific indications such as angina.",
    "However, nitrates do not treat chronic hypertension. They relieve angina "
    "through venodilation. They have no role in long-term blood pressure control.",
)

GOOD_SUMMARY = (
    "First-line therapy relies on agents with outcome data. Thiazides, ACE "
    "inhibitors and calcium channel blockers qualify. Beta blockers are reserved "
    "for comorbid indications."
)


def good_verdict(item: Item) -> dict[str, Any]:
    """A verdict entry that passes the quality gate for the default items."""
    if item.kind is ItemKind.MCQ:
        return {
            "id": item.id,
            "status": "ok",
            "correctAnswers": [0],
            "optionExplanations": list(GOOD_EXPLANATIONS[: len(item.options)]),
            "globalExplanation": GOOD_SUMMARY,
        }
    return {
        "id": item.id,
        "status": "ok",
        "answer": "Iron deficiency",
        "explanation": GOOD_SUMMARY,
    }


def good_response(items: tuple[Item, ...] | list[Item]) -> RawResponse:
    return RawResponse.ok(json.dumps({"results": [good_verdict(i) for i in items]}))


class ScriptedClient:
    """Fake completion client driven by a per-call handler.

    The handler receives the payload and the 1-based call number and returns
    a RawResponse, or raises to simulate a misbehaving client.
    """

    def __init__(
        self,
        handler: Callable[[BatchPayload, int], RawResponse] | None = None,
        *,
        on_send: Callable[[BatchPayload], Awaitable[None]] | None = None,
    ) -> None:
        self.handler = handler or (lambda payload, _n: good_response(payload.items))
        self.on_send = on_send
        self.calls: list[BatchPayload] = []

    async def send(self, payload: BatchPayload) -> RawResponse:
        self.calls.append(payload)
        if self.on_send is not None:
            await self.on_send(payload)
        return self.handler(payload, len(self.calls))

    @property
    def batch_sizes(self) -> list[int]:
        return [len(p.items) for p in self.calls]


class RecordingSleep:
    """Stand-in for ``asyncio.sleep`` that records delays instead of waiting."""

    def __init__(self, hook: Callable[[float], None] | None = None) -> None:
        self.delays: list[float] = []
        self.hook = hook

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        if self.hook is not None:
            self.hook(delay)
