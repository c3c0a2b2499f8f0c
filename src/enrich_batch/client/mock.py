"""Deterministic completion client used for tests and dry runs (no network)."""

import json

from enrich_batch.constants import OPTION_LETTERS
from enrich_batch.core.text import canonical_answer
from enrich_batch.core.types import Item, RawResponse

from .base import BatchPayload

_CONNECTIVES = ("Indeed", "Actually", "Correct", "However", "Notably")


def _mcq_verdict(item: Item) -> dict[str, object]:
    letters = canonical_answer(
        item.provided_answer,
        option_count=len(item.options) or 1,
        question_number=item.question_number,
    )
    indices = [OPTION_LETTERS.index(ch) for ch in letters.split(", ") if ch] or [0]
    explanations = []
    for i, option in enumerate(item.options or ("Option A",)):
        verdict = "is correct" if i in indices else "is incorrect"
        explanations.append(
            f"{_CONNECTIVES[i % len(_CONNECTIVES)]}, the statement '{option}' {verdict}. "
            "The underlying mechanism follows directly from the question stem. "
            "Keep this criterion in mind when a similar option appears."
        )
    return {
        "id": item.id,
        "status": "ok",
        "correctAnswers": indices,
        "optionExplanations": explanations,
        "globalExplanation": (
            f"This question tests the concept behind: {item.text} "
            "The key idea links the mechanism to its clinical consequence. "
            "A frequent pitfall is to confuse neighbouring notions. "
            "Review the defining criteria to answer reliably."
        ),
    }


def _free_verdict(item: Item) -> dict[str, object]:
    return {
        "id": item.id,
        "status": "ok",
        "answer": item.provided_answer or "Proposed answer",
        "explanation": (
            f"The expected answer addresses: {item.text} "
            "It rests on a single key idea stated in the course. "
            "A concrete landmark helps to remember it. "
            "Avoid the common confusion with related notions."
        ),
    }


class MockCompletionClient:
    """Answers every payload with a well-formed verdict for each item."""

    def __init__(self) -> None:
        self.calls: list[BatchPayload] = []

    async def send(self, payload: BatchPayload) -> RawResponse:
        self.calls.append(payload)
        results = [
            _mcq_verdict(item) if item.is_mcq else _free_verdict(item)
            for item in payload.items
        ]
        return RawResponse.ok(json.dumps({"results": results}, ensure_ascii=False))
