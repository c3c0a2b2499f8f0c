"""Prompt construction for enrichment requests.

Deliberately thin: it serializes the chunk's items and states the JSON
contract that ``core.models.BatchVerdict`` validates.
"""

import json

from enrich_batch.core.text import repair_option_text, repair_question_text
from enrich_batch.core.types import Chunk, Item, ItemKind

from .base import BatchPayload

_LANGUAGE = {"fr": "French", "en": "English"}

MCQ_SYSTEM_PROMPT = """\
You help medical students review multiple-choice questions whose text may be noisy.
For every item, identify the correct options and explain each option.

Rules:
- One explanation per option, in the order received, 2 to 4 sentences each.
- Correct options: confirm, then give the mechanism or key criterion.
- Incorrect options: correct the idea immediately and state the right notion.
- Start each explanation with a connective and never reuse the same one within an item.
- globalExplanation: a 3 to 5 sentence reminder of the underlying concept.
- If no option can be chosen reliably, set "noAnswer": true.
- Write in {language}.

Reply with strict JSON only, no markdown:
{{"results": [{{"id": "string", "status": "ok" | "error",
  "correctAnswers": [0, 2], "noAnswer": false,
  "optionExplanations": ["...", "..."], "globalExplanation": "...",
  "error": "only when status is error"}}]}}
correctAnswers are zero-based indices (A=0, B=1...).
"""

FREE_RESPONSE_SYSTEM_PROMPT = """\
You help medical students review short-answer questions whose text may be noisy.
For every item:
- If the provided answer is empty, propose a concise answer in "answer".
- Write one clear explanation of 3 to 6 sentences: key idea, brief justification,
  a concrete landmark, and a common pitfall when useful.
- Write in {language}.

Reply with strict JSON only, no markdown:
{{"results": [{{"id": "string", "status": "ok" | "error",
  "answer": "...", "explanation": "...", "error": "only when status is error"}}]}}
"""

MCQ_ENHANCE_SYSTEM_PROMPT = """\
You are an experienced medical teacher writing clear, practical explanations for
multiple-choice questions. Earlier explanations for these items were too thin.

Requirements:
- One explanation per option, in the order received, 2 to 4 complete sentences each.
- Name the option, give the relevant clinical mechanism or criterion with a figure
  or landmark, and a short concrete example when it helps.
- Every sentence ends with a period.
- Never open two explanations of the same item with the same connective.
- globalExplanation: a 3 to 5 sentence course reminder, structured and without repetition.
- Write in {language}.

Reply with strict JSON only, no markdown:
{{"results": [{{"id": "string", "optionExplanations": ["...", "..."],
  "globalExplanation": "..."}}]}}
"""

FREE_RESPONSE_ENHANCE_SYSTEM_PROMPT = """\
You are an experienced medical teacher. Earlier explanations for these short-answer
questions were too thin. For every item write one explanation of 3 to 6 complete
sentences: key idea, brief justification, a concrete landmark and a common pitfall.
Every sentence ends with a period. Write in {language}.

Reply with strict JSON only, no markdown:
{{"results": [{{"id": "string", "explanation": "..."}}]}}
"""


def _item_record(item: Item) -> dict[str, object]:
    record: dict[str, object] = {
        "id": item.id,
        "questionText": repair_question_text(item.text),
    }
    if item.case_text:
        record["caseText"] = repair_question_text(item.case_text)
    if item.kind is ItemKind.MCQ:
        record["options"] = [repair_option_text(o) for o in item.options]
        record["providedAnswer"] = item.provided_answer
    else:
        record["answerText"] = item.provided_answer
    return record


def system_prompt(
    kind: ItemKind,
    *,
    locale: str = "fr",
    instructions: str | None = None,
    enhance: bool = False,
) -> str:
    if enhance:
        template = (
            MCQ_ENHANCE_SYSTEM_PROMPT
            if kind is ItemKind.MCQ
            else FREE_RESPONSE_ENHANCE_SYSTEM_PROMPT
        )
    else:
        template = MCQ_SYSTEM_PROMPT if kind is ItemKind.MCQ else FREE_RESPONSE_SYSTEM_PROMPT
    prompt = template.format(language=_LANGUAGE.get(locale, "French"))
    if instructions and instructions.strip():
        prompt += f"\nAdditional instructions from the administrator:\n{instructions.strip()}\n"
    return prompt


def build_payload(
    chunk: Chunk,
    *,
    max_output_tokens: int,
    locale: str = "fr",
    instructions: str | None = None,
    enhance: bool = False,
) -> BatchPayload:
    """Build the request for one chunk. All items in a chunk share a kind.

    With ``enhance`` the request asks only for richer explanations of items
    whose first answers were too thin; answers are not requested again.
    """
    kind = chunk.items[0].kind
    task = f"{kind.value}_enhance" if enhance else f"{kind.value}_review"
    user_prompt = json.dumps(
        {"task": task, "items": [_item_record(i) for i in chunk.items]},
        ensure_ascii=False,
    )
    return BatchPayload(
        kind=kind,
        items=chunk.items,
        system_prompt=system_prompt(
            kind, locale=locale, instructions=instructions, enhance=enhance
        ),
        user_prompt=user_prompt,
        max_output_tokens=max_output_tokens,
    )
