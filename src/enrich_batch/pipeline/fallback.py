"""Deterministic fallback content.

Everything here is a pure function of the item (and the picker state the
caller passes in): the same item always yields the same text, and every
explanation or summary produced passes ``is_explanation_sufficient``.
"""

import re

from enrich_batch import constants as c
from enrich_batch.core.text import (
    canonical_answer,
    clean_answer_text,
    is_missing_answer,
    normalize_whitespace,
    strip_html,
)
from enrich_batch.core.types import Item

from .phrasing import Framing, OpenerPicker, PhraseBook, content_seed, phrase_book

_INNER_STOP_RE = re.compile(r"[.!?]+(\s+|$)")
_MAX_FRAGMENT = 100


def _fragment(text: str, limit: int = _MAX_FRAGMENT) -> str:
    """Single-clause version of ``text`` safe to embed inside one sentence."""
    s = normalize_whitespace(strip_html(text))
    s = _INNER_STOP_RE.sub(lambda m: ", " if m.group(1) else "", s).strip(" ,;:")
    if len(s) > limit:
        s = s[:limit].rsplit(" ", 1)[0].rstrip(" ,;:") + "…"
    return s


class FallbackSynthesizer:
    """Builds placeholder answers, explanations and summaries for an item."""

    def __init__(self, locale: str = "fr") -> None:
        self.book: PhraseBook = phrase_book(locale)
        self.locale = locale

    def picker_for(self, item: Item) -> OpenerPicker:
        return OpenerPicker(self.book, content_seed(item.content_key()))

    # --- Answers and options ---

    def ensure_options(self, item: Item) -> tuple[str, ...]:
        return item.options or (c.PLACEHOLDER_OPTION,)

    def answer(self, item: Item) -> str:
        """The provided answer in canonical form, else a placeholder."""
        if item.is_mcq:
            letters = canonical_answer(
                item.provided_answer,
                option_count=len(self.ensure_options(item)),
                question_number=item.question_number,
            )
            return letters or c.PLACEHOLDER_MCQ_ANSWER
        if is_missing_answer(item.provided_answer):
            return c.PLACEHOLDER_FREE_ANSWER
        return clean_answer_text(item.provided_answer) or c.PLACEHOLDER_FREE_ANSWER

    # --- Text ---

    def option_explanation(
        self, item: Item, index: int, framing: Framing, picker: OpenerPicker
    ) -> str:
        """Three or four sentences: verdict, optional context, core, tip."""
        options = self.ensure_options(item)
        option_text = _fragment(options[index]) if index < len(options) else ""
        opener = picker.pick(framing, index)
        verdict = self.book.verdict_phrases[framing]
        intro = f"{opener}: {verdict}, {option_text}." if option_text else f"{opener}: {verdict}."
        sentences = [intro]
        stem = _fragment(item.case_text or item.text)
        if stem:
            sentences.append(f"{self.book.context_label}: {stem}.")
        sentences.append(self.book.core_sentences[framing])
        sentences.append(self.book.tip_sentence)
        return " ".join(sentences[: c.MAX_EXPLANATION_SENTENCES])

    def summary(self, item: Item) -> str:
        """Multi-line reminder anchored on the question stem."""
        stem = _fragment(item.text or item.case_text) or self.book.general_stem
        lines = [f"{self.book.summary_start_label}: {stem}.", *self.book.summary_lines]
        return "\n".join(lines)

    def option_explanations(
        self, item: Item, correct_letters: str, picker: OpenerPicker | None = None
    ) -> tuple[str, ...]:
        """Explanations for every option, framed against ``correct_letters``."""
        picker = picker or self.picker_for(item)
        return tuple(
            self.option_explanation(item, i, framing_for(i, correct_letters), picker)
            for i in range(len(self.ensure_options(item)))
        )


def framing_for(index: int, correct_letters: str) -> Framing:
    """Correct/incorrect when the answer is known, undetermined otherwise."""
    letters = {ch for ch in correct_letters if ch in c.OPTION_LETTERS}
    if not letters:
        return Framing.UNDETERMINED
    if index < len(c.OPTION_LETTERS) and c.OPTION_LETTERS[index] in letters:
        return Framing.CORRECT
    return Framing.INCORRECT
