"""Text repair and normalization helpers.

All functions here are pure and total: they accept ``None`` or empty input
and return an empty value instead of raising.
"""

import html
import re

from enrich_batch.constants import (
    MAX_EXPLANATION_SENTENCES,
    MIN_EXPLANATION_CHARS,
    MIN_NON_EMPTY_LINES,
    MIN_SENTENCE_MARKS,
    OPTION_LETTERS,
)

_TAG_RE = re.compile(r"<[^>]+>")
_WS_RE = re.compile(r"[ \u00a0\t\r\n]+")
_MULTI_SPACE_RE = re.compile(r"\s{2,}")
_SENTENCE_SPLIT_RE = re.compile(r"(?<=[.!?])\s+")
_SENTENCE_MARK_RE = re.compile(r"[.!?]")
_INTERROGATIVE_RE = re.compile(
    r"\b(quelle|quels|quelles|lequel|laquelle|lesquels|lesquelles|pourquoi"
    r"|comment|quand|combien|which|what|why|how|when)\b",
    re.IGNORECASE,
)
_ANSWER_LABEL_RE = re.compile(
    r"^\s*(r[ée]ponse|answer|corrig[ée]|correction|bonne\s*r[ée]ponse)\s*[:\-–]\s*",
    re.IGNORECASE,
)
_NO_ANSWER_RE = re.compile(r"^\s*(pas\s*de\s*r[ée]ponse|no\s*answer|\?)?\s*$", re.IGNORECASE)
_CASE_PART_RE = re.compile(r"^(\d+)\s*([A-E]+)")
_CASE_HINT_RE = re.compile(r"\d\s*[A-E]+")
_OPENING_WORD_RE = re.compile(r"^\W*([\w'’-]+)", re.UNICODE)
_LEADING_LETTER_RE = re.compile(r"^[A-E]\s*[.)\-]\s+")
_TOKEN_RE = re.compile(r"[^A-Z]+")


def strip_html(text: str | None) -> str:
    """Remove tags and decode entities."""
    if not text:
        return ""
    return html.unescape(_TAG_RE.sub(" ", text))


def normalize_whitespace(text: str | None) -> str:
    """Collapse runs of whitespace (including NBSP and newlines) to one space."""
    if not text:
        return ""
    return _MULTI_SPACE_RE.sub(" ", _WS_RE.sub(" ", text)).strip()


def repair_question_text(text: str | None) -> str:
    """Clean a question stem and close interrogatives with a question mark."""
    s = strip_html(text).replace("“", '"').replace("”", '"').replace("’", "'")
    s = normalize_whitespace(s)
    if s and _INTERROGATIVE_RE.search(s) and s[-1] not in "?!.":
        s += " ?"
    return s


def repair_option_text(text: str | None) -> str:
    return normalize_whitespace(strip_html(text))


def clean_answer_text(text: str | None) -> str:
    """Strip answer labels such as ``Réponse:`` from free-text answers."""
    s = _ANSWER_LABEL_RE.sub("", strip_html(text))
    return normalize_whitespace(s)


def is_missing_answer(text: str | None) -> bool:
    """True for empty answers and explicit "no answer" markers."""
    return _NO_ANSWER_RE.match(text or "") is not None


def split_sentences(text: str | None) -> list[str]:
    if not text:
        return []
    collapsed = re.sub(r"\s+", " ", text).strip()
    return [s.strip() for s in _SENTENCE_SPLIT_RE.split(collapsed) if s.strip()]


def clamp_sentences(text: str | None, limit: int = MAX_EXPLANATION_SENTENCES) -> str:
    """Keep at most ``limit`` sentences, each terminated with punctuation."""
    sentences = split_sentences(text)[:limit]
    return " ".join(s if s[-1] in ".!?" else f"{s}." for s in sentences)


def count_sentence_marks(text: str | None) -> int:
    return len(_SENTENCE_MARK_RE.findall(text or ""))


def count_non_empty_lines(text: str | None) -> int:
    return sum(1 for line in (text or "").splitlines() if line.strip())


def is_explanation_sufficient(text: str | None) -> bool:
    """Length/structure heuristic for explanation fields.

    Sufficient when at least 120 characters long and either carries three
    sentence-ending marks or spans four non-empty lines.
    """
    stripped = (text or "").strip()
    if len(stripped) < MIN_EXPLANATION_CHARS:
        return False
    return (
        count_sentence_marks(stripped) >= MIN_SENTENCE_MARKS
        or count_non_empty_lines(stripped) >= MIN_NON_EMPTY_LINES
    )


def opening_word(text: str | None) -> str:
    """Lower-cased first word, used to enforce connective variety."""
    match = _OPENING_WORD_RE.match(text or "")
    return match.group(1).lower() if match else ""


def strip_option_label(text: str) -> str:
    """Drop a leading ``A)`` / ``B.`` label the model sometimes echoes."""
    return _LEADING_LETTER_RE.sub("", text.strip())


def canonical_letters(raw: str | None, option_count: int = len(OPTION_LETTERS)) -> str:
    """Canonicalize a letter answer: ``"c a, C"`` -> ``"A, C"``.

    Letters beyond ``option_count`` are discarded; the result is sorted and
    deduplicated.
    """
    allowed = OPTION_LETTERS[: max(0, min(option_count, len(OPTION_LETTERS)))]
    found: set[str] = set()
    for token in _TOKEN_RE.split((raw or "").upper()):
        # Only pure letter runs count ("AC", "B"), never words.
        if token and all(ch in OPTION_LETTERS for ch in token):
            found.update(ch for ch in token if ch in allowed)
    return ", ".join(sorted(found))


def case_series_letters(raw: str | None, question_number: int | None) -> str | None:
    """Pick this question's letters from a case-series answer like ``1AB, 2E``.

    Returns ``None`` when the answer is not in case-series form, and an empty
    string when it is but has no entry for ``question_number``.
    """
    if not raw or not question_number:
        return None
    s = normalize_whitespace(raw.upper())
    if not _CASE_HINT_RE.search(s):
        return None
    mapping: dict[int, str] = {}
    for part in re.split(r"[;,]+", s):
        match = _CASE_PART_RE.match(part.strip())
        if match:
            mapping.setdefault(int(match.group(1)), match.group(2))
    return canonical_letters(mapping.get(question_number, ""))


def canonical_answer(
    raw: str | None, *, option_count: int, question_number: int | None = None
) -> str:
    """Canonical letter set for an MCQ answer in any accepted encoding."""
    if is_missing_answer(raw):
        return ""
    raw = _ANSWER_LABEL_RE.sub("", raw or "")
    series = case_series_letters(raw, question_number)
    if series is not None:
        return canonical_letters(series, option_count)
    return canonical_letters(raw, option_count)
