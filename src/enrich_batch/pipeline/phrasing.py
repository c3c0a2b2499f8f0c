"""Seeded, non-repeating selection of opening connectives.

Both the fallback synthesizer and the merger draw openers from here, so an
item's explanations read the same way no matter which path produced them.
Selection depends only on the item's content hash and the slot index, never
on global random state.
"""

from dataclasses import dataclass
import enum
import hashlib

from enrich_batch.core.text import opening_word


class Framing(enum.StrEnum):
    CORRECT = "correct"
    INCORRECT = "incorrect"
    UNDETERMINED = "undetermined"


@dataclass(frozen=True)
class PhraseBook:
    """Locale-specific wording for synthesized explanations."""

    openers: dict[Framing, tuple[str, ...]]
    verdict_phrases: dict[Framing, str]
    context_label: str
    core_sentences: dict[Framing, str]
    tip_sentence: str
    summary_lines: tuple[str, ...]
    summary_start_label: str
    general_stem: str


FRENCH = PhraseBook(
    openers={
        Framing.CORRECT: (
            "Exactement", "Effectivement", "Oui", "Tout à fait",
            "Précisément", "Bien vu", "Pertinent", "Juste",
        ),
        Framing.INCORRECT: (
            "En réalité", "Au contraire", "Pas du tout", "Erreur fréquente",
            "Attention", "Faux", "Hélas non", "Contrairement",
        ),
        Framing.UNDETERMINED: (
            "Vérification", "Prudence", "Discussion", "Nuance",
            "Point clé", "Examen", "Remarque", "Notons",
        ),
    },
    verdict_phrases={
        Framing.CORRECT: "proposition correcte",
        Framing.INCORRECT: "proposition incorrecte",
        Framing.UNDETERMINED: "proposition à confronter au corrigé",
    },
    context_label="Contexte",
    core_sentences={
        Framing.CORRECT: (
            "Argumentation: le critère clé qui valide cette proposition "
            "et l'élément qui la distingue des autres choix."
        ),
        Framing.INCORRECT: (
            "Correction ciblée: rectifier l'idée reçue et préciser le piège "
            "fréquent avec l'élément discriminant."
        ),
        Framing.UNDETERMINED: (
            "Analyse: confronter cette proposition aux critères du cours "
            "avant de trancher."
        ),
    },
    tip_sentence="Repère à retenir: le signe ou le seuil précis utile en pratique.",
    summary_lines=(
        "Notion centrale: synthèse courte du concept clé.",
        "Mécanisme: enchaînement logique à connaître.",
        "Piège: l'erreur fréquente et comment l'éviter.",
        "Exemple: vignette concrète pour fixer les idées.",
    ),
    summary_start_label="Point de départ",
    general_stem="question du cours",
)

ENGLISH = PhraseBook(
    openers={
        Framing.CORRECT: (
            "Exactly", "Indeed", "Yes", "Absolutely",
            "Precisely", "Well spotted", "Right", "Correct",
        ),
        Framing.INCORRECT: (
            "Actually", "On the contrary", "Not at all", "Common mistake",
            "Careful", "False", "Unfortunately not", "Contrary to this",
        ),
        Framing.UNDETERMINED: (
            "Verify", "Caution", "Open point", "Nuance",
            "Key point", "Examine", "Note", "Consider",
        ),
    },
    verdict_phrases={
        Framing.CORRECT: "correct statement",
        Framing.INCORRECT: "incorrect statement",
        Framing.UNDETERMINED: "statement to check against the answer key",
    },
    context_label="Context",
    core_sentences={
        Framing.CORRECT: (
            "Reasoning: the key criterion that supports this statement "
            "and what sets it apart from the other choices."
        ),
        Framing.INCORRECT: (
            "Targeted correction: fix the misconception and name the common "
            "trap along with the discriminating feature."
        ),
        Framing.UNDETERMINED: (
            "Analysis: weigh this statement against the course criteria "
            "before deciding."
        ),
    },
    tip_sentence="Takeaway: the precise sign or threshold that matters in practice.",
    summary_lines=(
        "Core idea: a short synthesis of the key concept.",
        "Mechanism: the logical chain to know.",
        "Pitfall: the frequent error and how to avoid it.",
        "Example: a concrete vignette to anchor the idea.",
    ),
    summary_start_label="Starting point",
    general_stem="course question",
)

PHRASE_BOOKS: dict[str, PhraseBook] = {"fr": FRENCH, "en": ENGLISH}


def _index_openers() -> dict[str, frozenset[str]]:
    owners: dict[str, set[str]] = {}
    for locale, book in PHRASE_BOOKS.items():
        for pool in book.openers.values():
            for opener in pool:
                owners.setdefault(opener.lower(), set()).add(locale)
    return {opener: frozenset(locales) for opener, locales in owners.items()}


_OPENER_LOCALES = _index_openers()
_ALL_OPENERS = sorted(_OPENER_LOCALES, key=len, reverse=True)


def phrase_book(locale: str) -> PhraseBook:
    try:
        return PHRASE_BOOKS[locale]
    except KeyError:
        raise ValueError(
            f"Unsupported locale {locale!r}; expected one of {sorted(PHRASE_BOOKS)}"
        ) from None


def leading_connective(text: str) -> tuple[str, frozenset[str]] | None:
    """Find a phrase-book opener at the start of ``text``.

    Returns the opener as written in the text and the locales whose books
    contain it, longest match first.
    """
    stripped = text.lstrip()
    lowered = stripped.lower()
    for opener in _ALL_OPENERS:
        if lowered.startswith(opener) and not lowered[len(opener) : len(opener) + 1].isalnum():
            return stripped[: len(opener)], _OPENER_LOCALES[opener]
    return None


def content_seed(content: str) -> int:
    """Stable integer seed from item content (independent of PYTHONHASHSEED)."""
    digest = hashlib.sha256(content.encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big")


class OpenerPicker:
    """Picks openers for one item, never reusing an opening word.

    The starting position in each pool is ``(seed + slot) % len(pool)``; the
    picker walks forward from there until it finds an opener whose first
    word has not been used yet in this item.
    """

    def __init__(self, book: PhraseBook, seed: int) -> None:
        self._book = book
        self._seed = seed
        self._used: set[str] = set()

    def reserve(self, text: str) -> None:
        """Mark the opening word of existing text as used."""
        word = opening_word(text)
        if word:
            self._used.add(word)

    def is_used(self, text: str) -> bool:
        return opening_word(text) in self._used

    def pick(self, framing: Framing, slot: int) -> str:
        pool = self._book.openers[framing]
        start = (self._seed + slot) % len(pool)
        for step in range(len(pool)):
            candidate = pool[(start + step) % len(pool)]
            if opening_word(candidate) not in self._used:
                self.reserve(candidate)
                return candidate
        # More slots than openers in the pool: reuse the seeded choice.
        return pool[start]
