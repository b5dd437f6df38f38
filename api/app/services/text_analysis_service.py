"""Pure text tokenization helpers shared by the metric heuristics.

Boundary rules are fixed: sentences split on runs of ``.``, ``!`` or ``?``
and paragraphs split on blank-line runs, with empty trimmed segments
dropped. Several sub-scores key off the first/last sentence and the
paragraph count, so these rules must not drift.
"""

from __future__ import annotations

import re
from typing import NamedTuple

from app.models.experiment import TextStats

_SENTENCE_SPLIT = re.compile(r"[.!?]+")
_PARAGRAPH_SPLIT = re.compile(r"\n\s*\n")
_NON_WORD = re.compile(r"[^\w\s]")
_WORD = re.compile(r"\b\w+\b")

COMMON_WORDS = frozenset(
    {
        "the", "and", "or", "but", "in", "on", "at", "to", "for", "of", "with", "by",
        "from", "up", "about", "into", "through", "during", "before", "after", "above",
        "below", "between", "among", "is", "are", "was", "were", "be", "been", "being",
        "have", "has", "had", "do", "does", "did", "will", "would", "could", "should",
        "may", "might", "must", "can", "this", "that", "these", "those", "i", "you",
        "he", "she", "it", "we", "they", "me", "him", "her", "us", "them",
    }
)


def split_sentences(text: str) -> list[str]:
    return [s for s in _SENTENCE_SPLIT.split(text) if s.strip()]


def split_paragraphs(text: str) -> list[str]:
    return [p for p in _PARAGRAPH_SPLIT.split(text) if p.strip()]


def whitespace_words(text: str) -> list[str]:
    return [w for w in text.split() if w]


def whitespace_word_count(text: str) -> int:
    """Pieces of a whitespace split; never 0, even for empty text."""
    return len(re.split(r"\s+", text))


def word_tokens(text: str) -> list[str]:
    return _WORD.findall(text.lower())


def is_common_word(word: str) -> bool:
    return word.lower() in COMMON_WORDS


def extract_keywords(text: str) -> list[str]:
    cleaned = _NON_WORD.sub(" ", text.lower())
    return [w for w in cleaned.split() if len(w) > 3 and not is_common_word(w)]


class Segments(NamedTuple):
    """One pass of every split the metrics need."""

    sentences: list[str]
    paragraphs: list[str]
    words: list[str]
    tokens: list[str]
    word_count: int


def segment(content: str) -> Segments:
    return Segments(
        sentences=split_sentences(content),
        paragraphs=split_paragraphs(content),
        words=whitespace_words(content),
        tokens=word_tokens(content),
        word_count=whitespace_word_count(content),
    )


def stats_from_segments(segments: Segments) -> TextStats:
    words = segments.words
    sentences = segments.sentences
    paragraphs = segments.paragraphs
    unique = {w.lower() for w in words}
    return TextStats(
        word_count=len(words),
        sentence_count=len(sentences),
        paragraph_count=len(paragraphs),
        avg_words_per_sentence=len(words) / len(sentences) if sentences else 0.0,
        unique_words=len(unique),
        vocabulary_diversity=len(unique) / len(words) if words else 0.0,
    )


def analyze_text(content: str) -> TextStats:
    return stats_from_segments(segment(content))
