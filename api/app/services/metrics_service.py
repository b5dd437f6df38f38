"""Heuristic response quality metrics.

Five independent sub-scores, each clamped to [0, 1], combined with fixed
weights into an overall score. Everything here is a pure function of
(content, prompt); the only side effect lives in calculate_metrics, which
persists through the store.
"""

from __future__ import annotations

import logging
import re
from collections import Counter
from typing import Optional

from app.models.experiment import MetricsResult
from app.services import text_analysis_service as text
from app.services.errors import NotFoundError, ScoringError

logger = logging.getLogger(__name__)

METRIC_WEIGHTS: dict[str, float] = {
    "coherence": 0.20,
    "completeness": 0.30,
    "length": 0.20,
    "structure": 0.15,
    "vocabulary": 0.15,
}

CONNECTORS = (
    "however",
    "therefore",
    "furthermore",
    "moreover",
    "additionally",
    "consequently",
    "thus",
    "hence",
    "meanwhile",
    "similarly",
    "on the other hand",
    "in contrast",
    "for example",
    "for instance",
)
PRONOUNS = ("he", "she", "it", "they", "him", "her", "them")
QUESTION_WORDS = ("what", "how", "why", "when", "where", "who", "which")
TASK_WORDS = ("write", "create", "describe", "explain", "analyze", "compare", "list")
INTRO_WORDS = ("introduction", "first", "initially", "begin", "start")
CONCLUSION_WORDS = ("conclusion", "finally", "in summary", "to conclude", "overall")
PROGRESSION_WORDS = ("first", "second", "third", "next", "then", "finally", "moreover", "furthermore")

_PRONOUN_PATTERNS = [re.compile(rf"\b{p}\b") for p in PRONOUNS]


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def _split_lower_words(value: str) -> set[str]:
    return set(re.split(r"\s+", value.lower()))


# --- coherence ---------------------------------------------------------------


def _connector_score(content: str, sentence_count: int) -> float:
    lowered = content.lower()
    count = sum(lowered.count(c) for c in CONNECTORS)
    return min(count / sentence_count, 0.3)


def _pronoun_score(content: str) -> float:
    lowered = content.lower()
    count = sum(len(p.findall(lowered)) for p in _PRONOUN_PATTERNS)
    return min(count / 5, 1.0) if count > 0 else 0.5


def _topic_consistency(sentences: list[str]) -> float:
    if len(sentences) < 2:
        return 1.0
    first = _split_lower_words(sentences[0])
    total = 0.0
    for sentence in sentences[1:]:
        overlap = first & _split_lower_words(sentence)
        total += len(overlap) / max(len(first), 1)
    return min(total / (len(sentences) - 1), 1.0)


def coherence_score(content: str, segments: Optional[text.Segments] = None) -> float:
    if not content.strip():
        return 0.0
    sentences = segments.sentences if segments else text.split_sentences(content)
    if len(sentences) < 2:
        return 0.5
    score = _connector_score(content, len(sentences))
    score += _pronoun_score(content) * 0.2
    score += _topic_consistency(sentences) * 0.5
    return _clamp(score)


# --- completeness ------------------------------------------------------------


def _keyword_coverage(content: str, prompt: str) -> float:
    prompt_keywords = text.extract_keywords(prompt)
    content_keywords = text.extract_keywords(content)
    covered = [
        kw for kw in prompt_keywords if any(kw in word or word in kw for word in content_keywords)
    ]
    return len(covered) / max(len(prompt_keywords), 1)


def _question_coverage(content: str, prompt: str) -> float:
    lowered_prompt = prompt.lower()
    if not any(word in lowered_prompt for word in QUESTION_WORDS):
        return 1.0
    questions = [
        clause
        for clause in re.split(r"[.!?]+", prompt)
        if any(word in clause.lower() for word in QUESTION_WORDS)
    ]
    if not questions:
        return 1.0
    lowered_content = content.lower()
    answered = 0
    for question in questions:
        words = re.split(r"\s+", question.lower())
        if any(len(word) > 3 and word in lowered_content for word in words):
            answered += 1
    return answered / len(questions)


def _task_fulfillment(content: str, prompt: str, content_length: Optional[int] = None) -> float:
    lowered_prompt = prompt.lower()
    if not any(word in lowered_prompt for word in TASK_WORDS):
        return 1.0
    if content_length is None:
        content_length = text.whitespace_word_count(content)
    prompt_length = text.whitespace_word_count(prompt)
    return min(content_length / (prompt_length * 2), 1.0)


def completeness_score(content: str, prompt: str, segments: Optional[text.Segments] = None) -> float:
    if not content.strip() or not prompt.strip():
        return 0.0
    score = (
        _keyword_coverage(content, prompt) * 0.4
        + _question_coverage(content, prompt) * 0.3
        + _task_fulfillment(content, prompt, segments.word_count if segments else None) * 0.3
    )
    return _clamp(score)


# --- length ------------------------------------------------------------------


def length_score(content: str, prompt: str, segments: Optional[text.Segments] = None) -> float:
    """1.0 inside [2x, 5x] the prompt word count, proportional decay outside, floor 0.2."""
    if not content.strip():
        return 0.0
    words = segments.word_count if segments else text.whitespace_word_count(content)
    prompt_words = text.whitespace_word_count(prompt)
    optimal_min = prompt_words * 2
    optimal_max = prompt_words * 5
    if words < optimal_min:
        return _clamp(max(words / optimal_min, 0.2))
    if words > optimal_max:
        return _clamp(max(optimal_max / words, 0.2))
    return 1.0


# --- structure ---------------------------------------------------------------


def _has_introduction(sentences: list[str]) -> bool:
    first = sentences[0].lower() if sentences else ""
    return any(word in first for word in INTRO_WORDS)


def _has_conclusion(sentences: list[str]) -> bool:
    last = sentences[-1].lower() if sentences else ""
    return any(word in last for word in CONCLUSION_WORDS)


def _progression_score(sentences: list[str]) -> float:
    if len(sentences) < 3:
        return 0.5
    hits = sum(1 for s in sentences if any(word in s.lower() for word in PROGRESSION_WORDS))
    return min(hits / len(sentences), 1.0)


def structure_score(content: str, segments: Optional[text.Segments] = None) -> float:
    if not content.strip():
        return 0.0
    sentences = segments.sentences if segments else text.split_sentences(content)
    paragraphs = segments.paragraphs if segments else text.split_paragraphs(content)
    score = 0.0
    if len(paragraphs) > 1:
        score += 0.3
    if _has_introduction(sentences):
        score += 0.2
    if _has_conclusion(sentences):
        score += 0.2
    score += _progression_score(sentences) * 0.3
    return _clamp(score)


# --- vocabulary --------------------------------------------------------------


def _repetition_score(words: list[str]) -> float:
    if not words:
        return 0.0
    most_common = Counter(words).most_common(1)[0][1]
    return max(1.0 - most_common / len(words), 0.0)


def vocabulary_score(content: str, segments: Optional[text.Segments] = None) -> float:
    if not content.strip():
        return 0.0
    words = segments.tokens if segments else text.word_tokens(content)
    if not words:
        return 0.0
    diversity = len(set(words)) / len(words)
    sophisticated = sum(1 for w in words if len(w) > 6 and not text.is_common_word(w))
    score = diversity * 0.4 + (sophisticated / len(words)) * 0.3 + _repetition_score(words) * 0.3
    return _clamp(score)


# --- combination -------------------------------------------------------------


def overall_score(
    *,
    coherence: float,
    completeness: float,
    length: float,
    structure: float,
    vocabulary: float,
) -> float:
    total = (
        coherence * METRIC_WEIGHTS["coherence"]
        + completeness * METRIC_WEIGHTS["completeness"]
        + length * METRIC_WEIGHTS["length"]
        + structure * METRIC_WEIGHTS["structure"]
        + vocabulary * METRIC_WEIGHTS["vocabulary"]
    )
    return _clamp(total)


def score(content: str, prompt: str) -> MetricsResult:
    """Score one response against the prompt that produced it. The content is split once."""
    segments = text.segment(content)
    stats = text.stats_from_segments(segments)
    coherence = coherence_score(content, segments)
    completeness = completeness_score(content, prompt, segments)
    length = length_score(content, prompt, segments)
    structure = structure_score(content, segments)
    vocabulary = vocabulary_score(content, segments)
    return MetricsResult(
        coherence_score=coherence,
        completeness_score=completeness,
        length_score=length,
        structure_score=structure,
        vocabulary_score=vocabulary,
        overall_score=overall_score(
            coherence=coherence,
            completeness=completeness,
            length=length,
            structure=structure,
            vocabulary=vocabulary,
        ),
        **stats.model_dump(),
    )


def calculate_metrics(store, response_id: str) -> MetricsResult:
    """Score a stored response and upsert its metrics (replaces any previous row)."""
    response = store.get_response(response_id)
    if response is None:
        raise NotFoundError(f"Response {response_id} not found")
    experiment = store.get_experiment(response.experiment_id)
    if experiment is None:
        raise NotFoundError(f"Experiment {response.experiment_id} not found")
    try:
        result = score(response.content, experiment.prompt)
    except Exception as exc:
        raise ScoringError(f"scoring failed for response {response_id}: {exc}") from exc
    store.upsert_metrics(response_id, result)
    logger.info(
        "metrics_calculated response_id=%s experiment_id=%s overall=%.4f",
        response_id,
        response.experiment_id,
        result.overall_score,
    )
    return result
