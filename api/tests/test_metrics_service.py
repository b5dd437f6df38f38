"""Metric heuristics: bounds, degenerate input and persistence."""

from __future__ import annotations

import pytest

from app.models.experiment import ParameterPoint, ParameterRange, ResolvedExperiment, TokenUsage
from app.services import metrics_service
from app.services.errors import NotFoundError, ScoringError

PROMPT = "Explain how ocean tides work and why they change during the month."

GOOD_ANSWER = (
    "First, tides are the regular rise and fall of ocean water. "
    "They are caused mainly by the gravitational pull of the moon. "
    "Furthermore, the sun adds a smaller pull that changes during the month.\n\n"
    "When the sun and moon align, the tides become stronger. "
    "Then, at quarter moons, their pulls partly cancel and tides weaken.\n\n"
    "In summary, ocean tides work through gravity and change with the lunar cycle."
)


def test_weights_sum_to_one():
    assert sum(metrics_service.METRIC_WEIGHTS.values()) == pytest.approx(1.0)


@pytest.mark.parametrize(
    "content",
    [GOOD_ANSWER, "Yes.", "word " * 400, "!!!", "Tides.\n\nTides.\n\nTides.", "ünïcödé text only"],
)
def test_all_scores_are_bounded(content):
    result = metrics_service.score(content, PROMPT)

    for field in (
        "coherence_score",
        "completeness_score",
        "length_score",
        "structure_score",
        "vocabulary_score",
        "overall_score",
    ):
        value = getattr(result, field)
        assert 0.0 <= value <= 1.0, field


def test_empty_content_scores_zero():
    result = metrics_service.score("   ", PROMPT)

    assert result.coherence_score == 0.0
    assert result.completeness_score == 0.0
    assert result.length_score == 0.0
    assert result.structure_score == 0.0
    assert result.vocabulary_score == 0.0
    assert result.overall_score == 0.0


def test_single_sentence_coherence_is_neutral():
    assert metrics_service.coherence_score("Tides follow the moon") == 0.5


def test_length_score_is_one_inside_optimal_window():
    prompt = "one two three four"
    assert metrics_service.length_score("w " * 10, prompt) == 1.0
    # far too short and far too long both decay but never below 0.2
    assert metrics_service.length_score("w", prompt) == pytest.approx(0.2)
    assert metrics_service.length_score("w " * 1000, prompt) == pytest.approx(0.2)
    assert metrics_service.length_score("w " * 5, prompt) == pytest.approx(6 / 8)


def test_structure_rewards_paragraphs_intro_and_conclusion():
    flat = metrics_service.structure_score("Tides rise. Tides fall. Tides repeat.")
    structured = metrics_service.structure_score(GOOD_ANSWER)

    assert structured > flat
    assert structured >= 0.7


def test_completeness_without_question_or_task_words_depends_on_keywords():
    result = metrics_service.completeness_score("Gravity moves ocean water.", "Ocean gravity")

    assert result == pytest.approx(1.0)


def test_vocabulary_zero_when_no_word_tokens():
    assert metrics_service.vocabulary_score("!!! ???") == 0.0


def test_coherence_combines_connectors_pronouns_and_topic_overlap():
    content = "The moon pulls water. However the moon also moves. It pulls again."

    # connectors capped at 0.3, one pronoun 0.2 * 0.2, topic overlap (2/4 + 1/4) / 2 * 0.5
    assert metrics_service.coherence_score(content) == pytest.approx(0.3 + 0.04 + 0.1875)


def test_pronoun_score_is_neutral_without_pronouns():
    assert metrics_service._pronoun_score("Tides rise and fall.") == 0.5
    assert metrics_service._pronoun_score("They pull it and it pulls them.") == pytest.approx(0.8)


@pytest.mark.parametrize(
    "prompt,content,expected",
    [
        ("What causes tides? Why do they change.", "Tides are caused by gravity.", 0.5),
        ("What causes tides? Why do they change.", "Tides change because gravity causes them.", 1.0),
        ("Describe tides.", "Anything at all.", 1.0),
    ],
)
def test_question_coverage_counts_answered_clauses(prompt, content, expected):
    assert metrics_service._question_coverage(content, prompt) == pytest.approx(expected)


@pytest.mark.parametrize(
    "prompt,content,expected",
    [
        ("Describe ocean tides.", "Tides rise and fall.", 4 / 6),
        ("Describe ocean tides.", "Tides rise and fall twice a day near coasts.", 1.0),
        ("Ocean tides.", "Tides.", 1.0),
    ],
)
def test_task_fulfillment_compares_against_twice_the_prompt(prompt, content, expected):
    assert metrics_service._task_fulfillment(content, prompt) == pytest.approx(expected)


def test_completeness_weights_keywords_questions_and_task():
    prompt = "Describe ocean tides."
    content = "Tides rise and fall."

    # keywords: tides covered, describe and ocean not; no question words; 4 of 6 words
    expected = (1 / 3) * 0.4 + 1.0 * 0.3 + (4 / 6) * 0.3
    assert metrics_service.completeness_score(content, prompt) == pytest.approx(expected)


def test_short_text_gets_neutral_progression():
    assert metrics_service._progression_score(["Tides rise", " Tides fall"]) == 0.5
    assert metrics_service.structure_score("Tides rise. Tides fall.") == pytest.approx(0.15)


def test_progression_counts_sentences_with_sequence_words():
    sentences = ["First tides rise", " Then tides fall", " Tides repeat"]

    assert metrics_service._progression_score(sentences) == pytest.approx(2 / 3)


def test_score_with_shared_segments_matches_individual_scores():
    result = metrics_service.score(GOOD_ANSWER, PROMPT)

    assert result.coherence_score == metrics_service.coherence_score(GOOD_ANSWER)
    assert result.completeness_score == metrics_service.completeness_score(GOOD_ANSWER, PROMPT)
    assert result.length_score == metrics_service.length_score(GOOD_ANSWER, PROMPT)
    assert result.structure_score == metrics_service.structure_score(GOOD_ANSWER)
    assert result.vocabulary_score == metrics_service.vocabulary_score(GOOD_ANSWER)


def test_overall_is_weighted_sum():
    overall = metrics_service.overall_score(
        coherence=1.0, completeness=0.0, length=1.0, structure=0.0, vocabulary=0.0
    )

    assert overall == pytest.approx(0.4)


def test_score_is_deterministic():
    assert metrics_service.score(GOOD_ANSWER, PROMPT) == metrics_service.score(GOOD_ANSWER, PROMPT)


def test_good_answer_beats_terse_answer():
    good = metrics_service.score(GOOD_ANSWER, PROMPT)
    terse = metrics_service.score("Moon.", PROMPT)

    assert good.overall_score > terse.overall_score


def _stored_response(store, content: str = GOOD_ANSWER):
    experiment = store.create_experiment(
        ResolvedExperiment(
            name="tides",
            prompt=PROMPT,
            model="gemini-test",
            temperature=ParameterRange(min=0.5, max=0.5),
            top_p=ParameterRange(min=0.9, max=0.9),
            top_k=ParameterRange(min=40, max=40),
            max_tokens=ParameterRange(min=200, max=200),
        )
    )
    point = ParameterPoint(temperature=0.5, top_p=0.9, top_k=40, max_tokens=200, model="gemini-test")
    usage = TokenUsage(prompt_tokens=1, completion_tokens=1, total_tokens=2)
    return store.create_response(experiment.id, 0, point, content, usage)


def test_calculate_metrics_persists_and_replaces(store):
    response = _stored_response(store)

    first = metrics_service.calculate_metrics(store, response.id)
    second = metrics_service.calculate_metrics(store, response.id)

    assert first == second
    assert store.get_metrics(response.id) == first
    assert store.count_metrics() == 1


def test_calculate_metrics_unknown_response(store):
    with pytest.raises(NotFoundError):
        metrics_service.calculate_metrics(store, "missing")


def test_calculate_metrics_wraps_scoring_failures(store, monkeypatch):
    response = _stored_response(store)

    def boom(content, prompt):
        raise ZeroDivisionError("bad heuristic")

    monkeypatch.setattr(metrics_service, "score", boom)

    with pytest.raises(ScoringError):
        metrics_service.calculate_metrics(store, response.id)
    assert store.get_metrics(response.id) is None
