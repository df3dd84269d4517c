# ABOUTME: Tests recency-weighted deficiency scoring over quiz histories.
# ABOUTME: Covers weak-skill flagging, ordering robustness, idempotence and monotonicity.

from datetime import datetime, timedelta, timezone

import pytest

from src.common.config import WeaknessConfig
from src.common.errors import MalformedRecordError
from src.common.schemas import ProgressRecord, QuizAttempt
from src.engine.weakness import WeaknessAnalyzer, analyze, attempts_frame

T0 = datetime(2024, 3, 1, 10, tzinfo=timezone.utc)


def _attempts(skill, scores, start=0):
    return tuple(QuizAttempt(timestamp=T0 + timedelta(days=start + i), score=s, skill=skill) for i, s in enumerate(scores))


def _record(course_id, attempts, learner_id="bob"):
    return ProgressRecord(learner_id=learner_id, course_id=course_id, attempts=tuple(attempts))


def test_recent_failures_flag_skill_as_weak():
    history = [_record("LoopsLab", _attempts("loops", [0.2, 0.3, 0.1]))]
    profile = WeaknessAnalyzer().analyze(history)

    # Weights 0.64, 0.8, 1.0 from oldest to newest.
    expected = 1.0 - (0.2 * 0.64 + 0.3 * 0.8 + 0.1 * 1.0) / (0.64 + 0.8 + 1.0)
    assert profile.deficiencies["loops"] == pytest.approx(expected)
    assert profile.deficiencies["loops"] > 0.6
    assert profile.weak_skills == ("loops",)
    assert profile.is_weak("loops")
    assert profile.attempt_counts == {"loops": 3}
    assert profile.learner_id == "bob"
    assert profile.as_of == T0 + timedelta(days=2)


def test_recent_success_outweighs_old_failures():
    improving = WeaknessAnalyzer().analyze([_record("LoopsLab", _attempts("loops", [0.0, 0.0, 1.0]))])
    declining = WeaknessAnalyzer().analyze([_record("LoopsLab", _attempts("loops", [1.0, 0.0, 0.0]))])
    assert improving.deficiencies["loops"] < declining.deficiencies["loops"]


def test_min_attempts_guards_single_failure():
    profile = WeaknessAnalyzer().analyze([_record("LoopsLab", _attempts("loops", [0.0]))])
    assert profile.deficiencies["loops"] == pytest.approx(1.0)
    assert profile.weak_skills == ()

    lenient = WeaknessAnalyzer(WeaknessConfig(min_attempts=1)).analyze([_record("LoopsLab", _attempts("loops", [0.0]))])
    assert lenient.weak_skills == ("loops",)


def test_weak_skills_are_ordered_by_deficiency_then_tag():
    history = [
        _record("LoopsLab", _attempts("loops", [0.1, 0.1])),
        _record("CourseB", _attempts("data_structures", [0.0, 0.0], start=5)),
        _record("CourseC", _attempts("arrays", [0.0, 0.0], start=10)),
    ]
    profile = analyze(history)
    assert profile.weak_skills == ("arrays", "data_structures", "loops")
    assert list(profile.priorities()) == ["arrays", "data_structures", "loops"]


def test_out_of_order_delivery_matches_sorted_history():
    ordered = _attempts("loops", [0.2, 0.9, 0.1, 0.4])
    shuffled = (ordered[2], ordered[0], ordered[3], ordered[1])

    expected = analyze([_record("LoopsLab", ordered)])
    actual = analyze([_record("LoopsLab", shuffled)])
    assert actual.deficiencies == expected.deficiencies
    assert actual.weak_skills == expected.weak_skills


def test_attempts_across_courses_merge_by_time():
    split = [
        _record("LoopsLab", (_attempts("loops", [0.2, 0.3, 0.1])[0], _attempts("loops", [0.2, 0.3, 0.1])[2])),
        _record("CourseA", (_attempts("loops", [0.2, 0.3, 0.1])[1],)),
    ]
    single = [_record("LoopsLab", _attempts("loops", [0.2, 0.3, 0.1]))]
    assert analyze(split).deficiencies["loops"] == pytest.approx(analyze(single).deficiencies["loops"])


def test_analysis_is_idempotent():
    history = [
        _record("LoopsLab", _attempts("loops", [0.2, 0.3, 0.1])),
        _record("CourseA", _attempts("python_basics", [0.9, 0.7])),
    ]
    analyzer = WeaknessAnalyzer()
    first = analyzer.analyze(history)
    second = analyzer.analyze(history)
    assert first == second


def test_failing_attempt_never_lowers_deficiency():
    scores = [0.9, 0.4, 0.7]
    analyzer = WeaknessAnalyzer()
    previous = analyzer.analyze([_record("LoopsLab", _attempts("loops", scores))]).deficiencies["loops"]
    for _ in range(5):
        scores.append(0.0)
        current = analyzer.analyze([_record("LoopsLab", _attempts("loops", scores))]).deficiencies["loops"]
        assert current >= previous
        previous = current


def test_empty_history_yields_empty_profile():
    profile = WeaknessAnalyzer().analyze([], learner_id="carol")
    assert profile.learner_id == "carol"
    assert profile.deficiencies == {}
    assert profile.weak_skills == ()
    assert profile.as_of is None

    no_attempts = WeaknessAnalyzer().analyze([ProgressRecord(learner_id="carol", course_id="CourseA", completed=True)])
    assert no_attempts.deficiencies == {}


def test_mixed_learners_are_rejected():
    history = [
        _record("LoopsLab", _attempts("loops", [0.2]), learner_id="bob"),
        _record("CourseA", _attempts("loops", [0.2]), learner_id="alice"),
    ]
    with pytest.raises(MalformedRecordError):
        analyze(history)


@pytest.mark.parametrize(
    "attempt",
    [
        QuizAttempt(timestamp=T0, score=1.2, skill="loops"),
        QuizAttempt(timestamp=T0, score=float("nan"), skill="loops"),
        QuizAttempt(timestamp=T0, score=0.5, skill=""),
        QuizAttempt(timestamp=None, score=0.5, skill="loops"),
    ],
)
def test_malformed_attempts_are_rejected(attempt):
    with pytest.raises(MalformedRecordError):
        attempts_frame([_record("LoopsLab", (attempt,))])


def test_attempts_frame_sorts_by_timestamp():
    attempts = _attempts("loops", [0.1, 0.2, 0.3])
    frame = attempts_frame([_record("LoopsLab", tuple(reversed(attempts)))])
    assert frame["score"].tolist() == [0.1, 0.2, 0.3]
    assert frame["timestamp"].is_monotonic_increasing
