# ABOUTME: Tests prerequisite-graph validation and minimum-cost learning path planning.
# ABOUTME: Covers optimality, ordering, unreachable goals, cycles, remediation bias and cancellation.

import pytest

from src.common.config import PlannerConfig
from src.common.errors import Cancelled, CycleDetectedError, MalformedRecordError, UnreachableGoalError
from src.common.schemas import CourseGraph, CourseNode
from src.planner.cancellation import CancellationToken
from src.planner.graph import GraphValidator, validate_graph
from src.planner.optimizer import PathOptimizer, course_cost

ALICE = {"algebra": 0.8, "python_basics": 0.2}


def _course(course_id, skills, prerequisites=(), duration=10.0, difficulty=1):
    return CourseNode(
        course_id=course_id,
        skill_gains=skills,
        prerequisites=frozenset(prerequisites),
        duration=duration,
        difficulty=difficulty,
    )


def _graph(*courses, version=1):
    return CourseGraph(version=version, courses={course.course_id: course for course in courses})


def _basic_catalog():
    return _graph(
        _course("CourseA", {"python_basics": 0.5}, duration=10),
        _course("CourseB", {"data_structures": 0.7}, ["CourseA"], duration=15),
    )


def _full_catalog():
    return _graph(
        _course("CourseA", {"python_basics": 0.5}, duration=10),
        _course("CourseB", {"data_structures": 0.7}, ["CourseA"], duration=15),
        _course("LoopsLab", {"loops": 0.6, "python_basics": 0.2}, ["CourseA"], duration=6),
        _course("AlgorithmsI", {"algorithms": 0.75, "data_structures": 0.2}, ["CourseB"], duration=20),
        _course("DataStructuresIntensive", {"data_structures": 0.8, "loops": 0.1}, ["CourseA", "LoopsLab"], duration=24),
    )


def test_prerequisite_is_scheduled_before_goal_course():
    path = PathOptimizer().plan_path(ALICE, {"data_structures"}, _basic_catalog(), learner_id="alice")

    assert path.course_ids == ("CourseA", "CourseB")
    assert path.learner_id == "alice"
    assert path.total_duration == pytest.approx(25.0)
    # Each course pays the full remediation penalty when nothing is weak.
    assert path.total_cost == pytest.approx(35.0)
    assert path.projected_skills["data_structures"] == pytest.approx(0.7)
    assert path.projected_skills["python_basics"] == pytest.approx(0.7)


def test_cheapest_cover_wins_over_larger_course():
    path = PathOptimizer().plan_path(ALICE, {"data_structures"}, _full_catalog())
    assert path.course_ids == ("CourseA", "CourseB")


def test_every_prerequisite_precedes_its_dependent():
    graph = _full_catalog()
    path = PathOptimizer().plan_path({}, {"algorithms", "python_basics"}, graph)

    position = {cid: idx for idx, cid in enumerate(path.course_ids)}
    for cid in path.course_ids:
        for prereq in graph.courses[cid].prerequisites:
            assert position[prereq] < position[cid]
    assert set(path.course_ids) == {"CourseA", "CourseB", "AlgorithmsI", "LoopsLab"}
    # Ties in topological order resolve to the smallest course id.
    assert path.course_ids == ("CourseA", "CourseB", "AlgorithmsI", "LoopsLab")


def test_single_course_covering_two_goals_beats_two_cheaper_courses():
    graph = _graph(
        _course("Both", {"g1": 0.8, "g2": 0.8}, duration=12),
        _course("OnlyG1", {"g1": 0.8}, duration=5),
        _course("OnlyG2", {"g2": 0.8}, duration=5),
    )
    path = PathOptimizer().plan_path({}, {"g1", "g2"}, graph)
    assert path.course_ids == ("Both",)
    assert path.total_cost == pytest.approx(17.0)


def test_equal_cost_alternatives_pick_smallest_course_id():
    graph = _graph(_course("Beta", {"goal": 0.9}), _course("Alpha", {"goal": 0.9}))
    optimizer = PathOptimizer()
    assert optimizer.plan_path({}, {"goal"}, graph).course_ids == ("Alpha",)
    assert optimizer.plan_path({}, {"goal"}, graph).course_ids == ("Alpha",)


def test_goal_threshold_accumulates_across_courses():
    graph = _graph(
        _course("Intro", {"stats": 0.4}, duration=4),
        _course("Applied", {"stats": 0.4}, ["Intro"], duration=4),
    )
    path = PathOptimizer().plan_path({}, {"stats"}, graph)
    assert path.course_ids == ("Intro", "Applied")
    assert path.projected_skills["stats"] == pytest.approx(0.8)


def test_remediation_biases_toward_weak_skill_course():
    graph = _graph(
        _course("Plain", {"goal": 0.8}, duration=10),
        _course("WithLoops", {"goal": 0.8, "loops": 0.5}, duration=11),
    )
    optimizer = PathOptimizer()
    assert optimizer.plan_path({}, {"goal"}, graph).course_ids == ("Plain",)

    path = optimizer.plan_path({}, {"goal"}, graph, deficiency_priorities={"loops": 0.8})
    assert path.course_ids == ("WithLoops",)
    assert path.remediated_skills == ("loops",)


def test_course_cost_shrinks_with_gap_closed():
    config = PlannerConfig()
    course = _course("WithLoops", {"goal": 0.8, "loops": 0.5}, duration=11)
    plain = course_cost(course, {}, config)
    remedial = course_cost(course, {"loops": 0.8}, config)
    assert plain.cost == pytest.approx(16.0)
    assert remedial.gap_closed == pytest.approx(0.5)
    assert remedial.cost == pytest.approx(11.0 + 5.0 / 3.0)


def test_completed_courses_satisfy_prerequisites():
    path = PathOptimizer().plan_path(ALICE, {"data_structures"}, _basic_catalog(), completed={"CourseA"})
    assert path.course_ids == ("CourseB",)
    assert path.completed == frozenset({"CourseA"})
    assert path.total_cost == pytest.approx(20.0)


def test_goals_already_met_yield_empty_path():
    path = PathOptimizer().plan_path({"data_structures": 0.9}, {"data_structures"}, _basic_catalog())
    assert path.course_ids == ()
    assert len(path) == 0
    assert path.total_cost == 0.0


def test_goal_no_course_teaches_is_unreachable():
    with pytest.raises(UnreachableGoalError) as excinfo:
        PathOptimizer().plan_path(ALICE, {"quantum_computing", "data_structures"}, _basic_catalog())
    assert excinfo.value.goals == ["quantum_computing"]


def test_goal_beyond_catalog_ceiling_is_unreachable():
    optimizer = PathOptimizer(PlannerConfig(goal_threshold=0.9))
    with pytest.raises(UnreachableGoalError):
        optimizer.plan_path(ALICE, {"data_structures"}, _basic_catalog())


def test_empty_goals_are_rejected():
    with pytest.raises(MalformedRecordError):
        PathOptimizer().plan_path(ALICE, set(), _basic_catalog())
    with pytest.raises(MalformedRecordError):
        PathOptimizer().plan_path(None, {"data_structures"}, _basic_catalog())


@pytest.mark.parametrize("skills", [{"data_structures": 1.7}, {"loops": -0.2}, {"loops": float("nan")}, {"loops": "high"}])
def test_out_of_range_skills_are_rejected(skills):
    with pytest.raises(MalformedRecordError):
        PathOptimizer().plan_path(skills, {"data_structures"}, _basic_catalog())


def test_cycle_is_detected_with_its_members():
    graph = _graph(
        _course("A", {"x": 0.5}, ["B"]),
        _course("B", {"y": 0.5}, ["A"]),
        _course("C", {"z": 0.9}),
    )
    with pytest.raises(CycleDetectedError) as excinfo:
        PathOptimizer().plan_path({}, {"z"}, graph)
    assert set(excinfo.value.cycle) == {"A", "B"}
    assert "->" in str(excinfo.value)


def test_self_prerequisite_is_a_cycle():
    with pytest.raises(CycleDetectedError):
        validate_graph(_graph(_course("A", {"x": 0.5}, ["A"])))


def test_unknown_prerequisite_is_malformed():
    with pytest.raises(MalformedRecordError):
        validate_graph(_graph(_course("B", {"y": 0.5}, ["Missing"])))


def test_validated_graph_order_and_teaching_courses():
    validated = validate_graph(_full_catalog())
    assert validated.order == ("CourseA", "CourseB", "AlgorithmsI", "LoopsLab", "DataStructuresIntensive")
    assert validated.courses_teaching("data_structures") == [
        cid for cid in validated.order if cid in {"CourseB", "AlgorithmsI", "DataStructuresIntensive"}
    ]


def test_validator_caches_per_catalog_version():
    validator = GraphValidator()
    optimizer = PathOptimizer(validator=validator)
    graph = _basic_catalog()
    optimizer.plan_path(ALICE, {"data_structures"}, graph)
    optimizer.plan_path(ALICE, {"data_structures"}, graph)
    assert validator.validations == 1

    optimizer.plan_path(ALICE, {"data_structures"}, CourseGraph(version=2, courses=dict(graph.courses)))
    assert validator.validations == 2


def test_cancelled_token_aborts_planning():
    token = CancellationToken()
    token.cancel()
    with pytest.raises(Cancelled):
        PathOptimizer().plan_path(ALICE, {"data_structures"}, _basic_catalog(), cancel_token=token)


def test_deadline_aborts_planning():
    now = [100.0]
    token = CancellationToken(timeout=5.0, clock=lambda: now[0])
    assert not token.cancelled
    now[0] = 106.0
    assert token.cancelled
    with pytest.raises(Cancelled):
        PathOptimizer().plan_path(ALICE, {"data_structures"}, _basic_catalog(), cancel_token=token)


def test_expansion_limit_raises_cancelled():
    graph = _graph(_course("OnlyG1", {"g1": 0.8}), _course("OnlyG2", {"g2": 0.8}))
    optimizer = PathOptimizer(PlannerConfig(max_expansions=1))
    with pytest.raises(Cancelled):
        optimizer.plan_path({}, {"g1", "g2"}, graph)


def test_token_rejects_timeout_and_deadline_together():
    with pytest.raises(ValueError):
        CancellationToken(timeout=1.0, deadline=2.0)
