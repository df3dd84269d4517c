# ABOUTME: Computes minimum-cost, prerequisite-respecting course sequences toward goal skills.
# ABOUTME: Runs a topological-order dynamic program followed by a best-first cover search.

from __future__ import annotations

import heapq
import numbers
from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Set, Tuple

from loguru import logger

from src.common.config import PlannerConfig
from src.common.errors import Cancelled, MalformedRecordError, UnreachableGoalError
from src.common.schemas import CourseGraph, CourseNode, LearningPath

from .cancellation import CancellationToken
from .graph import GraphValidator, ValidatedGraph, lexicographic_order

EPSILON = 1e-9


@dataclass(frozen=True)
class CourseCost:
    course_id: str
    duration: float
    cost: float
    gap_closed: float


def course_cost(course: CourseNode, deficiencies: Mapping[str, float], config: PlannerConfig) -> CourseCost:
    """
    Duration plus a remediation penalty that shrinks as the course closes more
    deficiency on weak skills.
    """

    gap_closed = sum(
        min(gain, deficiencies[skill]) for skill, gain in course.skill_gains.items() if skill in deficiencies
    )
    penalty = config.remediation_penalty / (1.0 + config.remediation_weight * gap_closed)
    return CourseCost(course.course_id, course.duration, course.duration + penalty, gap_closed)


def project_skills(
    current: Mapping[str, float], courses: Iterable[CourseNode]
) -> Dict[str, float]:
    projected = dict(current)
    for course in courses:
        for skill, gain in course.skill_gains.items():
            projected[skill] = min(1.0, projected.get(skill, 0.0) + gain)
    return projected


class PathOptimizer:
    """
    Plans a learning path over a validated prerequisite DAG.

    Steps:
    1. Validate the graph (cached per catalog version) and fail fast on goals
       no course teaches.
    2. Walk the courses in topological order, computing for each one the set of
       uncompleted prerequisites it drags in and the cost of reaching it.
    3. Best-first search over prerequisite-closed course sets, keyed by
       (cost, duration, course-id sequence); the first set that covers every
       goal at the threshold is the optimum.
    """

    def __init__(self, config: Optional[PlannerConfig] = None, validator: Optional[GraphValidator] = None):
        self.config = config or PlannerConfig()
        self.validator = validator or GraphValidator()

    def plan_path(
        self,
        current_skills: Mapping[str, float],
        goal_skill_tags: Iterable[str],
        course_graph: CourseGraph,
        deficiency_priorities: Optional[Mapping[str, float]] = None,
        completed: Iterable[str] = (),
        cancel_token: Optional[CancellationToken] = None,
        learner_id: str = "",
    ) -> LearningPath:
        if not isinstance(current_skills, Mapping):
            raise MalformedRecordError("current skill vector is required for planning")
        for skill, level in current_skills.items():
            if isinstance(level, bool) or not isinstance(level, numbers.Real) or not 0.0 <= level <= 1.0:
                raise MalformedRecordError(f"proficiency for '{skill}' must lie in [0, 1], got {level!r}")
        goals = frozenset(str(tag).strip() for tag in (goal_skill_tags or ()) if str(tag).strip())
        if not goals:
            raise MalformedRecordError("goal skill set must be non-empty when planning a path")

        token = cancel_token or CancellationToken()
        token.raise_if_cancelled("validation")
        validated = self.validator.validate(course_graph)

        untaught = {goal for goal in goals if not validated.courses_teaching(goal)}
        if untaught:
            raise UnreachableGoalError(untaught, "no course in the catalog teaches it")

        threshold = self.config.goal_threshold
        deficiencies = dict(deficiency_priorities or {})
        done = frozenset(completed) & frozenset(validated.courses)
        unsatisfied = {goal for goal in goals if current_skills.get(goal, 0.0) < threshold - EPSILON}
        if not unsatisfied:
            return self._build_path(learner_id, (), goals, current_skills, validated, {}, deficiencies, done)

        costs = {
            cid: course_cost(course, deficiencies, self.config) for cid, course in validated.courses.items()
        }
        closures, reach_cost = self._prerequisite_closures(validated, done, costs, token)

        focus = unsatisfied | set(deficiencies)
        candidates = sorted(
            (
                cid
                for cid in validated.order
                if cid not in done and focus.intersection(validated.courses[cid].skill_gains)
            ),
            key=lambda cid: (reach_cost[cid], cid),
        )
        reachable = set().union(*(closures[cid] for cid in candidates)) if candidates else set()
        ceiling = project_skills(current_skills, (validated.courses[cid] for cid in reachable))
        short = {goal for goal in unsatisfied if ceiling.get(goal, 0.0) < threshold - EPSILON}
        if short:
            raise UnreachableGoalError(
                short, f"available courses cannot raise proficiency to {threshold:.2f}"
            )

        chosen = self._search(current_skills, unsatisfied, candidates, closures, costs, validated, token)
        return self._build_path(learner_id, chosen, goals, current_skills, validated, costs, deficiencies, done)

    def _prerequisite_closures(
        self,
        validated: ValidatedGraph,
        done: FrozenSet[str],
        costs: Mapping[str, CourseCost],
        token: CancellationToken,
    ) -> Tuple[Dict[str, FrozenSet[str]], Dict[str, float]]:
        """Courses (self included) that must be taken to unlock each course, and their total cost."""

        closures: Dict[str, FrozenSet[str]] = {}
        reach_cost: Dict[str, float] = {}
        for course_id in validated.order:
            token.raise_if_cancelled("prerequisite closure")
            if course_id in done:
                closures[course_id] = frozenset()
                reach_cost[course_id] = 0.0
                continue
            needed: Set[str] = {course_id}
            for prereq in validated.courses[course_id].prerequisites:
                needed |= closures[prereq]
            closures[course_id] = frozenset(needed)
            reach_cost[course_id] = sum(costs[cid].cost for cid in needed)
        return closures, reach_cost

    def _search(
        self,
        current_skills: Mapping[str, float],
        unsatisfied: Set[str],
        candidates: List[str],
        closures: Mapping[str, FrozenSet[str]],
        costs: Mapping[str, CourseCost],
        validated: ValidatedGraph,
        token: CancellationToken,
    ) -> Tuple[str, ...]:
        threshold = self.config.goal_threshold
        start: FrozenSet[str] = frozenset()
        heap = [(0.0, 0.0, (), start)]
        settled: Set[FrozenSet[str]] = set()
        expansions = 0

        while heap:
            token.raise_if_cancelled("path search")
            cost, duration, sequence, state = heapq.heappop(heap)
            if state in settled:
                continue
            settled.add(state)

            projected = project_skills(current_skills, (validated.courses[cid] for cid in state))
            missing = {goal for goal in unsatisfied if projected.get(goal, 0.0) < threshold - EPSILON}
            if not missing:
                logger.debug("path search settled after {} expansions (cost={:.3f})", expansions, cost)
                return sequence

            expansions += 1
            if expansions > self.config.max_expansions:
                raise Cancelled(f"Path search exceeded {self.config.max_expansions} expansions")

            for cid in candidates:
                if cid in state or not missing.intersection(validated.courses[cid].skill_gains):
                    continue
                nxt = state | closures[cid]
                if nxt in settled:
                    continue
                added = nxt - state
                next_cost = round(cost + sum(costs[a].cost for a in added), 9)
                next_duration = round(duration + sum(costs[a].duration for a in added), 9)
                heapq.heappush(heap, (next_cost, next_duration, lexicographic_order(validated, nxt), nxt))

        raise UnreachableGoalError(unsatisfied, "no prerequisite-consistent course set covers the goals")

    def _build_path(
        self,
        learner_id: str,
        sequence: Tuple[str, ...],
        goals: FrozenSet[str],
        current_skills: Mapping[str, float],
        validated: ValidatedGraph,
        costs: Mapping[str, CourseCost],
        deficiencies: Mapping[str, float],
        done: FrozenSet[str],
    ) -> LearningPath:
        courses = [validated.courses[cid] for cid in sequence]
        projected = project_skills(current_skills, courses)
        touched = set(goals).union(*(course.skill_gains for course in courses)) if courses else set(goals)
        remediated = sorted({skill for course in courses for skill in course.skill_gains if skill in deficiencies})
        return LearningPath(
            learner_id=learner_id,
            course_ids=tuple(sequence),
            goals=goals,
            total_duration=round(sum(course.duration for course in courses), 9),
            total_cost=round(sum(costs[cid].cost for cid in sequence), 9),
            projected_skills={skill: projected.get(skill, 0.0) for skill in sorted(touched)},
            remediated_skills=tuple(remediated),
            completed=done,
        )
