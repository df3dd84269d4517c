# ABOUTME: Declares the narrow collaborator interfaces the engine consumes (progress, catalog, learners).
# ABOUTME: Provides thread-safe in-memory implementations used by tests, demos and embedded deployments.

from __future__ import annotations

import threading
from typing import Dict, Iterable, List, Mapping, Optional, Protocol, Tuple

from .errors import MalformedRecordError
from .schemas import CourseGraph, CourseNode, LearnerProfile, ProgressRecord, QuizAttempt


class ProgressStore(Protocol):
    def get_history(self, learner_id: str, course_id: str) -> ProgressRecord: ...

    def list_history(self, learner_id: str) -> List[ProgressRecord]: ...

    def append_attempt(
        self, learner_id: str, course_id: str, attempt: QuizAttempt, time_spent: float = 0.0
    ) -> ProgressRecord: ...

    def append_lesson(
        self, learner_id: str, course_id: str, lesson_id: str, time_spent: float = 0.0
    ) -> ProgressRecord: ...

    def mark_completed(self, learner_id: str, course_id: str, time_spent: float = 0.0) -> ProgressRecord: ...

    def add_time(self, learner_id: str, course_id: str, time_spent: float) -> ProgressRecord: ...


class CourseCatalogStore(Protocol):
    def get_graph(self) -> CourseGraph: ...


class LearnerStore(Protocol):
    def get(self, learner_id: str) -> LearnerProfile: ...

    def put(self, profile: LearnerProfile) -> None: ...

    def increment_interactions(self, learner_id: str) -> LearnerProfile: ...


class InMemoryProgressStore:
    """Append-only progress records keyed by (learner, course)."""

    def __init__(self) -> None:
        self._records: Dict[Tuple[str, str], ProgressRecord] = {}
        self._lock = threading.Lock()

    def get_history(self, learner_id: str, course_id: str) -> ProgressRecord:
        record = self._records.get((learner_id, course_id))
        if record is None:
            return ProgressRecord(learner_id=learner_id, course_id=course_id)
        return record

    def list_history(self, learner_id: str) -> List[ProgressRecord]:
        with self._lock:
            items = [record for (lid, _), record in self._records.items() if lid == learner_id]
        return sorted(items, key=lambda record: record.course_id)

    def completed_courses(self, learner_id: str) -> frozenset:
        return frozenset(record.course_id for record in self.list_history(learner_id) if record.completed)

    def append_attempt(
        self, learner_id: str, course_id: str, attempt: QuizAttempt, time_spent: float = 0.0
    ) -> ProgressRecord:
        with self._lock:
            record = self.get_history(learner_id, course_id).append_attempt(attempt, time_spent)
            self._records[(learner_id, course_id)] = record
        return record

    def append_lesson(
        self, learner_id: str, course_id: str, lesson_id: str, time_spent: float = 0.0
    ) -> ProgressRecord:
        with self._lock:
            record = self.get_history(learner_id, course_id).append_lesson(lesson_id, time_spent)
            self._records[(learner_id, course_id)] = record
        return record

    def mark_completed(self, learner_id: str, course_id: str, time_spent: float = 0.0) -> ProgressRecord:
        with self._lock:
            record = self.get_history(learner_id, course_id).mark_completed(time_spent)
            self._records[(learner_id, course_id)] = record
        return record

    def add_time(self, learner_id: str, course_id: str, time_spent: float) -> ProgressRecord:
        with self._lock:
            record = self.get_history(learner_id, course_id).add_time(time_spent)
            self._records[(learner_id, course_id)] = record
        return record


class InMemoryCatalogStore:
    """Versioned course catalog; every replacement bumps the version."""

    def __init__(self, courses: Iterable[CourseNode] = ()) -> None:
        self._lock = threading.Lock()
        self._graph = CourseGraph(version=0, courses={})
        courses = list(courses)
        if courses:
            self.replace(courses)

    def get_graph(self) -> CourseGraph:
        return self._graph

    def replace(self, courses: Iterable[CourseNode]) -> CourseGraph:
        mapping: Dict[str, CourseNode] = {}
        for course in courses:
            if course.course_id in mapping:
                raise MalformedRecordError(f"Duplicate course id '{course.course_id}' in catalog")
            mapping[course.course_id] = course
        with self._lock:
            self._graph = CourseGraph(version=self._graph.version + 1, courses=mapping)
            return self._graph


class InMemoryLearnerStore:
    def __init__(self, profiles: Iterable[LearnerProfile] = ()) -> None:
        self._profiles: Dict[str, LearnerProfile] = {p.learner_id: p for p in profiles}
        self._lock = threading.Lock()

    def get(self, learner_id: str) -> LearnerProfile:
        profile = self._profiles.get(learner_id)
        if profile is None:
            raise MalformedRecordError(f"Unknown learner '{learner_id}'")
        return profile

    def find(self, learner_id: str) -> Optional[LearnerProfile]:
        return self._profiles.get(learner_id)

    def put(self, profile: LearnerProfile) -> None:
        with self._lock:
            self._profiles[profile.learner_id] = profile

    def increment_interactions(self, learner_id: str) -> LearnerProfile:
        with self._lock:
            profile = self.get(learner_id)
            updated = profile.with_interactions(profile.interaction_count + 1)
            self._profiles[learner_id] = updated
        return updated

    def snapshot(self) -> Mapping[str, LearnerProfile]:
        return dict(self._profiles)
