# ABOUTME: Validates the course prerequisite graph and derives its topological structure.
# ABOUTME: Caches the validated form per catalog version so planning calls reuse it.

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Iterable, List, Mapping, Optional, Tuple

import networkx as nx
from loguru import logger

from src.common.errors import CycleDetectedError, MalformedRecordError
from src.common.schemas import CourseGraph, CourseNode


@dataclass(frozen=True)
class ValidatedGraph:
    """Acyclic catalog with a deterministic topological order."""

    version: int
    courses: Mapping[str, CourseNode]
    order: Tuple[str, ...]
    dag: nx.DiGraph

    def courses_teaching(self, skill: str) -> List[str]:
        return [cid for cid in self.order if skill in self.courses[cid].skill_gains]


def build_dag(graph: CourseGraph) -> nx.DiGraph:
    """Edges run prerequisite -> dependent course."""

    dag = nx.DiGraph()
    dag.add_nodes_from(graph.courses)
    for course_id, course in graph.courses.items():
        if course.prerequisites is None:
            raise MalformedRecordError(f"course '{course_id}' is missing its prerequisite set")
        for prereq in course.prerequisites:
            if prereq not in graph.courses:
                raise MalformedRecordError(f"course '{course_id}' requires unknown course '{prereq}'")
            dag.add_edge(prereq, course_id)
    return dag


def validate_graph(graph: CourseGraph) -> ValidatedGraph:
    dag = build_dag(graph)
    if not nx.is_directed_acyclic_graph(dag):
        cycle = [edge[0] for edge in nx.find_cycle(dag)]
        raise CycleDetectedError(cycle)

    order = tuple(nx.lexicographical_topological_sort(dag))
    return ValidatedGraph(version=graph.version, courses=graph.courses, order=order, dag=dag)


def lexicographic_order(validated: ValidatedGraph, selection: Iterable[str]) -> Tuple[str, ...]:
    """Smallest course-id sequence that lists every selected course after its selected prerequisites."""

    return tuple(nx.lexicographical_topological_sort(validated.dag.subgraph(selection)))


class GraphValidator:
    """Validates a catalog once per version; failures are not cached."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._cached: Optional[ValidatedGraph] = None
        self.validations = 0

    def validate(self, graph: CourseGraph) -> ValidatedGraph:
        cached = self._cached
        if cached is not None and cached.version == graph.version and cached.courses is graph.courses:
            return cached
        validated = validate_graph(graph)
        with self._lock:
            self.validations += 1
            self._cached = validated
        logger.debug("validated course graph v{} ({} courses)", graph.version, len(graph.courses))
        return validated
