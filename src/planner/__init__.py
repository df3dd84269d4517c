# ABOUTME: Groups prerequisite-graph validation and learning path optimization.
# ABOUTME: Re-exports the optimizer, graph validator and cancellation token.

from .cancellation import CancellationToken
from .graph import GraphValidator, validate_graph
from .optimizer import PathOptimizer

__all__ = [
    "CancellationToken",
    "GraphValidator",
    "validate_graph",
    "PathOptimizer",
]
