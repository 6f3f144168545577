"""Story dependency graph and invalidation rules."""

from storywright.c2_story_graph.story_graph import (
    StoryNeighbors,
    neighbors,
    affected_by_edge_change,
    affected_by_priority_change,
    affected_by_dependency_rewrite,
    would_create_cycle,
    merge_detected_edges,
    detect_cycles,
    build_dependency_graph,
    validate_execution_order,
)

__all__ = [
    "StoryNeighbors",
    "neighbors",
    "affected_by_edge_change",
    "affected_by_priority_change",
    "affected_by_dependency_rewrite",
    "would_create_cycle",
    "merge_detected_edges",
    "detect_cycles",
    "build_dependency_graph",
    "validate_execution_order",
]
