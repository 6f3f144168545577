"""Dependency graph over a PRD's stories.

Edges are stored per story as ``depends_on`` (story -> prerequisite);
``blocked_by`` here is the inverse view: the stories that wait on a given
story. Every function in this module is pure and works on plain story
dicts (as produced by ``Story.to_dict()``), so the invalidation rules can be
exercised without a database.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set, Tuple

logger = logging.getLogger(__name__)

StoryRecord = Mapping[str, Any]


@dataclass(frozen=True)
class StoryNeighbors:
    """Direct graph neighbours of one story."""

    depends_on: List[str] = field(default_factory=list)
    blocked_by: List[str] = field(default_factory=list)

    def all_ids(self) -> Set[str]:
        return set(self.depends_on) | set(self.blocked_by)


def _deps(story: StoryRecord) -> List[str]:
    return list(story.get("depends_on") or [])


def _index(stories: Iterable[StoryRecord]) -> Dict[str, StoryRecord]:
    return {story["id"]: story for story in stories}


def neighbors(story_id: str, stories: Iterable[StoryRecord]) -> StoryNeighbors:
    """Return the prerequisites of ``story_id`` and the stories it blocks."""
    stories = list(stories)
    by_id = _index(stories)
    target = by_id.get(story_id)
    depends_on = _deps(target) if target else []
    blocked_by = [s["id"] for s in stories if story_id in _deps(s) and s["id"] != story_id]
    return StoryNeighbors(depends_on=depends_on, blocked_by=blocked_by)


def affected_by_edge_change(from_id: str, to_id: str) -> Set[str]:
    """Stories whose recommendation is cleared when the edge ``from_id -> to_id`` changes.

    Both endpoints, whichever direction the edge points.
    """
    return {from_id, to_id}


def affected_by_priority_change(story_id: str, stories: Iterable[StoryRecord]) -> Set[str]:
    """Stories whose recommendation is cleared when ``story_id`` changes priority.

    Every prerequisite of the story and every story waiting on it. The story
    itself is never included.
    """
    related = neighbors(story_id, stories).all_ids()
    related.discard(story_id)
    return related


def affected_by_dependency_rewrite(
    story_id: str,
    old_depends_on: Iterable[str],
    new_depends_on: Iterable[str],
) -> Set[str]:
    """Stories whose recommendation is cleared when a story's whole edge list is replaced."""
    return {story_id} | set(old_depends_on or []) | set(new_depends_on or [])


def would_create_cycle(stories: Iterable[StoryRecord], from_id: str, to_id: str) -> bool:
    """True when adding ``from_id -> to_id`` would close a dependency cycle.

    A self edge counts as a cycle.
    """
    if from_id == to_id:
        return True
    by_id = _index(stories)
    # The new edge closes a cycle iff from_id is already reachable from to_id.
    stack = [to_id]
    seen: Set[str] = set()
    while stack:
        current = stack.pop()
        if current == from_id:
            return True
        if current in seen:
            continue
        seen.add(current)
        story = by_id.get(current)
        if story:
            stack.extend(_deps(story))
    return False


def merge_detected_edges(
    stories: Iterable[StoryRecord],
    detected: Iterable[Tuple[str, str]],
    keep_existing: bool = True,
) -> Dict[str, List[str]]:
    """New ``depends_on`` list per story after merging detected ``(from, to)`` edges.

    Existing edges are kept unless ``keep_existing`` is false. Detected edges
    are added in order, and one that would close a cycle with the edges
    accepted so far is dropped, so an existing edge always wins. Edges naming
    stories outside ``stories`` are ignored.
    """
    working = {s["id"]: (_deps(s) if keep_existing else []) for s in stories}
    for from_id, to_id in detected:
        if from_id not in working or to_id not in working or to_id in working[from_id]:
            continue
        records = [{"id": story_id, "depends_on": deps} for story_id, deps in working.items()]
        if would_create_cycle(records, from_id, to_id):
            logger.info(f"Dropping detected dependency {from_id} -> {to_id}: it would close a cycle")
            continue
        working[from_id].append(to_id)
    return working


def detect_cycles(stories: Iterable[StoryRecord]) -> List[List[str]]:
    """Return each dependency cycle found, as the list of story ids along it."""
    by_id = _index(stories)
    visited: Set[str] = set()
    on_stack: Set[str] = set()
    path: List[str] = []
    cycles: List[List[str]] = []

    def visit(story_id: str):
        visited.add(story_id)
        on_stack.add(story_id)
        path.append(story_id)
        for dep in _deps(by_id[story_id]):
            if dep not in by_id:
                continue
            if dep in on_stack:
                cycles.append(path[path.index(dep):] + [dep])
            elif dep not in visited:
                visit(dep)
        path.pop()
        on_stack.discard(story_id)

    for story_id in by_id:
        if story_id not in visited:
            visit(story_id)
    return cycles


def _depth(story_id: str, by_id: Dict[str, StoryRecord], memo: Dict[str, int], trail: Set[str]) -> int:
    if story_id in memo:
        return memo[story_id]
    if story_id in trail:
        return 0
    trail.add(story_id)
    deps = [dep for dep in _deps(by_id[story_id]) if dep in by_id]
    depth = 0 if not deps else 1 + max(_depth(dep, by_id, memo, trail) for dep in deps)
    trail.discard(story_id)
    memo[story_id] = depth
    return depth


def build_dependency_graph(stories: Iterable[StoryRecord], prd_id: Optional[str] = None) -> Dict[str, Any]:
    """Build the node/edge view of a PRD's dependencies with consistency warnings.

    Returns:
        Dictionary with:
            - prd_id
            - nodes: story_id, title, status, priority, blocks_count,
              blocked_by_count, is_ready, depth
            - edges: from (prerequisite), to (dependent story), reason
            - warnings: circular, orphan_dependency and unresolved_blocker entries
    """
    stories = list(stories)
    by_id = _index(stories)
    depth_memo: Dict[str, int] = {}

    edges = []
    warnings = []
    for story in stories:
        reasons = story.get("dependency_reasons") or {}
        for dep in _deps(story):
            if dep not in by_id:
                warnings.append({
                    "type": "orphan_dependency",
                    "message": f'"{story.get("title", story["id"])}" depends on a story that no longer exists',
                    "story_ids": [story["id"], dep],
                })
                continue
            edge = {"from": dep, "to": story["id"]}
            if reasons.get(dep):
                edge["reason"] = reasons[dep]
            edges.append(edge)

    nodes = []
    for story in stories:
        live_deps = [dep for dep in _deps(story) if dep in by_id]
        unresolved = [dep for dep in live_deps if by_id[dep].get("status") != "completed"]
        blocks = neighbors(story["id"], stories).blocked_by
        nodes.append({
            "story_id": story["id"],
            "title": story.get("title", ""),
            "status": story.get("status"),
            "priority": story.get("priority"),
            "blocks_count": len(blocks),
            "blocked_by_count": len(live_deps),
            "is_ready": not unresolved,
            "depth": _depth(story["id"], by_id, depth_memo, set()),
        })
        if story.get("status") == "completed" and unresolved:
            warnings.append({
                "type": "unresolved_blocker",
                "message": f'"{story.get("title", story["id"])}" is completed but has unfinished prerequisites',
                "story_ids": [story["id"]] + unresolved,
            })

    for cycle in detect_cycles(stories):
        titles = " -> ".join(by_id[sid].get("title", sid) for sid in cycle)
        warnings.append({
            "type": "circular",
            "message": f"Circular dependency: {titles}",
            "story_ids": cycle[:-1],
        })

    return {"prd_id": prd_id, "nodes": nodes, "edges": edges, "warnings": warnings}


def validate_execution_order(stories: Iterable[StoryRecord]) -> Dict[str, Any]:
    """Check whether the stories can be executed in dependency order.

    Returns:
        Dictionary with ``valid`` (no missing prerequisites and no cycles)
        and a list of blocked_story, missing_dependency and
        circular_dependency warnings.
    """
    stories = list(stories)
    by_id = _index(stories)
    warnings = []

    for story in stories:
        if story.get("status") == "completed":
            continue
        for dep in _deps(story):
            prerequisite = by_id.get(dep)
            if prerequisite is None:
                warnings.append({
                    "type": "missing_dependency",
                    "story_id": story["id"],
                    "dependency_id": dep,
                    "message": f'"{story.get("title", story["id"])}" depends on missing story {dep}',
                })
            elif prerequisite.get("status") != "completed":
                warnings.append({
                    "type": "blocked_story",
                    "story_id": story["id"],
                    "dependency_id": dep,
                    "message": (
                        f'"{story.get("title", story["id"])}" is blocked by '
                        f'"{prerequisite.get("title", dep)}" ({prerequisite.get("status")})'
                    ),
                })

    cycles = detect_cycles(stories)
    for cycle in cycles:
        warnings.append({
            "type": "circular_dependency",
            "story_ids": cycle[:-1],
            "message": "Circular dependency: " + " -> ".join(by_id[sid].get("title", sid) for sid in cycle),
        })

    valid = not cycles and not any(w["type"] == "missing_dependency" for w in warnings)
    if not valid:
        logger.debug(f"Execution order invalid: {len(warnings)} warnings")
    return {"valid": valid, "warnings": warnings}
