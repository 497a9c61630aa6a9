"""
Cycle guard - decides whether inserting an edge would close a cycle.

Consulted by GraphModel before every edge insertion. Everything here is pure:
nothing is mutated, and the searches use explicit stacks so deep chains never
hit the recursion limit.
"""

from collections.abc import Iterable
from typing import Protocol


class EdgeLike(Protocol):
    source: str
    target: str


def _adjacency(edges: Iterable[EdgeLike]) -> dict[str, list[str]]:
    adjacency: dict[str, list[str]] = {}
    for edge in edges:
        adjacency.setdefault(edge.source, []).append(edge.target)
    return adjacency


def would_create_cycle(candidate: EdgeLike, existing_edges: Iterable[EdgeLike]) -> bool:
    """
    Return True if adding ``candidate`` to ``existing_edges`` closes a cycle.

    A self-loop is always a cycle. Otherwise the candidate closes a cycle
    exactly when its source is reachable from its target.
    """
    if not candidate.source or not candidate.target:
        return False

    if candidate.source == candidate.target:
        return True

    adjacency = _adjacency(existing_edges)
    adjacency.setdefault(candidate.source, []).append(candidate.target)

    visited: set[str] = set()
    stack = [candidate.target]

    while stack:
        current = stack.pop()
        if current == candidate.source:
            return True
        if current in visited:
            continue
        visited.add(current)
        stack.extend(adjacency.get(current, ()))

    return False


def find_cycle(node_ids: Iterable[str], edges: Iterable[EdgeLike]) -> list[str] | None:
    """
    Find one directed cycle in an arbitrary graph.

    Used to audit documents that did not go through GraphModel. Returns the
    cycle as a closed path (first and last element equal), or None.
    """
    adjacency = _adjacency(edges)
    # 0 = unvisited, 1 = on the current path, 2 = finished
    state: dict[str, int] = {}

    known = list(node_ids)
    roots = known + [n for n in adjacency if n not in set(known)]
    for root in roots:
        if state.get(root):
            continue
        path: list[str] = []
        stack: list[tuple[str, int]] = [(root, 0)]
        while stack:
            node, child_idx = stack.pop()
            if child_idx == 0:
                state[node] = 1
                path.append(node)
            children = adjacency.get(node, [])
            if child_idx < len(children):
                stack.append((node, child_idx + 1))
                child = children[child_idx]
                child_state = state.get(child, 0)
                if child_state == 1:
                    return path[path.index(child) :] + [child]
                if child_state == 0:
                    stack.append((child, 0))
            else:
                state[node] = 2
                path.pop()

    return None
