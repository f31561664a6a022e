"""
Roster Kernel - Hierarchy Utilities

Pure dict-based walks over the unit forest. No external dependencies.

Every upward walk carries a visited set so that a corrupted tree
(a parent loop pushed by another client) terminates instead of spinning.
"""

from __future__ import annotations

from typing import Dict, List, Optional, Set

from .domain_types import Unit


PATH_SEPARATOR = "/"


# ---------------------------------------------------------------------------
# Lookup
# ---------------------------------------------------------------------------

def build_unit_map(units: List[Unit]) -> Dict[str, Unit]:
    """id -> Unit. Later duplicates win, matching a linear find-last."""
    return {u.id: u for u in units}


def child_ids(unit_id: str, units: List[Unit]) -> List[str]:
    """Direct children of ``unit_id`` in list order."""
    return [u.id for u in units if u.parent_id == unit_id]


# ---------------------------------------------------------------------------
# Upward walks
# ---------------------------------------------------------------------------

def ancestor_ids(unit_id: str, unit_map: Dict[str, Unit]) -> List[str]:
    """Parent, grandparent, ... of ``unit_id``. Stops on a loop or a dangling ref."""
    chain: List[str] = []
    visited: Set[str] = {unit_id}
    unit = unit_map.get(unit_id)
    current = unit.parent_id if unit else None
    while current and current not in visited and current in unit_map:
        chain.append(current)
        visited.add(current)
        current = unit_map[current].parent_id
    return chain


def unit_depth(unit_id: str, unit_map: Dict[str, Unit]) -> int:
    """Distance from the root. Root units have depth 0."""
    return len(ancestor_ids(unit_id, unit_map))


def unit_path(unit_id: str, unit_map: Dict[str, Unit]) -> str:
    """Ancestor names down to the unit itself, joined with '/'."""
    unit = unit_map.get(unit_id)
    if unit is None:
        return ""
    names = [unit_map[a].name for a in reversed(ancestor_ids(unit_id, unit_map))]
    names.append(unit.name)
    return PATH_SEPARATOR.join(names)


def would_create_cycle(
    unit_id: str,
    new_parent_id: Optional[str],
    unit_map: Dict[str, Unit],
) -> bool:
    """
    True if giving ``unit_id`` the parent ``new_parent_id`` would make it
    its own ancestor.

    Walks up from the proposed parent. A pre-existing loop found on the
    way counts as circular.
    """
    if not new_parent_id:
        return False
    if new_parent_id == unit_id:
        return True

    current: Optional[str] = new_parent_id
    visited: Set[str] = set()
    while current:
        if current in visited:
            return True
        if current == unit_id:
            return True
        visited.add(current)
        parent = unit_map.get(current)
        current = parent.parent_id if parent else None
    return False


# ---------------------------------------------------------------------------
# Downward walks
# ---------------------------------------------------------------------------

def descendant_ids(unit_id: str, units: List[Unit]) -> List[str]:
    """All units below ``unit_id`` (breadth-first, excluding itself)."""
    children: Dict[str, List[str]] = {}
    for u in units:
        if u.parent_id:
            children.setdefault(u.parent_id, []).append(u.id)

    result: List[str] = []
    seen: Set[str] = {unit_id}
    queue = list(children.get(unit_id, []))
    while queue:
        nxt = queue.pop(0)
        if nxt in seen:
            continue
        seen.add(nxt)
        result.append(nxt)
        queue.extend(children.get(nxt, []))
    return result


# ---------------------------------------------------------------------------
# Cycle detection
# ---------------------------------------------------------------------------

def detect_parent_cycles(unit_map: Dict[str, Unit]) -> List[List[str]]:
    """
    Find parent loops. Each cycle is returned once, as the list of ids
    walked from its first-reached member back to that member's parent.
    """
    WHITE, GREY, BLACK = 0, 1, 2
    colour: Dict[str, int] = {uid: WHITE for uid in sorted(unit_map)}
    cycles: List[List[str]] = []

    for start in sorted(unit_map):
        if colour[start] != WHITE:
            continue
        trail: List[str] = []
        current: Optional[str] = start
        while current and current in unit_map and colour[current] == WHITE:
            colour[current] = GREY
            trail.append(current)
            current = unit_map[current].parent_id
        if current and current in unit_map and colour[current] == GREY:
            cycles.append(trail[trail.index(current):])
        for uid in trail:
            colour[uid] = BLACK

    return cycles
