"""
Observability - In-process roster metrics.

No external dependencies. Computed from the session's current state.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict

from roster_kernel.domain_types import PersonnelStatus

if TYPE_CHECKING:
    from .session import RosterSession


@dataclass(frozen=True)
class RosterMetrics:
    """Snapshot of observable roster metrics."""

    backend_mode: str
    ready: bool
    unit_count: int
    personnel_count: int
    status_counts: Dict[str, int]
    max_depth: int
    init_attempts: int


def collect_metrics(session: "RosterSession") -> RosterMetrics:
    tree = session.tree
    people = session.index.all_personnel()

    status_counts = {status.value: 0 for status in PersonnelStatus}
    for person in people:
        status_counts[person.status.value] += 1

    max_depth = max((tree.depth(u.id) for u in tree.units), default=0)

    return RosterMetrics(
        backend_mode=session.mode,
        ready=session.ready,
        unit_count=len(tree.units),
        personnel_count=len(people),
        status_counts=status_counts,
        max_depth=max_depth,
        init_attempts=session.adapter.init_attempts,
    )
