"""Xero quote status lifecycle as seen by the fixer."""

from collections import deque
from typing import Dict, List, Tuple

from core.errors import InvalidStatusTransition, QuoteLockedError

STATUS_TRANSITIONS: Dict[str, Tuple[str, ...]] = {
    "DRAFT": ("SENT", "DELETED"),
    "SENT": ("ACCEPTED", "DECLINED", "DELETED"),
    "DECLINED": ("SENT", "DELETED"),
    "ACCEPTED": ("SENT", "DELETED", "INVOICED"),
    "INVOICED": ("SENT", "DELETED"),
}


def can_transition(current: str, target: str) -> bool:
    return target in STATUS_TRANSITIONS.get(current, ())


def get_status_transition_path(current: str, target: str) -> List[str]:
    """
    Shortest list of statuses to apply, in order, to move a quote from
    ``current`` to ``target`` (``current`` excluded). Invoiced quotes are
    never moved.
    """
    if current == "INVOICED":
        raise QuoteLockedError()
    if current == target:
        return []

    queue = deque([(current, [])])
    visited = {current}
    while queue:
        status, path = queue.popleft()
        for nxt in STATUS_TRANSITIONS.get(status, ()):
            if nxt in visited:
                continue
            if nxt == target:
                return path + [nxt]
            visited.add(nxt)
            queue.append((nxt, path + [nxt]))
    raise InvalidStatusTransition(current, target)
