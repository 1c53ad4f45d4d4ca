# Overview: Explicit transition tables for workflow status fields.

from __future__ import annotations

from ..errors import InvalidStateTransition


def check_transition(entity: str, transitions: dict[str, frozenset], current: str, requested: str) -> None:
    """
    Reject any move not listed in the transition table.

    transitions maps every known status to the statuses reachable from it;
    terminal statuses map to an empty set. An unknown current status is
    treated as terminal.
    """
    if requested not in transitions:
        raise InvalidStateTransition(entity, current, requested, message=f"Unknown {entity} status: {requested}")
    if requested not in transitions.get(current, frozenset()):
        raise InvalidStateTransition(entity, current, requested)
