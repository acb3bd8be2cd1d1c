from enum import Enum
from typing import Dict, FrozenSet, TypeVar

from ..exceptions import StateError

S = TypeVar("S", bound=Enum)


def ensure_transition(
    transitions: Dict[S, FrozenSet[S]],
    current: S,
    target: S,
    entity: str
) -> None:
    """Raise StateError unless ``current -> target`` is in the table"""
    if target not in transitions.get(current, frozenset()):
        raise StateError(
            f"{entity}: illegal transition {current.value} -> {target.value}",
            reason="illegal_transition"
        )
