"""Explicit status transition tables.

Each status enum owns a table ``{current: {allowed next states}}``. Any state
absent from the table (or mapped to an empty set) is terminal.
"""

import enum
from typing import Mapping, TypeVar

StatusT = TypeVar("StatusT", bound=enum.Enum)


class InvalidTransition(ValueError):
    """Raised when a status change is not allowed by its transition table."""

    def __init__(self, entity: str, current: enum.Enum, new: enum.Enum):
        self.entity = entity
        self.current = current
        self.new = new
        super().__init__(
            f"Cannot change {entity} status from {current.value} to {new.value}"
        )


def can_transition(
    table: Mapping[StatusT, frozenset], current: StatusT, new: StatusT
) -> bool:
    return new in table.get(current, frozenset())


def ensure_transition(
    table: Mapping[StatusT, frozenset], entity: str, current: StatusT, new: StatusT
) -> StatusT:
    """Return ``new`` if the move is legal, else raise InvalidTransition."""
    if not can_transition(table, current, new):
        raise InvalidTransition(entity, current, new)
    return new


def is_terminal(table: Mapping[StatusT, frozenset], status: StatusT) -> bool:
    return not table.get(status)
