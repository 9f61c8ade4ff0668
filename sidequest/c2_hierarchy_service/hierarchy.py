"""Ticket hierarchy rules: levels, allowed parents and point estimates."""

import logging
from typing import Dict, Iterable, Optional, Tuple

from sidequest.c1_sidequest_enums import TicketType
from sidequest.core.exceptions import TicketValidationError

logger = logging.getLogger(__name__)

HIERARCHY_LEVELS: Dict[str, int] = {
    TicketType.EPIC.value: 1,
    TicketType.STORY.value: 2,
    TicketType.TASK.value: 3,
    TicketType.TEST.value: 3,
    TicketType.SUBTASK.value: 4,
}

# Empty tuple means the type must be a root
VALID_PARENT_TYPES: Dict[str, Tuple[str, ...]] = {
    TicketType.EPIC.value: (),
    TicketType.STORY.value: (TicketType.EPIC.value,),
    TicketType.TASK.value: (TicketType.STORY.value,),
    TicketType.TEST.value: (TicketType.STORY.value,),
    TicketType.SUBTASK.value: (TicketType.TASK.value, TicketType.TEST.value),
}

DEFAULT_STORY_POINTS: Dict[str, int] = {
    TicketType.EPIC.value: 13,
    TicketType.STORY.value: 5,
    TicketType.TASK.value: 3,
    TicketType.SUBTASK.value: 1,
}
FALLBACK_STORY_POINTS = 2

MIN_STORY_POINTS = 1
MAX_STORY_POINTS = 13


def _type_value(ticket_type) -> str:
    value = ticket_type.value if isinstance(ticket_type, TicketType) else ticket_type
    if value not in HIERARCHY_LEVELS:
        raise TicketValidationError(
            f"Unknown ticket type '{value}'. Allowed types: {list(HIERARCHY_LEVELS)}"
        )
    return value


class HierarchyValidator:
    """Pure checks over the EPIC > STORY > TASK/TEST > SUBTASK hierarchy."""

    @staticmethod
    def level_of(ticket_type) -> int:
        return HIERARCHY_LEVELS[_type_value(ticket_type)]

    @staticmethod
    def valid_parent_types(ticket_type) -> Tuple[str, ...]:
        return VALID_PARENT_TYPES[_type_value(ticket_type)]

    @staticmethod
    def can_reparent(ticket_type, proposed_parent_type: Optional[str]) -> bool:
        """Return True if ``ticket_type`` may sit under ``proposed_parent_type``.

        A ``None`` parent is only valid for EPIC tickets.
        """
        allowed = HierarchyValidator.valid_parent_types(ticket_type)
        if proposed_parent_type is None:
            return not allowed
        return _type_value(proposed_parent_type) in allowed

    @staticmethod
    def ensure_parent(ticket_type, parent_type: Optional[str]) -> None:
        """Raise ``TicketValidationError`` naming the bad relationship."""
        if HierarchyValidator.can_reparent(ticket_type, parent_type):
            return
        child = _type_value(ticket_type)
        if parent_type is None:
            raise TicketValidationError(
                f"{child} requires a parent ticket", relationship=(child, None)
            )
        raise TicketValidationError(
            f"{child} cannot be a child of {_type_value(parent_type)}",
            relationship=(child, _type_value(parent_type)),
        )

    @staticmethod
    def can_retype(
        ticket_type,
        new_type,
        current_parent_type: Optional[str],
        child_types: Iterable[str],
    ) -> bool:
        try:
            HierarchyValidator.ensure_retype(ticket_type, new_type, current_parent_type, child_types)
        except TicketValidationError:
            return False
        return True

    @staticmethod
    def ensure_retype(
        ticket_type,
        new_type,
        current_parent_type: Optional[str],
        child_types: Iterable[str],
    ) -> None:
        """Validate a type change against the current parent and every child.

        Raises:
            TicketValidationError: naming the first violated relationship
        """
        new_value = _type_value(new_type)
        if _type_value(ticket_type) == new_value:
            return
        HierarchyValidator.ensure_parent(new_value, current_parent_type)
        for child_type in child_types:
            child = _type_value(child_type)
            if new_value not in VALID_PARENT_TYPES[child]:
                raise TicketValidationError(
                    f"Cannot change type to {new_value}: existing child {child} "
                    f"cannot be a child of {new_value}",
                    relationship=(child, new_value),
                )

    @staticmethod
    def default_story_points(ticket_type) -> int:
        value = ticket_type.value if isinstance(ticket_type, TicketType) else ticket_type
        return DEFAULT_STORY_POINTS.get(value, FALLBACK_STORY_POINTS)

    @staticmethod
    def effective_points(ticket) -> int:
        """Stored story points, or the per-type estimate when none are set.

        Accepts a model instance or a plain dict.
        """
        if isinstance(ticket, dict):
            points = ticket.get("story_points")
            ticket_type = ticket.get("ticket_type") or ticket.get("type")
        else:
            points = ticket.story_points
            ticket_type = ticket.ticket_type
        if points:
            return points
        return HierarchyValidator.default_story_points(ticket_type)

    @staticmethod
    def validate_story_points(points: Optional[int]) -> None:
        if points is None:
            return
        if not MIN_STORY_POINTS <= points <= MAX_STORY_POINTS:
            raise TicketValidationError(
                f"story_points must be between {MIN_STORY_POINTS} and {MAX_STORY_POINTS}, got {points}"
            )
