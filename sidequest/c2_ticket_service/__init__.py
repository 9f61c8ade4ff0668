"""Ticket tree services for Sidequest."""

from sidequest.c2_ticket_service.ticket_service import TicketService
from sidequest.c2_ticket_service.quest_service import QuestService
from sidequest.c2_ticket_service.ticket_store import TicketRepository, ticket_to_dict
from sidequest.c2_ticket_service.ticket_tree import TicketForest, TicketNode, build_forest
from sidequest.c2_ticket_service.history_service import TicketHistoryService

__all__ = [
    "TicketService",
    "QuestService",
    "TicketRepository",
    "ticket_to_dict",
    "TicketForest",
    "TicketNode",
    "build_forest",
    "TicketHistoryService",
]
