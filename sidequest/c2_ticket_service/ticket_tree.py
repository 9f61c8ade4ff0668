"""Builds the nested ticket forest from a flat ticket list."""

from typing import Any, Dict, Iterator, List, Optional, Sequence

from sidequest.c2_ticket_service.ticket_store import ticket_to_dict


def _sort_key(item: Dict[str, Any]):
    return (item.get("sort_order") or 0, item.get("created_at") or "", item["id"])


class TicketNode:
    """A ticket with its ordered children."""

    def __init__(self, ticket: Dict[str, Any]):
        self.ticket = ticket
        self.children: List["TicketNode"] = []

    @property
    def id(self) -> str:
        return self.ticket["id"]

    def walk(self) -> Iterator["TicketNode"]:
        """Depth-first pre-order traversal. Each call starts a fresh walk."""
        stack = [self]
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.children))

    def to_dict(self) -> Dict[str, Any]:
        data = dict(self.ticket)
        data["children"] = [child.to_dict() for child in self.children]
        return data


class TicketForest:
    """Ordered roots of a ticket tree."""

    def __init__(self, roots: List[TicketNode]):
        self.roots = roots

    def __iter__(self) -> Iterator[TicketNode]:
        return self.walk()

    def __len__(self) -> int:
        return sum(1 for _ in self.walk())

    def walk(self) -> Iterator[TicketNode]:
        for root in self.roots:
            yield from root.walk()

    def find(self, ticket_id: str) -> Optional[TicketNode]:
        for node in self.walk():
            if node.id == ticket_id:
                return node
        return None

    def to_list(self) -> List[Dict[str, Any]]:
        return [root.to_dict() for root in self.roots]


def build_forest(tickets: Sequence[Any]) -> TicketForest:
    """Nest tickets under their parents.

    Roots are tickets with no parent or whose parent is not in ``tickets``.
    Every sibling group is ordered by ``sort_order``. Accepts model rows or
    dicts shaped like ``ticket_to_dict`` output.
    """
    nodes: Dict[str, TicketNode] = {}
    for ticket in tickets:
        data = ticket if isinstance(ticket, dict) else ticket_to_dict(ticket)
        nodes[data["id"]] = TicketNode(data)

    roots: List[TicketNode] = []
    for node in nodes.values():
        parent_id = node.ticket.get("parent_ticket_id")
        parent = nodes.get(parent_id) if parent_id else None
        if parent is None or parent is node:
            roots.append(node)
        else:
            parent.children.append(node)

    for node in nodes.values():
        node.children.sort(key=lambda child: _sort_key(child.ticket))
    roots.sort(key=lambda root: _sort_key(root.ticket))
    return TicketForest(roots)
