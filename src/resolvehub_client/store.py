"""Ticket snapshots for the expert desk and the field user's history."""

from __future__ import annotations

from dataclasses import replace
from typing import Iterable, Optional, Sequence

from resolvehub_client.schemas import Stats, Ticket, TicketDetail, TicketFilter, TicketStatus
from resolvehub_client.utils import get_logger

logger = get_logger(__name__)


def matches_query(ticket: Ticket, query: str) -> bool:
    """Case-insensitive substring match on id, message, phone or category."""
    if not query:
        return True
    needle = query.lower()
    candidates = (
        str(ticket.id),
        ticket.last_message,
        ticket.user_phone,
        ticket.category.value if ticket.category else "",
    )
    return any(needle in (candidate or "").lower() for candidate in candidates)


def filter_tickets(tickets: Sequence[Ticket], ticket_filter: TicketFilter) -> list[Ticket]:
    """Return the tickets passing every active predicate, in source order.

    Pure: the source sequence is never mutated and equal inputs give equal output.
    """
    return [
        ticket
        for ticket in tickets
        if (ticket_filter.status is None or ticket.status == ticket_filter.status)
        and (ticket_filter.category is None or ticket.category == ticket_filter.category)
        and (ticket_filter.urgency is None or ticket.urgency == ticket_filter.urgency)
        and matches_query(ticket, ticket_filter.query)
    ]


class TicketStore:
    """Holds the latest ticket snapshot and derives the filtered view from it.

    Snapshots are replaced wholesale. Fetches take a sequence number from
    ``begin_fetch`` so a slow response never overwrites a newer one, and a
    ticket once seen as resolved stays resolved whatever order answers arrive in.
    """

    def __init__(self) -> None:
        self._tickets: tuple[Ticket, ...] = ()
        self._user_history: tuple[Ticket, ...] = ()
        self._stats = Stats()
        self._detail: Optional[TicketDetail] = None
        self._filter = TicketFilter()
        self._filtered: Optional[list[Ticket]] = None
        self._resolved_ids: set[int] = set()
        self._issued_seq = 0
        self._applied_seq = 0

    @property
    def tickets(self) -> tuple[Ticket, ...]:
        return self._tickets

    @property
    def user_history(self) -> tuple[Ticket, ...]:
        return self._user_history

    @property
    def stats(self) -> Stats:
        return self._stats

    @property
    def detail(self) -> Optional[TicketDetail]:
        return self._detail

    @property
    def filter(self) -> TicketFilter:
        return self._filter

    @property
    def filtered(self) -> list[Ticket]:
        if self._filtered is None:
            self._filtered = filter_tickets(self._tickets, self._filter)
        return list(self._filtered)

    def begin_fetch(self) -> int:
        self._issued_seq += 1
        return self._issued_seq

    def replace_all(self, tickets: Iterable[Ticket], seq: Optional[int] = None) -> bool:
        """Swap in a new snapshot. Returns False when ``seq`` is stale."""
        if seq is not None:
            if seq < self._applied_seq:
                logger.debug("Dropping stale ticket snapshot %s (applied %s)", seq, self._applied_seq)
                return False
            self._applied_seq = seq
        self._tickets = tuple(self._keep_resolved(ticket) for ticket in tickets)
        self._filtered = None
        return True

    def set_filter(self, ticket_filter: TicketFilter) -> list[Ticket]:
        if ticket_filter != self._filter:
            self._filter = ticket_filter
            self._filtered = None
        return self.filtered

    def apply_filter(self, ticket_filter: Optional[TicketFilter] = None) -> list[Ticket]:
        return filter_tickets(self._tickets, ticket_filter or self._filter)

    def get(self, ticket_id: int) -> Optional[Ticket]:
        for ticket in self._tickets:
            if ticket.id == ticket_id:
                return ticket
        for ticket in self._user_history:
            if ticket.id == ticket_id:
                return ticket
        return None

    def replace_user_history(self, tickets: Iterable[Ticket]) -> None:
        self._user_history = tuple(self._keep_resolved(ticket) for ticket in tickets)

    def replace_stats(self, stats: Stats) -> None:
        self._stats = stats

    def replace_detail(self, detail: Optional[TicketDetail]) -> None:
        if detail is not None:
            detail = replace(detail, ticket=self._keep_resolved(detail.ticket))
        self._detail = detail

    def clear(self) -> None:
        self._tickets = ()
        self._user_history = ()
        self._stats = Stats()
        self._detail = None
        self._filtered = None
        self._resolved_ids.clear()
        # Fetches issued before the clear must not repopulate the store.
        self._issued_seq += 1
        self._applied_seq = self._issued_seq

    def _keep_resolved(self, ticket: Ticket) -> Ticket:
        if ticket.status == TicketStatus.RESOLVED:
            self._resolved_ids.add(ticket.id)
            return ticket
        if ticket.id in self._resolved_ids:
            logger.debug("Ticket %s came back as %s, keeping resolved", ticket.id, ticket.status.value)
            return replace(ticket, status=TicketStatus.RESOLVED)
        return ticket
