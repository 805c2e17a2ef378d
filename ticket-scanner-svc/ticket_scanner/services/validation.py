from __future__ import annotations
from datetime import datetime, timezone
from typing import Callable

from ..core.errors import StoreError
from ..core.logging import get_logger
from ..schemas import TicketRead, ValidationResult
from .store import TicketStore

logger = get_logger(__name__)

MSG_NOT_FOUND = "Ticket not found"
MSG_EXHAUSTED = "No entries remaining - access denied"
MSG_NEGATIVE = "Invalid ticket - negative entries"


def _now():
    return datetime.now(timezone.utc)


def normalize_code(code: str) -> str:
    return code.strip()


def granted_message(remaining: int) -> str:
    return f"Access granted - {remaining} entries remaining"


def _deny(ticket: TicketRead) -> ValidationResult | None:
    if ticket.remaining_entries == 0:
        return ValidationResult(valid=False, message=MSG_EXHAUSTED, ticket=ticket)
    if ticket.remaining_entries < 0:
        # only reachable through corrupted data; the conditional decrement never goes below zero
        logger.warning("Ticket %s has negative remaining entries (%d)", ticket.code, ticket.remaining_entries)
        return ValidationResult(valid=False, message=MSG_NEGATIVE, ticket=ticket)
    return None


class TicketValidator:
    """Decides grant/deny for a scanned code and redeems one entry on grant.

    Business denials come back as ValidationResult; only store failures raise.
    """

    def __init__(self, store: TicketStore, *, max_attempts: int = 3, now: Callable[[], datetime] = _now):
        self.store = store
        self.max_attempts = max(1, max_attempts)
        self._now = now

    async def validate(self, code: str) -> ValidationResult:
        code = normalize_code(code)

        for attempt in range(1, self.max_attempts + 1):
            ticket = await self.store.get_by_code(code)
            if ticket is None:
                return ValidationResult(valid=False, message=MSG_NOT_FOUND)

            denied = _deny(ticket)
            if denied is not None:
                return denied

            expected = ticket.remaining_entries
            updated = await self.store.update_conditional(
                ticket.code,
                expected,
                {"remaining_entries": expected - 1, "last_scanned_at": self._now()},
            )
            if updated is not None:
                return ValidationResult(
                    valid=True, message=granted_message(updated.remaining_entries), ticket=updated
                )

            logger.info(
                "Ticket %s changed concurrently (expected %d entries), re-reading [attempt %d/%d]",
                ticket.code, expected, attempt, self.max_attempts,
            )

        raise StoreError("ticket is being redeemed concurrently", operation="validate")
