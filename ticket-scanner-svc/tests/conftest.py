from __future__ import annotations

import asyncio
import os
from collections import Counter
from contextlib import asynccontextmanager
from typing import Any

import pytest

# No real door relay or print agent during unit test runs.
os.environ.setdefault("RELAY_ENABLED", "false")
os.environ.setdefault("PRINT_ENABLED", "false")

from ticket_scanner.core.config import Settings  # noqa: E402
from ticket_scanner.core.errors import StoreError  # noqa: E402
from ticket_scanner.db import init_db, make_engine  # noqa: E402
from ticket_scanner.deps import build_store  # noqa: E402
from ticket_scanner.schemas import (  # noqa: E402
    ScanAuditRecord, TicketImport, TicketRead, VenueSettings, VenueSettingsUpdate,
)


def make_ticket(code: str = "ABC123", remaining: int = 1, **kw: Any) -> TicketRead:
    return TicketRead(
        code=code,
        entry_label=kw.get("entry_label", "Regular Entry"),
        remaining_entries=remaining,
        group_name=kw.get("group_name", "Capricci"),
        last_scanned_at=kw.get("last_scanned_at"),
    )


class FakeStore:
    """In-memory TicketStore.

    Reads yield to the event loop before returning, so two concurrent
    validations both see the same snapshot before either writes.
    """

    def __init__(self, *tickets: TicketRead):
        self.tickets: dict[str, TicketRead] = {t.code: t for t in tickets}
        self.audit: list[ScanAuditRecord] = []
        self.venue: VenueSettings | None = None
        self.fail: set[str] = set()
        self.calls: Counter[str] = Counter()

    def _enter(self, op: str) -> None:
        self.calls[op] += 1
        if op in self.fail:
            raise StoreError("ticket store unavailable", operation=op)

    async def get_by_code(self, code: str) -> TicketRead | None:
        self._enter("get_by_code")
        t = self.tickets.get(code) or self.tickets.get(code + "\n")
        snapshot = t.model_copy() if t else None
        await asyncio.sleep(0)
        return snapshot

    async def update_conditional(self, code, expected_remaining, patch):
        self._enter("update_conditional")
        t = self.tickets.get(code)
        if t is None or t.remaining_entries != expected_remaining:
            return None
        self.tickets[code] = t.model_copy(update=patch)
        return self.tickets[code].model_copy()

    async def insert_audit(self, record: ScanAuditRecord) -> None:
        self._enter("insert_audit")
        self.audit.append(record)

    async def count(self) -> int:
        self._enter("count")
        return len(self.tickets)

    async def bulk_upsert(self, tickets) -> int:
        self._enter("bulk_upsert")
        items = list(tickets)
        for t in items:
            self.tickets[t.code] = TicketRead(**t.model_dump())
        return len(items)

    async def delete_all(self) -> None:
        self._enter("delete_all")
        self.tickets.clear()

    async def list_audit(self, limit: int = 100):
        self._enter("list_audit")
        return list(reversed(self.audit))[:limit]

    async def clear_audit(self) -> None:
        self._enter("clear_audit")
        self.audit.clear()

    async def get_settings(self):
        self._enter("get_settings")
        return self.venue

    async def save_settings(self, changes: VenueSettingsUpdate):
        self._enter("save_settings")
        base = self.venue or VenueSettings()
        self.venue = base.model_copy(update=changes.model_dump(exclude_unset=True))
        return self.venue

    async def ping(self) -> bool:
        return "ping" not in self.fail


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.t = start

    def __call__(self) -> float:
        return self.t

    def advance(self, seconds: float) -> None:
        self.t += seconds


@asynccontextmanager
async def sql_store(path, *tickets: TicketImport, create: bool = True):
    """SqlTicketStore on a throwaway SQLite file; engine disposed on exit."""
    engine = make_engine(f"sqlite+aiosqlite:///{path}")
    try:
        if create:
            await init_db(engine)
        store = build_store(engine, Settings(store_timeout_seconds=5.0))
        if tickets:
            await store.bulk_upsert(tickets)
        yield store
    finally:
        await engine.dispose()


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "tickets.db"


@pytest.fixture
def clock():
    return FakeClock()
