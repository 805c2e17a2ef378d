from __future__ import annotations
import asyncio
from typing import Any, Awaitable, Callable, Iterable, Protocol, TypeVar

from sqlalchemy import delete, func, or_, select, text, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.errors import StoreError
from ..core.logging import get_logger
from ..models import AppSettings, ScanHistory, Ticket
from ..schemas import ScanAuditRecord, TicketImport, TicketRead, VenueSettings, VenueSettingsUpdate

logger = get_logger(__name__)

T = TypeVar("T")

SETTINGS_ID = "settings"


class TicketStore(Protocol):
    """Operations the scanner needs from the remote ticket store."""

    async def get_by_code(self, code: str) -> TicketRead | None: ...

    async def update_conditional(
        self, code: str, expected_remaining: int, patch: dict[str, Any]
    ) -> TicketRead | None: ...

    async def insert_audit(self, record: ScanAuditRecord) -> None: ...

    async def count(self) -> int: ...

    async def bulk_upsert(self, tickets: Iterable[TicketImport]) -> int: ...

    async def delete_all(self) -> None: ...

    async def list_audit(self, limit: int = 100) -> list[ScanAuditRecord]: ...

    async def clear_audit(self) -> None: ...

    async def get_settings(self) -> VenueSettings | None: ...

    async def save_settings(self, changes: VenueSettingsUpdate) -> VenueSettings: ...

    async def ping(self) -> bool: ...


class SqlTicketStore:
    """TicketStore over SQLAlchemy async sessions.

    Each call runs in its own short transaction and is bounded by
    ``timeout`` seconds. Driver and query failures surface as StoreError.
    """

    def __init__(self, session_maker: async_sessionmaker[AsyncSession], *, timeout: float = 5.0):
        self._sessions = session_maker
        self._timeout = timeout

    async def _run(self, operation: str, fn: Callable[[], Awaitable[T]]) -> T:
        try:
            return await asyncio.wait_for(fn(), timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            raise StoreError("ticket store timed out", operation=operation) from exc
        except (SQLAlchemyError, OSError) as exc:
            raise StoreError("ticket store unavailable", operation=operation) from exc

    # --- tickets
    async def get_by_code(self, code: str) -> TicketRead | None:
        async def _q():
            async with self._sessions() as db:
                rows = (await db.execute(
                    select(Ticket).where(or_(Ticket.code == code, Ticket.code == f"{code}\n"))
                )).scalars().all()
            if not rows:
                return None
            # prefer the exact code when both variants were imported
            exact = [r for r in rows if r.code == code]
            return TicketRead.model_validate(exact[0] if exact else rows[0])
        return await self._run("get_by_code", _q)

    async def update_conditional(
        self, code: str, expected_remaining: int, patch: dict[str, Any]
    ) -> TicketRead | None:
        """Apply ``patch`` only if remaining_entries still equals ``expected_remaining``.

        Returns the updated ticket, or None when another writer got there first.
        """
        async def _q():
            async with self._sessions() as db:
                async with db.begin():
                    res = await db.execute(
                        update(Ticket)
                        .where(Ticket.code == code, Ticket.remaining_entries == expected_remaining)
                        .values(**patch)
                        .execution_options(synchronize_session=False)
                    )
                    if res.rowcount != 1:
                        return None
                    row = (await db.execute(select(Ticket).where(Ticket.code == code))).scalar_one()
                    return TicketRead.model_validate(row)
        return await self._run("update_conditional", _q)

    async def count(self) -> int:
        async def _q():
            async with self._sessions() as db:
                return int((await db.execute(select(func.count()).select_from(Ticket))).scalar_one())
        return await self._run("count", _q)

    async def bulk_upsert(self, tickets: Iterable[TicketImport]) -> int:
        items = list(tickets)

        async def _q():
            async with self._sessions() as db:
                async with db.begin():
                    for t in items:
                        await db.merge(Ticket(
                            code=t.code,
                            entry_label=t.entry_label,
                            remaining_entries=t.remaining_entries,
                            group_name=t.group_name,
                            last_scanned_at=None,
                        ))
            return len(items)
        n = await self._run("bulk_upsert", _q)
        logger.info("Upserted %d tickets", n)
        return n

    async def delete_all(self) -> None:
        async def _q():
            async with self._sessions() as db:
                async with db.begin():
                    await db.execute(delete(Ticket))
        await self._run("delete_all", _q)
        logger.warning("All tickets deleted")

    # --- scan history
    async def insert_audit(self, record: ScanAuditRecord) -> None:
        async def _q():
            async with self._sessions() as db:
                async with db.begin():
                    db.add(ScanHistory(
                        code=record.code,
                        timestamp=record.timestamp,
                        outcome=record.outcome,
                        message=record.message,
                    ))
        await self._run("insert_audit", _q)

    async def list_audit(self, limit: int = 100) -> list[ScanAuditRecord]:
        async def _q():
            async with self._sessions() as db:
                rows = (await db.execute(
                    select(ScanHistory).order_by(ScanHistory.timestamp.desc(), ScanHistory.id.desc()).limit(limit)
                )).scalars().all()
            return [ScanAuditRecord.model_validate(r) for r in rows]
        return await self._run("list_audit", _q)

    async def clear_audit(self) -> None:
        async def _q():
            async with self._sessions() as db:
                async with db.begin():
                    await db.execute(delete(ScanHistory))
        await self._run("clear_audit", _q)
        logger.warning("Scan history cleared")

    # --- venue settings
    async def get_settings(self) -> VenueSettings | None:
        async def _q():
            async with self._sessions() as db:
                row = await db.get(AppSettings, SETTINGS_ID)
            return VenueSettings.model_validate(row) if row else None
        return await self._run("get_settings", _q)

    async def save_settings(self, changes: VenueSettingsUpdate) -> VenueSettings:
        async def _q():
            async with self._sessions() as db:
                async with db.begin():
                    row = await db.get(AppSettings, SETTINGS_ID)
                    if row is None:
                        row = AppSettings(id=SETTINGS_ID)
                        db.add(row)
                    for k, v in changes.model_dump(exclude_unset=True).items():
                        if v is None and k != "logo_url":
                            continue
                        setattr(row, k, v)
                    await db.flush()
                    await db.refresh(row)
                    return VenueSettings.model_validate(row)
        return await self._run("save_settings", _q)

    async def ping(self) -> bool:
        async def _q():
            async with self._sessions() as db:
                await db.execute(text("SELECT 1"))
            return True
        try:
            return await self._run("ping", _q)
        except StoreError:
            logger.warning("Ticket store ping failed", exc_info=True)
            return False
