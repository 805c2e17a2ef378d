from __future__ import annotations
import csv
import io
from typing import Iterable

from pydantic import ValidationError

from ..core.errors import ImportFormatError
from ..core.logging import get_logger
from ..schemas import ImportReport, TicketImport
from .store import TicketStore

logger = get_logger(__name__)

# canonical header -> accepted spellings (first is canonical)
COLUMNS = {
    "code": ("code", "qrCode"),
    "entry_label": ("entryLabel", "entryName"),
    "remaining_entries": ("remainingEntries", "entriesRemaining"),
    "group_name": ("groupName", "club"),
}

TEMPLATE = """code,entryLabel,remainingEntries,groupName
TICKET001,Regular Entry,1,Capricci
TICKET002,VIP Access,3,Intooit
TICKET003,Backstage Pass,2,Capricci
"""


def csv_template() -> str:
    return TEMPLATE


def _pick(row: dict[str, str | None], field: str) -> str | None:
    for name in COLUMNS[field]:
        v = row.get(name)
        if v is not None and v.strip() != "":
            return v.strip()
    return None


def _describe(exc: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
    )


def parse_tickets_csv(text: str) -> list[TicketImport]:
    reader = csv.DictReader(io.StringIO(text.lstrip("\ufeff")))
    if not reader.fieldnames:
        raise ImportFormatError("empty file")
    reader.fieldnames = [f.strip() for f in reader.fieldnames]
    if not any(n in reader.fieldnames for n in COLUMNS["code"]):
        raise ImportFormatError("missing required code column")

    tickets: list[TicketImport] = []
    for row in reader:
        if not any((v or "").strip() for v in row.values() if isinstance(v, str)):
            continue  # blank line
        code = _pick(row, "code")
        if code is None:
            raise ImportFormatError("row has no code", line=reader.line_num)
        raw_count = _pick(row, "remaining_entries") or "1"
        try:
            remaining = int(raw_count)
        except ValueError:
            raise ImportFormatError(f"remainingEntries is not an integer: {raw_count!r}", line=reader.line_num)
        try:
            ticket = TicketImport(
                code=code,
                entry_label=_pick(row, "entry_label") or "Default Entry",
                remaining_entries=remaining,
                group_name=_pick(row, "group_name") or "Default Club",
            )
        except ValidationError as exc:
            raise ImportFormatError(_describe(exc), line=reader.line_num) from exc
        tickets.append(ticket)
    return tickets


def dedupe_last(tickets: Iterable[TicketImport]) -> list[TicketImport]:
    """Keep the last occurrence of each code; order follows first appearance."""
    unique: dict[str, TicketImport] = {}
    for t in tickets:
        unique[t.code] = t
    return list(unique.values())


async def import_tickets(store: TicketStore, text: str) -> ImportReport:
    tickets = parse_tickets_csv(text)
    if not tickets:
        return ImportReport(count=0, message="No valid tickets found in the CSV file")

    unique = dedupe_last(tickets)
    duplicates = len(tickets) - len(unique)
    if duplicates:
        logger.info("Removed %d duplicate tickets based on code", duplicates)

    count = await store.bulk_upsert(unique)
    message = f"Successfully imported {count} tickets"
    if duplicates:
        message += f" ({duplicates} duplicates were skipped)"
    return ImportReport(count=count, duplicates=duplicates, message=message)
