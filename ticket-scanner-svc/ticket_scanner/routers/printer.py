from __future__ import annotations
from datetime import datetime
from fastapi import APIRouter, Depends, HTTPException

from ..deps import get_printer, get_store, require_admin
from ..core.errors import PrintAgentError, StoreError
from ..core.logging import get_logger
from ..schemas import VenueSettings
from ..services.print_agent import PrintAgent
from ..services.receipt import sample_receipt
from ..services.store import TicketStore

router = APIRouter(prefix="/printer", tags=["printer"])
logger = get_logger(__name__)

@router.get("/status")
async def printer_status(printer: PrintAgent = Depends(get_printer)):
    return {"ok": await printer.is_available()}

@router.post("/test", dependencies=[Depends(require_admin)])
async def printer_test(printer: PrintAgent = Depends(get_printer), store: TicketStore = Depends(get_store)):
    if not await printer.is_available():
        raise HTTPException(status_code=503, detail=f"Print agent not reachable at {printer.base_url}")
    try:
        venue = await store.get_settings() or VenueSettings()
    except StoreError:
        venue = VenueSettings()
    try:
        await printer.print_lines(sample_receipt(venue, datetime.now().astimezone()))
    except PrintAgentError as exc:
        logger.warning("Test print failed: %s", exc)
        raise HTTPException(status_code=502, detail=str(exc))
    return {"ok": True}
