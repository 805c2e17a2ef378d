from __future__ import annotations
from datetime import datetime
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import HTMLResponse

from ..deps import get_store, require_admin
from ..core.errors import StoreError
from ..schemas import ReceiptPreview, ReceiptPreviewRequest, VenueSettings, VenueSettingsUpdate
from ..services.receipt import format_escpos, format_html
from ..services.store import TicketStore
from ..services.validation import normalize_code

router = APIRouter(tags=["settings"])

@router.get("/settings", response_model=VenueSettings)
async def get_venue_settings(store: TicketStore = Depends(get_store)):
    try:
        return await store.get_settings() or VenueSettings()
    except StoreError as exc:
        raise HTTPException(status_code=503, detail=exc.reason)

@router.put("/settings", response_model=VenueSettings, dependencies=[Depends(require_admin)])
async def update_venue_settings(payload: VenueSettingsUpdate, store: TicketStore = Depends(get_store)):
    try:
        return await store.save_settings(payload)
    except StoreError as exc:
        raise HTTPException(status_code=503, detail=exc.reason)

async def _preview_inputs(store: TicketStore, code: str):
    try:
        ticket = await store.get_by_code(normalize_code(code))
        venue = await store.get_settings() or VenueSettings()
    except StoreError as exc:
        raise HTTPException(status_code=503, detail=exc.reason)
    if ticket is None:
        raise HTTPException(status_code=404, detail="Ticket not found")
    return ticket, venue

# Read-only: renders without redeeming an entry
@router.post("/receipts/preview", response_model=ReceiptPreview)
async def preview_receipt(payload: ReceiptPreviewRequest, store: TicketStore = Depends(get_store)):
    ticket, venue = await _preview_inputs(store, payload.code)
    return ReceiptPreview(lines=format_escpos(ticket, ticket.code.strip(), venue, datetime.now().astimezone(), include_qr=payload.include_qr))

@router.post("/receipts/preview.html", response_class=HTMLResponse)
async def preview_receipt_html(payload: ReceiptPreviewRequest, store: TicketStore = Depends(get_store)):
    ticket, venue = await _preview_inputs(store, payload.code)
    return HTMLResponse(format_html(ticket, ticket.code.strip(), venue, datetime.now().astimezone(), include_qr=payload.include_qr))
