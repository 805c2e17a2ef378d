from __future__ import annotations
from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from fastapi.responses import PlainTextResponse

from ..deps import get_store, require_admin
from ..core.errors import ImportFormatError, StoreError
from ..schemas import ImportReport
from ..services.importer import csv_template, import_tickets
from ..services.store import TicketStore

router = APIRouter(prefix="/tickets", tags=["tickets"])

@router.get("/count")
async def ticket_count(store: TicketStore = Depends(get_store)):
    try:
        return {"count": await store.count()}
    except StoreError as exc:
        raise HTTPException(status_code=503, detail=exc.reason)

@router.get("/template", response_class=PlainTextResponse)
async def ticket_template():
    return PlainTextResponse(
        csv_template(),
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="tickets_template.csv"'},
    )

@router.post("/import", response_model=ImportReport, dependencies=[Depends(require_admin)])
async def import_csv(file: UploadFile = File(...), store: TicketStore = Depends(get_store)):
    raw = await file.read()
    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError:
        raise HTTPException(status_code=400, detail="CSV must be UTF-8")
    try:
        return await import_tickets(store, text)
    except ImportFormatError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except StoreError as exc:
        raise HTTPException(status_code=503, detail=exc.reason)

@router.delete("", status_code=204, dependencies=[Depends(require_admin)])
async def delete_all_tickets(store: TicketStore = Depends(get_store)):
    try:
        await store.delete_all()
    except StoreError as exc:
        raise HTTPException(status_code=503, detail=exc.reason)
