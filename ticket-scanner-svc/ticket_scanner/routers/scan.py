from __future__ import annotations
from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse

from ..deps import get_orchestrator, get_store, require_admin
from ..core.errors import StoreError
from ..schemas import KioskStateRead, ScanAuditRecord, ScanRequest, ScanResult
from ..services.orchestrator import ScanOrchestrator
from ..services.store import TicketStore

router = APIRouter(tags=["scan"])

# --- 1) Kiosk input (camera decode or keyboard wedge): run one scan cycle
@router.post("/scan", response_model=ScanResult, responses={202: {"description": "Ignored by cooldown"}})
async def scan(payload: ScanRequest, orchestrator: ScanOrchestrator = Depends(get_orchestrator)):
    result = await orchestrator.scan(payload.code)
    if result is None:
        return JSONResponse(status_code=202, content={"ignored": True})
    return result

# --- 2) UI polling: flash, phase, last result, recent scans
@router.get("/scan/state", response_model=KioskStateRead)
async def kiosk_state(orchestrator: ScanOrchestrator = Depends(get_orchestrator)):
    return orchestrator.state.snapshot()

@router.delete("/scan/recent", status_code=204)
async def clear_recent(orchestrator: ScanOrchestrator = Depends(get_orchestrator)):
    orchestrator.state.clear_recent()

# --- 3) Audit history
@router.get("/scans", response_model=list[ScanAuditRecord], dependencies=[Depends(require_admin)])
async def scan_history(limit: int = Query(100, ge=1, le=1000), store: TicketStore = Depends(get_store)):
    try:
        return await store.list_audit(limit)
    except StoreError as exc:
        raise HTTPException(status_code=503, detail=exc.reason)

@router.delete("/scans", status_code=204, dependencies=[Depends(require_admin)])
async def clear_scan_history(store: TicketStore = Depends(get_store)):
    try:
        await store.clear_audit()
    except StoreError as exc:
        raise HTTPException(status_code=503, detail=exc.reason)
