from __future__ import annotations
import secrets
from fastapi import Header, HTTPException, Request, status

from .core.config import Settings, get_settings
from .services.orchestrator import KioskState, ScanOrchestrator
from .services.print_agent import PrintAgent
from .services.relay import Relay
from .services.store import SqlTicketStore, TicketStore
from .services.validation import TicketValidator
from .db import make_session_maker

def build_print_agent(settings: Settings) -> PrintAgent:
    return PrintAgent(
        settings.print_agent_url,
        token=settings.print_agent_token,
        health_timeout=settings.print_health_timeout_seconds,
        timeout=settings.print_timeout_seconds,
    )

def build_orchestrator(store: TicketStore, settings: Settings) -> ScanOrchestrator:
    relay = Relay(settings.relay_url, timeout=settings.relay_timeout_seconds) if settings.relay_enabled else None
    printer = build_print_agent(settings) if settings.print_enabled else None
    return ScanOrchestrator(
        TicketValidator(store, max_attempts=settings.validation_max_attempts),
        store,
        relay=relay,
        printer=printer,
        state=KioskState(recent_limit=settings.recent_scans_limit),
        cooldown_seconds=settings.scan_cooldown_seconds,
        flash_seconds=settings.flash_seconds,
        include_qr=settings.print_include_qr,
    )

def build_store(engine, settings: Settings) -> SqlTicketStore:
    return SqlTicketStore(make_session_maker(engine), timeout=settings.store_timeout_seconds)

# --- request dependencies

def get_store(request: Request) -> TicketStore:
    return request.app.state.store

def get_orchestrator(request: Request) -> ScanOrchestrator:
    return request.app.state.orchestrator

def get_printer(request: Request) -> PrintAgent:
    return request.app.state.printer

async def require_admin(x_admin_token: str | None = Header(default=None)) -> None:
    expected = get_settings().admin_token
    if not expected:
        return
    if not x_admin_token or not secrets.compare_digest(x_admin_token, expected):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Admin token required")
