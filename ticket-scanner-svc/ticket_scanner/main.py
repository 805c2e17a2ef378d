from __future__ import annotations
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator

from .core.config import get_settings
from .core.logging import get_logger
from .db import init_db, make_engine
from .deps import build_orchestrator, build_print_agent, build_store
from .routers import printer, scan, settings as settings_router, tickets

logger = get_logger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    engine = make_engine(settings.database_url)
    await init_db(engine)
    store = build_store(engine, settings)
    orchestrator = build_orchestrator(store, settings)
    app.state.store = store
    app.state.orchestrator = orchestrator
    app.state.printer = build_print_agent(settings)
    orchestrator.start()
    logger.info("Ticket scanner ready (relay=%s, printer=%s)", settings.relay_enabled, settings.print_enabled)
    yield
    # let the in-flight cycle and its side effects finish before closing the pool
    await orchestrator.stop()
    await engine.dispose()

def create_app() -> FastAPI:
    app = FastAPI(title="ticket-scanner-svc", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=get_settings().cors_origin_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(scan.router)
    app.include_router(tickets.router)
    app.include_router(settings_router.router)
    app.include_router(printer.router)

    @app.get("/health")
    async def health():
        store_ok = await app.state.store.ping()
        return {"status": "ok" if store_ok else "degraded", "service": "ticket-scanner-svc", "store": store_ok}

    Instrumentator().instrument(app).expose(app)
    return app

app = create_app()
