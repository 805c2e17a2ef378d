"""Scan cycle driver for one kiosk.

A cycle runs validating -> auditing -> side_effects -> idle. Cycles are
serialized through a queue drained by a single worker task; the cooldown
swallows a repeat of the last processed code while it is in flight and for
``cooldown_seconds`` after it finished. Only the validation decides the
outcome: audit and side-effect failures are logged and never change it, and
any validation failure turns into a denial (fail closed).
"""
from __future__ import annotations
import asyncio
import time
from collections import Counter, deque
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable

from ..core.errors import AuditWriteError, StoreError
from ..core.logging import get_logger
from ..schemas import (
    FlashRead, KioskStateRead, ScanAuditRecord, ScanResult, TicketRead, ValidationResult, VenueSettings,
)
from .print_agent import PrintAgent
from .receipt import format_escpos
from .relay import Relay
from .store import TicketStore
from .validation import TicketValidator, normalize_code

logger = get_logger(__name__)

IDLE = "idle"
VALIDATING = "validating"
AUDITING = "auditing"
SIDE_EFFECTS = "side_effects"


def _now():
    return datetime.now(timezone.utc)


@dataclass
class Flash:
    color: str
    expires: float        # monotonic clock
    until: datetime       # wall clock, for display


class KioskState:
    """Mutable per-kiosk state, owned by the orchestrator and read by the UI."""

    def __init__(self, *, recent_limit: int = 10, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self.phase = IDLE
        self.processing = False
        self.last_code: str | None = None
        self.cooldown_until: float | None = None  # None while last_code is in flight
        self.last_result: ScanResult | None = None
        self.recent: deque[ScanResult] = deque(maxlen=recent_limit)
        self._flash: Flash | None = None

    @property
    def flash(self) -> Flash | None:
        if self._flash is not None and self._clock() >= self._flash.expires:
            self._flash = None
        return self._flash

    def set_flash(self, color: str, seconds: float, now: datetime) -> None:
        self._flash = Flash(color=color, expires=self._clock() + seconds, until=now + timedelta(seconds=seconds))

    def record(self, result: ScanResult) -> None:
        self.last_result = result
        self.recent.appendleft(result)

    def clear_recent(self) -> None:
        self.recent.clear()

    def snapshot(self) -> KioskStateRead:
        f = self.flash
        return KioskStateRead(
            phase=self.phase,
            processing=self.processing,
            flash=FlashRead(color=f.color, until=f.until) if f else None,
            last_result=self.last_result,
            recent=list(self.recent),
        )


class ScanOrchestrator:
    def __init__(
        self,
        validator: TicketValidator,
        store: TicketStore,
        *,
        relay: Relay | None = None,
        printer: PrintAgent | None = None,
        state: KioskState | None = None,
        cooldown_seconds: float = 2.0,
        flash_seconds: float = 5.0,
        include_qr: bool = True,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = _now,
    ):
        self.validator = validator
        self.store = store
        self.relay = relay
        self.printer = printer
        self.state = state or KioskState(clock=clock)
        self.cooldown_seconds = cooldown_seconds
        self.flash_seconds = flash_seconds
        self.include_qr = include_qr
        self._clock = clock
        self._now = now
        self._queue: asyncio.Queue[tuple[str, asyncio.Future[ScanResult]]] = asyncio.Queue()
        self._worker: asyncio.Task | None = None
        self._background: set[asyncio.Task] = set()
        self._pending: Counter[str] = Counter()

    # --- input
    def _is_repeat(self, code: str) -> bool:
        st = self.state
        if code != st.last_code:
            return False
        return st.cooldown_until is None or self._clock() < st.cooldown_until

    def submit(self, code: str) -> asyncio.Future[ScanResult] | None:
        """Queue a scanned code. Returns None when the scan is ignored."""
        code = normalize_code(code)
        if not code:
            return None
        if self._is_repeat(code):
            logger.debug("Ignoring repeat scan of %s during cooldown", code)
            return None

        self.state.last_code = code
        self.state.cooldown_until = None
        self._pending[code] += 1
        fut: asyncio.Future[ScanResult] = asyncio.get_running_loop().create_future()
        self._queue.put_nowait((code, fut))
        self.start()
        return fut

    async def scan(self, code: str) -> ScanResult | None:
        fut = self.submit(code)
        if fut is None:
            return None
        return await fut

    # --- worker lifecycle
    def start(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._work(), name="scan-worker")

    async def stop(self) -> None:
        if self._worker is not None:
            await self._queue.join()
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None
        await self.drain()

    async def drain(self) -> None:
        """Wait for outstanding relay/print tasks."""
        while self._background:
            await asyncio.gather(*list(self._background))

    async def _work(self) -> None:
        while True:
            code, fut = await self._queue.get()
            try:
                result = await self._run_cycle(code)
            except Exception as exc:
                logger.exception("Scan cycle for %s crashed", code)
                if not fut.done():
                    fut.set_exception(exc)
            else:
                if not fut.done():
                    fut.set_result(result)
            finally:
                self._queue.task_done()

    # --- cycle
    async def _run_cycle(self, code: str) -> ScanResult:
        st = self.state
        st.processing = True
        try:
            st.phase = VALIDATING
            verdict = await self._validate(code)
            scanned_at = self._now()

            st.phase = AUDITING
            await self._audit(code, scanned_at, verdict)

            st.phase = SIDE_EFFECTS
            self._side_effects(code, scanned_at, verdict)

            result = ScanResult(
                code=code, timestamp=scanned_at, success=verdict.valid,
                message=verdict.message, ticket=verdict.ticket,
            )
            st.record(result)
            return result
        finally:
            st.phase = IDLE
            st.processing = False
            self._pending[code] -= 1
            if self._pending[code] <= 0:
                del self._pending[code]
                if st.last_code == code:
                    st.cooldown_until = self._clock() + self.cooldown_seconds

    async def _validate(self, code: str) -> ValidationResult:
        try:
            verdict = await self.validator.validate(code)
        except StoreError as exc:
            logger.error("Ticket store failure while validating %s: %s", code, exc, exc_info=True)
            return ValidationResult(valid=False, message=f"Error processing scan: {exc.reason}")
        except Exception:
            logger.exception("Unexpected failure while validating %s", code)
            return ValidationResult(valid=False, message="Error processing scan: unexpected error")
        logger.info("Scan %s: %s", code, verdict.message)
        return verdict

    async def _audit(self, code: str, scanned_at: datetime, verdict: ValidationResult) -> None:
        record = ScanAuditRecord(code=code, timestamp=scanned_at, outcome=verdict.valid, message=verdict.message)
        try:
            await self.store.insert_audit(record)
        except Exception as exc:
            err = AuditWriteError(f"could not record scan of {code}: {exc}")
            logger.warning("%s (outcome stands: %s)", err, verdict.message, exc_info=True)

    def _side_effects(self, code: str, scanned_at: datetime, verdict: ValidationResult) -> None:
        self.state.set_flash("green" if verdict.valid else "red", self.flash_seconds, scanned_at)
        if not verdict.valid:
            return
        if self.relay is not None:
            self._spawn("relay", self.relay.trigger())
        if self.printer is not None and verdict.ticket is not None:
            self._spawn("receipt", self._print_receipt(verdict.ticket, code, scanned_at))

    def _spawn(self, name: str, coro: Awaitable[None]) -> None:
        task = asyncio.create_task(self._guard(name, coro), name=f"side-effect-{name}")
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _guard(self, name: str, coro: Awaitable[None]) -> None:
        try:
            await coro
        except Exception as exc:
            logger.warning("Side effect %s failed: %s", name, exc)

    async def _venue(self) -> VenueSettings:
        try:
            return await self.store.get_settings() or VenueSettings()
        except StoreError as exc:
            logger.warning("Using default venue settings: %s", exc)
            return VenueSettings()

    async def _print_receipt(self, ticket: TicketRead, code: str, scanned_at: datetime) -> None:
        venue = await self._venue()
        lines = format_escpos(ticket, code, venue, scanned_at.astimezone(), include_qr=self.include_qr)
        if await self.printer.try_print(lines):
            logger.info("Receipt printed for %s", code)
