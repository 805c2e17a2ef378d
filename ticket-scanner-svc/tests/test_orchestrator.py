import asyncio
import json

import httpx

from conftest import FakeStore, make_ticket

from ticket_scanner.services.orchestrator import KioskState, ScanOrchestrator
from ticket_scanner.services.print_agent import PrintAgent
from ticket_scanner.services.relay import Relay
from ticket_scanner.services.validation import MSG_EXHAUSTED, MSG_NOT_FOUND, TicketValidator


def build(store, clock, **kw):
    return ScanOrchestrator(
        TicketValidator(store),
        store,
        state=KioskState(recent_limit=10, clock=clock),
        cooldown_seconds=2.0,
        flash_seconds=5.0,
        clock=clock,
        **kw,
    )


class Recorder:
    """httpx handler recording requests; ``fail`` paths raise ConnectError."""

    def __init__(self, *, healthy=True, fail=()):
        self.requests: list[httpx.Request] = []
        self.healthy = healthy
        self.fail = set(fail)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path in self.fail:
            raise httpx.ConnectError("connection refused", request=request)
        if request.url.path == "/health":
            return httpx.Response(200, json={"ok": self.healthy})
        return httpx.Response(200, json={"ok": True})

    def paths(self):
        return [r.url.path for r in self.requests]


def test_end_to_end_last_entry_then_denied_after_cooldown(clock):
    store = FakeStore(make_ticket("ABC123", remaining=1))

    async def scenario():
        orch = build(store, clock)
        first = await orch.scan("ABC123")
        repeat = await orch.scan("ABC123")
        clock.advance(2.1)
        second = await orch.scan("ABC123")
        await orch.stop()
        return first, repeat, second

    first, repeat, second = asyncio.run(scenario())
    assert first.success is True
    assert "0 entries remaining" in first.message
    assert repeat is None
    assert second.success is False
    assert second.message == MSG_EXHAUSTED
    assert store.tickets["ABC123"].remaining_entries == 0
    assert [a.outcome for a in store.audit] == [True, False]


def test_same_code_twice_within_cooldown_runs_one_cycle(clock):
    store = FakeStore(make_ticket("DUP", remaining=5))

    async def scenario():
        orch = build(store, clock)
        f1 = orch.submit("DUP")
        f2 = orch.submit("DUP\n")
        await f1
        clock.advance(1.5)
        f3 = orch.submit("DUP")
        await orch.stop()
        return f2, f3

    f2, f3 = asyncio.run(scenario())
    assert f2 is None
    assert f3 is None
    assert store.calls["get_by_code"] == 1
    assert store.tickets["DUP"].remaining_entries == 4
    assert len(store.audit) == 1


def test_different_code_mid_cycle_is_queued(clock):
    store = FakeStore(make_ticket("A", remaining=1), make_ticket("B", remaining=1))

    async def scenario():
        orch = build(store, clock)
        fa = orch.submit("A")
        fb = orch.submit("B")
        ra, rb = await asyncio.gather(fa, fb)
        state = orch.state.snapshot()
        await orch.stop()
        return ra, rb, state

    ra, rb, state = asyncio.run(scenario())
    assert ra.success and rb.success
    assert [r.code for r in state.recent] == ["B", "A"]
    assert state.last_result.code == "B"
    assert state.phase == "idle"
    assert state.processing is False


class GatedStore(FakeStore):
    """Holds lookups of one code until released."""

    def __init__(self, *tickets, hold):
        super().__init__(*tickets)
        self.hold = hold
        self.release = asyncio.Event()

    async def get_by_code(self, code):
        if code == self.hold:
            await self.release.wait()
        return await super().get_by_code(code)


def test_queued_repeat_keeps_code_guarded_until_it_finishes(clock):
    store = GatedStore(make_ticket("A", remaining=5), make_ticket("B", remaining=1), hold="B")

    async def scenario():
        orch = build(store, clock)
        fa1 = orch.submit("A")
        fb = orch.submit("B")
        fa2 = orch.submit("A")
        await fa1
        clock.advance(2.1)
        while_queued = orch.submit("A")
        store.release.set()
        await asyncio.gather(fb, fa2)
        clock.advance(1.0)
        in_window = orch.submit("A")
        clock.advance(1.1)
        after = await orch.scan("A")
        await orch.stop()
        return fa2.result(), while_queued, in_window, after

    second, while_queued, in_window, after = asyncio.run(scenario())
    assert second.success is True
    assert while_queued is None
    assert in_window is None
    assert after.success is True
    assert store.tickets["A"].remaining_entries == 2


def test_empty_input_is_ignored(clock):
    async def scenario():
        orch = build(FakeStore(), clock)
        return orch.submit("   \n")

    assert asyncio.run(scenario()) is None


def test_audit_failure_does_not_change_grant(clock):
    store = FakeStore(make_ticket("T1", remaining=2))
    store.fail.add("insert_audit")

    async def scenario():
        orch = build(store, clock)
        result = await orch.scan("T1")
        await orch.stop()
        return result

    result = asyncio.run(scenario())
    assert result.success is True
    assert result.message == "Access granted - 1 entries remaining"
    assert store.tickets["T1"].remaining_entries == 1
    assert store.calls["insert_audit"] == 1


def test_store_failure_fails_closed(clock):
    store = FakeStore(make_ticket("T1", remaining=2))
    store.fail.add("get_by_code")
    relay_calls = Recorder()

    async def scenario():
        orch = build(store, clock, relay=Relay("http://relay.local/open", transport=httpx.MockTransport(relay_calls)))
        result = await orch.scan("T1")
        await orch.drain()
        flash = orch.state.flash
        await orch.stop()
        return result, flash

    result, flash = asyncio.run(scenario())
    assert result.success is False
    assert result.message == "Error processing scan: ticket store unavailable"
    assert result.ticket is None
    assert flash.color == "red"
    assert relay_calls.requests == []
    assert store.audit[0].outcome is False


def test_grant_fans_out_to_relay_and_printer(clock):
    store = FakeStore(make_ticket("VIP1", remaining=3, entry_label="VIP Access"))
    relay_calls = Recorder()
    printer_calls = Recorder()

    async def scenario():
        orch = build(
            store, clock,
            relay=Relay("http://relay.local/open", transport=httpx.MockTransport(relay_calls)),
            printer=PrintAgent("http://printer.local", token="secret", transport=httpx.MockTransport(printer_calls)),
        )
        result = await orch.scan("VIP1")
        await orch.stop()
        return result

    result = asyncio.run(scenario())
    assert result.success is True
    assert relay_calls.paths() == ["/open"]
    assert printer_calls.paths() == ["/health", "/print"]

    body = json.loads(printer_calls.requests[1].content)
    assert body["cut"] is True
    assert body["drawer"] is False
    assert "VIP1" in body["lines"]
    assert printer_calls.requests[1].headers["X-Print-Token"] == "secret"


def test_relay_failure_does_not_suppress_printing(clock):
    store = FakeStore(make_ticket("T1", remaining=1))
    relay_calls = Recorder(fail={"/open"})
    printer_calls = Recorder()

    async def scenario():
        orch = build(
            store, clock,
            relay=Relay("http://relay.local/open", transport=httpx.MockTransport(relay_calls)),
            printer=PrintAgent("http://printer.local", transport=httpx.MockTransport(printer_calls)),
        )
        result = await orch.scan("T1")
        await orch.stop()
        return result

    result = asyncio.run(scenario())
    assert result.success is True
    assert len(relay_calls.requests) == 1
    assert printer_calls.paths() == ["/health", "/print"]


def test_absent_print_agent_skips_printing(clock):
    store = FakeStore(make_ticket("T1", remaining=1))
    printer_calls = Recorder(fail={"/health"})

    async def scenario():
        orch = build(store, clock, printer=PrintAgent("http://printer.local", transport=httpx.MockTransport(printer_calls)))
        result = await orch.scan("T1")
        await orch.stop()
        return result

    result = asyncio.run(scenario())
    assert result.success is True
    assert printer_calls.paths() == ["/health"]


def test_denial_has_no_side_effects(clock):
    store = FakeStore(make_ticket("USED", remaining=0))
    relay_calls = Recorder()
    printer_calls = Recorder()

    async def scenario():
        orch = build(
            store, clock,
            relay=Relay("http://relay.local/open", transport=httpx.MockTransport(relay_calls)),
            printer=PrintAgent("http://printer.local", transport=httpx.MockTransport(printer_calls)),
        )
        result = await orch.scan("USED")
        await orch.stop()
        return result

    result = asyncio.run(scenario())
    assert result.success is False
    assert relay_calls.requests == []
    assert printer_calls.requests == []


def test_flash_clears_after_five_seconds(clock):
    store = FakeStore(make_ticket("T1", remaining=1))

    async def scenario():
        orch = build(store, clock)
        await orch.scan("T1")
        seen = [orch.state.flash.color]
        clock.advance(4.9)
        seen.append(orch.state.flash.color)
        clock.advance(0.2)
        seen.append(orch.state.flash)
        await orch.stop()
        return seen

    assert asyncio.run(scenario()) == ["green", "green", None]


def test_recent_scans_capped_most_recent_first(clock):
    async def scenario():
        orch = build(FakeStore(), clock)
        for i in range(12):
            await orch.scan(f"CODE{i}")
        state = orch.state.snapshot()
        orch.state.clear_recent()
        cleared = orch.state.snapshot()
        await orch.stop()
        return state, cleared

    state, cleared = asyncio.run(scenario())
    assert len(state.recent) == 10
    assert state.recent[0].code == "CODE11"
    assert state.recent[-1].code == "CODE2"
    assert all(r.message == MSG_NOT_FOUND for r in state.recent)
    assert cleared.recent == []
    assert cleared.last_result.code == "CODE11"
