from __future__ import annotations


class ScannerError(Exception):
    """Base class for ticket scanner failures."""


class StoreError(ScannerError):
    """Transport, auth or query failure talking to the ticket store.

    ``reason`` is a short phrase safe to embed in a kiosk denial message;
    the full cause stays on ``__cause__`` for the logs.
    """

    def __init__(self, reason: str, *, operation: str | None = None):
        self.reason = reason
        self.operation = operation
        super().__init__(f"{operation}: {reason}" if operation else reason)


class AuditWriteError(ScannerError):
    """Scan history could not be written after a decision was made."""


class SideEffectError(ScannerError):
    """A grant side effect (relay, printer) failed."""


class RelayError(SideEffectError):
    pass


class PrintAgentError(SideEffectError):
    pass


class ImportFormatError(ScannerError):
    """Bulk import file is malformed."""

    def __init__(self, message: str, *, line: int | None = None):
        self.line = line
        super().__init__(f"line {line}: {message}" if line is not None else message)
