from __future__ import annotations
from pydantic import BaseModel, ConfigDict, Field
from typing import Annotated, Literal
from datetime import datetime

Code256    = Annotated[str, Field(min_length=1, max_length=256)]
Name128    = Annotated[str, Field(min_length=1, max_length=128)]
Ean13      = Annotated[str, Field(pattern=r"^\d{13}$")]

Phase      = Literal["idle", "validating", "auditing", "side_effects"]
FlashColor = Literal["green", "red"]

# --- tickets
class TicketRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    code: str
    entry_label: str
    remaining_entries: int
    last_scanned_at: datetime | None = None
    group_name: str

class TicketImport(BaseModel):
    code: Code256
    entry_label: str = "Default Entry"
    remaining_entries: int = 1
    group_name: str = "Default Club"

class ImportReport(BaseModel):
    count: int
    duplicates: int = 0
    message: str

# --- validation / scanning
class ValidationResult(BaseModel):
    valid: bool
    message: str
    ticket: TicketRead | None = None

class ScanRequest(BaseModel):
    code: str  # raw scanner payload, may carry whitespace / trailing newline

class ScanResult(BaseModel):
    code: str
    timestamp: datetime
    success: bool
    message: str
    ticket: TicketRead | None = None

class ScanAuditRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int | None = None
    code: str
    timestamp: datetime
    outcome: bool
    message: str

class FlashRead(BaseModel):
    color: FlashColor
    until: datetime

class KioskStateRead(BaseModel):
    phase: Phase
    processing: bool
    flash: FlashRead | None = None
    last_result: ScanResult | None = None
    recent: list[ScanResult] = []

# --- venue settings (receipt header)
class VenueSettings(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    club_name: str = "Famous Summer Club"
    logo_url: str | None = None
    ean13_barcode: str = "1234567890128"
    ticket_price: int = 50
    updated_at: datetime | None = None

class VenueSettingsUpdate(BaseModel):
    club_name: Name128 | None = None
    logo_url: str | None = None
    ean13_barcode: Ean13 | None = None
    ticket_price: Annotated[int, Field(ge=0)] | None = None

class ReceiptPreviewRequest(BaseModel):
    code: Code256
    include_qr: bool = True

class ReceiptPreview(BaseModel):
    lines: list[str]
