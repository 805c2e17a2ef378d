from __future__ import annotations
from datetime import datetime, timezone
from sqlalchemy.orm import declarative_base, Mapped, mapped_column
from sqlalchemy import Index, Integer, String, Text, Boolean
from sqlalchemy.types import DateTime

Base = declarative_base()

def utcnow():
    return datetime.now(timezone.utc)

class Ticket(Base):
    __tablename__ = "tickets"
    code: Mapped[str] = mapped_column(String(256), primary_key=True)  # QR payload
    entry_label: Mapped[str] = mapped_column(String(128), default="Default Entry", nullable=False)
    remaining_entries: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    last_scanned_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    group_name: Mapped[str] = mapped_column(String(128), default="Default Club", nullable=False)

class ScanHistory(Base):
    __tablename__ = "scan_history"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    code: Mapped[str] = mapped_column(String(256), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    outcome: Mapped[bool] = mapped_column(Boolean, nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)

    __table_args__ = (
        Index("ix_scan_history_timestamp", "timestamp"),
        Index("ix_scan_history_code", "code"),
    )

class AppSettings(Base):
    __tablename__ = "app_settings"
    id: Mapped[str] = mapped_column(String(32), primary_key=True, default="settings")
    club_name: Mapped[str] = mapped_column(String(128), default="Famous Summer Club", nullable=False)
    logo_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    ean13_barcode: Mapped[str] = mapped_column(String(13), default="1234567890128", nullable=False)
    ticket_price: Mapped[int] = mapped_column(Integer, default=50, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
