"""Receipt rendering for granted scans.

Two outputs, both pure (no printer or network I/O):

* ``format_escpos`` builds the line list the local print agent forwards
  verbatim to an 80mm thermal printer (42 columns, Font A). Alignment and
  emphasis are ESC/POS prefixes on each line:

      ESC a n   align (0 left, 1 center, 2 right)
      ESC ! n   print mode (bold, double height/width)
      GS k      1D barcode (EAN-13)
      GS ( k    2D symbol (QR)

* ``format_html`` builds a standalone page for the browser print fallback,
  with the QR code embedded as a PNG data URI.
"""
from __future__ import annotations
import base64
import html
import re
from datetime import datetime
from io import BytesIO

import qrcode

from ..schemas import TicketRead, VenueSettings

WIDTH = 42
ESC = "\x1b"
GS = "\x1d"

A_LEFT   = f"{ESC}a\x00"
A_CENTER = f"{ESC}a\x01"
A_RIGHT  = f"{ESC}a\x02"

F_NORMAL     = f"{ESC}!\x00"
F_BOLD       = f"{ESC}!\x08"
F_DBL_HEIGHT = f"{ESC}!\x10"
F_DBL_WIDTH  = f"{ESC}!\x20"
F_LARGE      = f"{ESC}!\x30"
F_LARGE_BOLD = f"{ESC}!\x38"

_EAN13 = re.compile(r"^\d{13}$")


def line(c: str = "-") -> str:
    return c * WIDTH


def dline(c: str = "=") -> str:
    return c * WIDTH


def center_text(t: str) -> str:
    pad = max(0, (WIDTH - len(t)) // 2)
    return " " * pad + t


def two_cols(left: str, right: str) -> str:
    room = max(0, WIDTH - len(right) - 1)
    return (left[:room] if len(left) > room else left.ljust(room)) + " " + right


def wrap_text(t: str) -> list[str]:
    return [t[i:i + WIDTH] for i in range(0, len(t), WIDTH)] or [t]


def fmt_datetime(d: datetime) -> str:
    return d.strftime("%d.%m.%Y %H:%M")


def venue_title(ticket: TicketRead, venue: VenueSettings) -> str:
    return f"{ticket.group_name} - {venue.club_name}" if ticket.group_name else venue.club_name


# --- native barcode commands
def ean13_command(digits: str) -> str:
    """GS k function B, HRI printed below."""
    return f"{GS}H\x02{GS}h\x50{GS}w\x02{GS}k\x43\x0d{digits}"


def qr_command(data: str, *, module_size: int = 6) -> str:
    """GS ( k sequence: model 2, module size, EC level M, store, print."""
    n = len(data.encode("utf-8")) + 3
    return (
        f"{GS}(k\x04\x00\x31\x41\x32\x00"
        f"{GS}(k\x03\x00\x31\x43{chr(module_size)}"
        f"{GS}(k\x03\x00\x31\x45\x31"
        f"{GS}(k{chr(n % 256)}{chr(n // 256)}\x31\x50\x30{data}"
        f"{GS}(k\x03\x00\x31\x51\x30"
    )


def format_escpos(
    ticket: TicketRead,
    code: str,
    venue: VenueSettings,
    scanned_at: datetime,
    *,
    include_qr: bool = True,
) -> list[str]:
    lines: list[str] = [
        A_CENTER + F_LARGE_BOLD + venue.club_name,
        A_CENTER + F_BOLD + ticket.group_name,
        F_NORMAL + dline(),
        A_CENTER + F_DBL_HEIGHT + ticket.entry_label.upper(),
        F_NORMAL + line(),
        A_LEFT + "Code:",
        *wrap_text(code),
        two_cols("Verified:", fmt_datetime(scanned_at)),
        two_cols("Entries left:", str(ticket.remaining_entries)),
        line(),
    ]
    if include_qr:
        lines.append(A_CENTER + qr_command(code))
    if _EAN13.match(venue.ean13_barcode or ""):
        lines.append(A_CENTER + ean13_command(venue.ean13_barcode))
    lines += [
        A_CENTER + "Access granted",
        A_LEFT + "",
    ]
    return lines


def qr_data_uri(data: str) -> str:
    img = qrcode.make(data)
    b = BytesIO(); img.save(b, format="PNG")
    return "data:image/png;base64," + base64.b64encode(b.getvalue()).decode("ascii")


def format_html(
    ticket: TicketRead,
    code: str,
    venue: VenueSettings,
    scanned_at: datetime,
    *,
    include_qr: bool = True,
) -> str:
    e = html.escape
    logo = f'<img class="logo" src="{e(venue.logo_url)}" alt="">' if venue.logo_url else ""
    qr = f'<img class="qr" src="{qr_data_uri(code)}" alt="{e(code)}">' if include_qr else ""
    return f"""<!DOCTYPE html>
<html>
<head>
<meta charset="UTF-8">
<title>Receipt - {e(code)}</title>
<style>
  @page {{ size: 80mm auto; margin: 0; }}
  body {{ font-family: Arial, sans-serif; width: 72mm; margin: 0 auto; text-align: center; color: #000; }}
  .logo {{ max-width: 60mm; max-height: 30mm; }}
  .event-name {{ font-size: 20px; font-weight: 900; margin: 8px 0; }}
  .ticket-type {{ font-size: 24px; font-weight: 900; text-transform: uppercase; border: 2px solid #000; padding: 8px; }}
  .code {{ font-family: monospace; word-break: break-all; }}
  .qr {{ width: 40mm; height: 40mm; }}
</style>
</head>
<body>
<div class="receipt">
  <div class="header">{logo}<div class="event-name">{e(venue_title(ticket, venue))}</div></div>
  <div class="ticket-type">{e(ticket.entry_label)}</div>
  <p class="code">{e(code)}</p>
  <p class="scan-time">Verified {e(fmt_datetime(scanned_at))}</p>
  <p>Entries left: {ticket.remaining_entries}</p>
  {qr}
</div>
</body>
</html>
"""


def sample_receipt(venue: VenueSettings, printed_at: datetime) -> list[str]:
    """Fixed receipt for checking the printer from the settings screen."""
    return [
        A_CENTER + F_LARGE_BOLD + "TEST RECEIPT",
        A_CENTER + F_BOLD + venue.club_name,
        F_NORMAL + dline(),
        A_LEFT + two_cols("Printed:", fmt_datetime(printed_at)),
        two_cols("Width:", f"{WIDTH} columns"),
        line(),
        A_CENTER + "Printer OK",
        A_LEFT + "",
    ]
