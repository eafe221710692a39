"""
Printer Poller

Polls the printer status endpoint and publishes PrinterState snapshots to
subscribers when they change.
"""

from printer_poller.models import PrinterState, PrinterStatus
from printer_poller.poller import PrinterPoller, parse_printer_status

__all__ = [
    "PrinterPoller",
    "PrinterState",
    "PrinterStatus",
    "parse_printer_status",
]
