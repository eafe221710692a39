"""Printer state snapshot produced by the poller."""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional


class PrinterStatus(str, Enum):
    """Printer states understood by the orchestrator."""

    PRINTING = "printing"
    PAUSED = "paused"
    RESUMING = "resuming"
    IDLE = "idle"
    COMPLETE = "complete"
    STOPPED = "stopped"
    ERROR = "error"
    STANDBY = "standby"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value) -> "PrinterStatus":
        """Case-insensitive lookup; anything unrecognised is UNKNOWN."""
        if isinstance(value, PrinterStatus):
            return value
        if not value:
            return cls.UNKNOWN
        text = str(value).strip().lower()
        text = _STATUS_ALIASES.get(text, text)
        try:
            return cls(text)
        except ValueError:
            return cls.UNKNOWN


_STATUS_ALIASES = {
    "ready": "idle",
    "operational": "idle",
    "completed": "complete",
    "finished": "complete",
    "cancelled": "stopped",
    "canceled": "stopped",
    "shutdown": "error",
    "pausing": "paused",
}

ACTIVE_STATUSES = frozenset(
    [PrinterStatus.PRINTING, PrinterStatus.PAUSED, PrinterStatus.RESUMING]
)
DONE_STATUSES = frozenset(
    [
        PrinterStatus.IDLE,
        PrinterStatus.COMPLETE,
        PrinterStatus.STOPPED,
        PrinterStatus.ERROR,
        PrinterStatus.STANDBY,
    ]
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class PrinterState:
    """Immutable snapshot of the printer.

    ``state`` accepts any casing or a known alias and is normalized to a
    :class:`PrinterStatus`.
    """

    state: PrinterStatus = PrinterStatus.UNKNOWN
    filename: Optional[str] = None
    progress_percent: Optional[float] = None
    current_layer: Optional[int] = None
    total_layers: Optional[int] = None
    remaining: Optional[timedelta] = None
    snapshot_time: datetime = field(default_factory=_utcnow, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "state", PrinterStatus.parse(self.state))

    @classmethod
    def unknown(cls) -> "PrinterState":
        """State emitted when the printer cannot be reached."""
        return cls(state=PrinterStatus.UNKNOWN, filename="")

    @property
    def is_actively_printing(self) -> bool:
        return self.state in ACTIVE_STATUSES

    @property
    def is_done(self) -> bool:
        return self.state in DONE_STATUSES

    @property
    def has_filename(self) -> bool:
        return bool(self.filename and self.filename.strip())

    def differs_from(self, other: Optional["PrinterState"]) -> bool:
        """True if state, filename, layer or progress changed."""
        if other is None:
            return True
        return (
            self.state != other.state
            or (self.filename or "") != (other.filename or "")
            or self.current_layer != other.current_layer
            or self.total_layers != other.total_layers
            or self.progress_percent != other.progress_percent
        )
