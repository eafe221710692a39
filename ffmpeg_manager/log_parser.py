"""
FFmpeg log parser.

Classifies encoder stderr lines so connection and ingest problems show up
in the service log, and keeps a short tail for status output.
"""

import logging
import re
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Deque, Dict, List, Optional, Pattern, Tuple

logger = logging.getLogger(__name__)


class ErrorType(str, Enum):
    """Kinds of encoder errors."""

    CONNECTION_FAILED = "connection_failed"
    RTMP_ERROR = "rtmp_error"
    INPUT_ERROR = "input_error"
    INVALID_CODEC = "invalid_codec"
    FILE_NOT_FOUND = "file_not_found"
    IO_ERROR = "io_error"
    UNKNOWN = "unknown"


@dataclass
class EncoderError:
    """One classified stderr line."""

    timestamp: datetime
    error_type: ErrorType
    message: str
    fatal: bool


class FFmpegLogParser:
    """
    Parses FFmpeg stderr output line by line.

    Uses regex patterns to classify errors. Lines that match no pattern but
    carry an error marker are recorded as UNKNOWN.
    """

    ERROR_PATTERNS: Dict[ErrorType, List[str]] = {
        ErrorType.CONNECTION_FAILED: [
            r"Connection (?:refused|timed out|reset)",
            r"Failed to (?:connect|resolve)",
            r"Server returned [45]\d\d",
        ],
        ErrorType.RTMP_ERROR: [
            r"RTMP.*error",
            r"Failed to update header",
            r"RTMP_\w+",
            r"Broken pipe",
        ],
        ErrorType.INPUT_ERROR: [
            r"Invalid data found when processing input",
            r"Error (?:opening|while decoding)",
            r"end of file",
        ],
        ErrorType.INVALID_CODEC: [
            r"Unknown (?:encoder|decoder)",
            r"Encoder not found",
        ],
        ErrorType.FILE_NOT_FOUND: [
            r"No such file or directory",
            r"Cannot load font",
        ],
        ErrorType.IO_ERROR: [
            r"I/O error",
            r"Input/output error",
        ],
    }

    # Errors after which the process cannot recover on its own
    FATAL_TYPES = frozenset([ErrorType.INVALID_CODEC, ErrorType.FILE_NOT_FOUND])

    _compiled: Optional[List[Tuple[ErrorType, Pattern]]] = None

    @classmethod
    def _patterns(cls) -> List[Tuple[ErrorType, Pattern]]:
        if cls._compiled is None:
            cls._compiled = [
                (error_type, re.compile(pattern, re.IGNORECASE))
                for error_type, patterns in cls.ERROR_PATTERNS.items()
                for pattern in patterns
            ]
        return cls._compiled

    def __init__(self, tail_size: int = 50, error_history: int = 20):
        self._tail: Deque[str] = deque(maxlen=tail_size)
        self._errors: Deque[EncoderError] = deque(maxlen=error_history)

    def parse_line(self, line: str) -> Optional[EncoderError]:
        """
        Parse a single stderr line.

        Args:
            line: Raw line (trailing newline allowed)

        Returns:
            EncoderError if the line reports an error, None otherwise
        """
        text = line.strip()
        if not text:
            return None
        self._tail.append(text)

        for error_type, pattern in self._patterns():
            if pattern.search(text):
                return self._record(error_type, text)

        if "error" in text.lower():
            return self._record(ErrorType.UNKNOWN, text)
        return None

    def _record(self, error_type: ErrorType, text: str) -> EncoderError:
        error = EncoderError(
            timestamp=datetime.now(),
            error_type=error_type,
            message=text[:500],
            fatal=error_type in self.FATAL_TYPES,
        )
        self._errors.append(error)
        return error

    def get_recent_errors(self, count: int = 10) -> List[EncoderError]:
        return list(self._errors)[-count:]

    def has_fatal_errors(self) -> bool:
        return any(e.fatal for e in self._errors)

    @property
    def last_error(self) -> Optional[EncoderError]:
        return self._errors[-1] if self._errors else None

    @property
    def tail(self) -> List[str]:
        return list(self._tail)
