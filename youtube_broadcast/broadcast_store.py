"""
Persistent record of reusable broadcasts.

The store is a JSON array of records, one per context. Writes go to
``<path>.tmp`` and are renamed over the file, so readers never see a
partial document. An unreadable file is treated as empty.
"""

import json
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from threading import Lock
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass
class BroadcastRecord:
    """A broadcast that may be reused for the same context."""

    broadcast_id: str
    rtmp_url: str
    stream_key: str
    context: str
    created_at_utc: datetime
    ttl_minutes: int

    @property
    def ingest_address(self) -> str:
        suffix = f"/{self.stream_key}"
        if self.stream_key and self.rtmp_url.endswith(suffix):
            return self.rtmp_url[: -len(suffix)]
        return self.rtmp_url.rsplit("/", 1)[0]

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return now - self.created_at_utc >= timedelta(minutes=self.ttl_minutes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "broadcastId": self.broadcast_id,
            "rtmpUrl": self.rtmp_url,
            "streamKey": self.stream_key,
            "context": self.context,
            "createdAtUtc": self.created_at_utc.isoformat(),
            "ttlMinutes": self.ttl_minutes,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BroadcastRecord":
        created = datetime.fromisoformat(str(data["createdAtUtc"]).replace("Z", "+00:00"))
        if created.tzinfo is None:
            created = created.replace(tzinfo=timezone.utc)
        return cls(
            broadcast_id=str(data["broadcastId"]),
            rtmp_url=str(data["rtmpUrl"]),
            stream_key=str(data.get("streamKey") or ""),
            context=str(data["context"]),
            created_at_utc=created,
            ttl_minutes=int(data.get("ttlMinutes", 1440)),
        )


class BroadcastStore:
    """JSON file of broadcast records keyed by context."""

    def __init__(self, path: str):
        self.path = Path(path)
        self._lock = Lock()
        self._records: Dict[str, BroadcastRecord] = self._load()

    def _load(self) -> Dict[str, BroadcastRecord]:
        if not self.path.is_file():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            records = {}
            for item in data:
                record = BroadcastRecord.from_dict(item)
                records[record.context] = record
            logger.info(f"Loaded {len(records)} broadcast record(s) from {self.path}")
            return records
        except (OSError, ValueError, TypeError, KeyError) as e:
            logger.debug(f"Ignoring unreadable broadcast store {self.path}: {e}")
            return {}

    def _persist(self) -> None:
        # caller holds the lock
        payload: List[Dict[str, Any]] = [r.to_dict() for r in self._records.values()]
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            if self.path.parent and not self.path.parent.exists():
                self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        except OSError as e:
            logger.error(f"Failed to write broadcast store {self.path}: {e}")

    def get(self, context: str) -> Optional[BroadcastRecord]:
        with self._lock:
            return self._records.get(context)

    def save(self, record: BroadcastRecord) -> None:
        """Store a record, replacing any previous one for its context."""
        with self._lock:
            self._records[record.context] = record
            self._persist()
        logger.info(f"Saved broadcast {record.broadcast_id} for context '{record.context}'")

    def remove(self, context: str) -> bool:
        with self._lock:
            if self._records.pop(context, None) is None:
                return False
            self._persist()
        logger.info(f"Removed broadcast record for context '{context}'")
        return True

    def all(self) -> List[BroadcastRecord]:
        with self._lock:
            return list(self._records.values())
