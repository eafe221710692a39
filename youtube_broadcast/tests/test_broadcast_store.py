"""
Tests for the broadcast record store.
"""

import json
import os
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

from youtube_broadcast.broadcast_store import BroadcastRecord, BroadcastStore


def make_record(context="print", broadcast_id="b1", created=None, ttl=60):
    return BroadcastRecord(
        broadcast_id=broadcast_id,
        rtmp_url="rtmp://a.rtmp.youtube.com/live2/key-1",
        stream_key="key-1",
        context=context,
        created_at_utc=created or datetime.now(timezone.utc),
        ttl_minutes=ttl,
    )


class TestBroadcastRecord:
    """Record helpers."""

    def test_ingest_address_strips_key(self):
        assert make_record().ingest_address == "rtmp://a.rtmp.youtube.com/live2"

    def test_expiry(self):
        old = make_record(created=datetime.now(timezone.utc) - timedelta(minutes=61))
        assert old.is_expired()
        assert not make_record().is_expired()

    def test_dict_uses_camel_case(self):
        data = make_record().to_dict()
        assert set(data) == {"broadcastId", "rtmpUrl", "streamKey", "context", "createdAtUtc", "ttlMinutes"}

    def test_from_dict_accepts_z_suffix(self):
        record = BroadcastRecord.from_dict(
            {
                "broadcastId": "x",
                "rtmpUrl": "rtmp://h/app/k",
                "streamKey": "k",
                "context": "print",
                "createdAtUtc": "2024-01-02T03:04:05Z",
                "ttlMinutes": 10,
            }
        )
        assert record.created_at_utc == datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)


class TestBroadcastStore:
    """Persistence of records."""

    def test_save_writes_json_array(self, store):
        store.save(make_record())

        data = json.loads(store.path.read_text(encoding="utf-8"))
        assert isinstance(data, list)
        assert data[0]["broadcastId"] == "b1"
        assert not store.path.with_name(store.path.name + ".tmp").exists()

    def test_latest_record_replaces_previous(self, store):
        store.save(make_record(broadcast_id="b1"))
        store.save(make_record(broadcast_id="b2"))

        assert store.get("print").broadcast_id == "b2"
        assert len(json.loads(store.path.read_text(encoding="utf-8"))) == 1

    def test_records_survive_reload(self, store):
        store.save(make_record(context="print"))
        store.save(make_record(context="manual", broadcast_id="m1"))

        reloaded = BroadcastStore(str(store.path))

        assert reloaded.get("manual").broadcast_id == "m1"
        assert len(reloaded.all()) == 2

    def test_corrupt_file_is_ignored(self, tmp_path):
        path = tmp_path / "reuse.json"
        path.write_text("{not json", encoding="utf-8")

        assert BroadcastStore(str(path)).all() == []

    def test_remove(self, store):
        store.save(make_record())

        assert store.remove("print") is True
        assert store.get("print") is None
        assert store.remove("print") is False

    def test_write_goes_through_temp_file(self, store):
        tmp_path = store.path.with_name(store.path.name + ".tmp")

        with patch("youtube_broadcast.broadcast_store.os.replace", wraps=os.replace) as replace:
            store.save(make_record())

        replace.assert_called_once_with(tmp_path, store.path)

    def test_failed_rename_keeps_previous_file(self, store):
        store.save(make_record(broadcast_id="b1"))
        before = store.path.read_text(encoding="utf-8")

        with patch("youtube_broadcast.broadcast_store.os.replace", side_effect=OSError("disk full")):
            store.save(make_record(broadcast_id="b2"))

        assert store.path.read_text(encoding="utf-8") == before
        assert BroadcastStore(str(store.path)).get("print").broadcast_id == "b1"

    def test_failed_open_keeps_previous_file(self, store):
        store.save(make_record(broadcast_id="b1"))
        before = store.path.read_text(encoding="utf-8")

        with patch("builtins.open", side_effect=OSError("read-only")):
            store.save(make_record(broadcast_id="b2"))

        assert store.path.read_text(encoding="utf-8") == before
        assert BroadcastStore(str(store.path)).get("print").broadcast_id == "b1"
