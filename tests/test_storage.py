"""Tests for session records, the record store and CSV export."""

import io
import json
from datetime import datetime

import pytest

from rehab_engine.errors import SessionStorageError
from rehab_engine.hands import FingerChannel
from rehab_engine.records import RowKind, SessionRecord, SessionRow
from rehab_engine.storage import SessionStore, export_rows, write_rows_csv


def make_row(label="Pinch-index", rep=1, channel=FingerChannel.INDEX, kind=RowKind.PINCH_REP):
    return SessionRow(
        timestamp="2024-05-01T10:00:01.250000",
        task_label=label,
        rep_index=rep,
        channel=channel,
        kind=kind,
        duration_seconds=1.25,
        observed_strength=0.9,
    )


class TestSessionRecord:
    def test_start(self):
        record = SessionRecord.start(datetime(2024, 5, 1, 10, 0, 0))
        assert record.session_date == "2024-05-01 10:00:00"
        assert record.max_pinch_strength == (0.0,) * 5
        assert record.rows == ()

    def test_max_is_non_decreasing(self):
        record = SessionRecord.start()
        record.observe_strength(FingerChannel.RING, 0.7)
        record.observe_strength(FingerChannel.RING, 0.3)
        assert record.max_pinch_strength[FingerChannel.RING] == 0.7
        record.observe_strength(FingerChannel.RING, 1.4)
        assert record.max_pinch_strength[FingerChannel.RING] == 1.0

    def test_rows_append_only(self):
        record = SessionRecord.start()
        record.append_row(make_row(rep=1))
        record.append_row(make_row(rep=2))
        assert [r.rep_index for r in record.rows] == [1, 2]

    def test_dict_format(self):
        record = SessionRecord("2024-05-01 10:00:00", [0.1, 0.2, 0.3, 0.4, 0.5])
        assert record.to_dict() == {
            "sessionDate": "2024-05-01 10:00:00",
            "maxPinchStrength": [0.1, 0.2, 0.3, 0.4, 0.5],
        }

    @pytest.mark.parametrize("data", [
        {"sessionDate": "x"},
        {"sessionDate": "x", "maxPinchStrength": [0.1, 0.2]},
        {"sessionDate": "x", "maxPinchStrength": "abc"},
        ["not", "a", "mapping"],
    ])
    def test_from_dict_rejects_malformed(self, data):
        with pytest.raises(ValueError):
            SessionRecord.from_dict(data)

    def test_row_strength_clamped(self):
        row = SessionRow("t", "x", 1, None, RowKind.POSTURE_HOLD, 1.0, 1.5)
        assert row.observed_strength == 1.0


class TestSessionStore:
    def test_missing_is_none(self, tmp_path):
        assert SessionStore(tmp_path).load() is None

    def test_save_and_load(self, tmp_path):
        store = SessionStore(tmp_path / "data")
        store.save(SessionRecord("2024-05-01 10:00:00", [0.0, 0.8, 0.6, 0.0, 0.0]))

        assert store.exists()
        assert store.path.name == "rehabData.json"
        loaded = store.load()
        assert loaded.session_date == "2024-05-01 10:00:00"
        assert loaded.max_pinch_strength == (0.0, 0.8, 0.6, 0.0, 0.0)
        assert not (tmp_path / "data" / "rehabData.json.tmp").exists()

    def test_overwrites(self, tmp_path):
        store = SessionStore(tmp_path)
        store.save(SessionRecord("2024-05-01 10:00:00", [0.5] * 5))
        store.save(SessionRecord("2024-05-02 10:00:00", [0.6] * 5))
        with open(store.path) as f:
            data = json.load(f)
        assert data["sessionDate"] == "2024-05-02 10:00:00"

    def test_corrupt_file_is_none(self, tmp_path):
        store = SessionStore(tmp_path)
        store.path.write_text("{not json")
        assert store.load() is None

        store.path.write_text(json.dumps({"sessionDate": "x", "maxPinchStrength": [1, 2]}))
        assert store.load() is None

    def test_write_failure(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("file, not a directory")
        store = SessionStore(blocker / "data")
        with pytest.raises(SessionStorageError):
            store.save(SessionRecord.start())

    def test_clear(self, tmp_path):
        store = SessionStore(tmp_path)
        store.save(SessionRecord.start())
        store.clear()
        assert not store.exists()
        store.clear()


class TestExport:
    def test_columns_in_order(self):
        out = io.StringIO()
        count = write_rows_csv([make_row()], out)
        lines = out.getvalue().splitlines()

        assert count == 1
        assert lines[0] == (
            "timestamp,task_label,rep_index,channel,event_kind,duration_seconds,observed_strength"
        )
        assert lines[1] == "2024-05-01T10:00:01.250000,Pinch-index,1,index,PinchRep,1.250,0.900"

    def test_sentinel_and_quoting(self):
        out = io.StringIO()
        write_rows_csv([make_row(label="Mudra, Surya", channel=None, kind=RowKind.POSTURE_HOLD)], out)
        row = out.getvalue().splitlines()[1]
        assert '"Mudra, Surya"' in row
        assert ",none,PostureHold," in row

    def test_export_file_name(self, tmp_path):
        path = export_rows([make_row()], tmp_path, "rehab_session", now=datetime(2024, 5, 1, 9, 8, 7))
        assert path == tmp_path / "rehab_session_20240501_090807.csv"
        assert path.read_text().count("\n") == 2

    def test_no_rows_no_file(self, tmp_path):
        assert export_rows([], tmp_path) is None
        assert list(tmp_path.iterdir()) == []
