from datetime import datetime, timedelta, timezone

import pytest

from physio_foundation.errors import RecordDecodeError
from physio_foundation.io import fit_loader


class FakeField:
    def __init__(self, name, value):
        self.name = name
        self.value = value


class FakeMessage:
    def __init__(self, fields):
        self._fields = fields

    def __iter__(self):
        return iter(self._fields)


def _fake_fitfile(messages):
    class FakeFitFile:
        def __init__(self, path):
            self.path = path

        def get_messages(self, kind):
            if kind == "record":
                for m in messages:
                    yield m

    return FakeFitFile


def test_load_fit_records_maps_fields(monkeypatch):
    t0 = datetime(2025, 1, 1, 6, 0, 0)
    messages = [
        FakeMessage(
            [
                FakeField("timestamp", t0 + timedelta(seconds=i)),
                FakeField("power", 200 + i),
                FakeField("heart_rate", 140),
                FakeField("cadence", 90),
                FakeField("speed", 8.0),
                FakeField("enhanced_speed", 8.5),
                FakeField("altitude", 100.0),
                FakeField("enhanced_altitude", 101.5),
                FakeField("position_lat", 2 ** 30),
                FakeField("position_long", -(2 ** 30)),
            ]
        )
        for i in range(3)
    ]
    monkeypatch.setattr(fit_loader, "FitFile", _fake_fitfile(messages))

    records = fit_loader.load_fit_records("fake.fit")
    assert len(records) == 3
    first = records[0]
    assert set(first) == set(fit_loader.RECORD_COLUMNS)
    assert first["timestamp"] == t0
    assert first["power"] == 200.0
    assert first["speed"] == 8.5
    assert first["altitude"] == 101.5
    assert first["position"] == pytest.approx((90.0, -90.0))
    assert first["temperature"] is None


def test_timestamps_are_sorted_and_normalized_to_naive_utc(monkeypatch):
    aware = datetime(2025, 1, 1, 7, 0, 1, tzinfo=timezone(timedelta(hours=1)))
    messages = [
        FakeMessage([FakeField("timestamp", aware), FakeField("power", 210)]),
        FakeMessage([FakeField("timestamp", datetime(2025, 1, 1, 6, 0, 0)), FakeField("power", 200)]),
        FakeMessage([FakeField("power", 190)]),
    ]
    monkeypatch.setattr(fit_loader, "FitFile", _fake_fitfile(messages))

    records = fit_loader.load_fit_records("fake.fit")
    assert [r["power"] for r in records] == [200.0, 210.0, 190.0]
    assert records[1]["timestamp"] == datetime(2025, 1, 1, 6, 0, 1)
    assert records[1]["timestamp"].tzinfo is None
    assert records[2]["timestamp"] is None


def test_decode_failure_raises_record_decode_error(monkeypatch):
    class BrokenFitFile:
        def __init__(self, path):
            raise IOError("bad header")

    monkeypatch.setattr(fit_loader, "FitFile", BrokenFitFile)
    with pytest.raises(RecordDecodeError) as excinfo:
        fit_loader.load_fit_records("broken.fit")
    assert isinstance(excinfo.value.__cause__, IOError)
