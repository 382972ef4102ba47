from datetime import datetime, timedelta, timezone
import inspect
import threading

import pytest
from sqlalchemy.exc import OperationalError

from microgrid.exceptions import InvalidReading, StoreUnavailable
from microgrid.models import Reading, Source
from microgrid.services import sample_store
from microgrid.services.sample_store import SampleStore

from conftest import NOW


def _all(store, source=Source.LOAD):
    return list(store.query(source, NOW - timedelta(days=30), NOW + timedelta(days=1)))


def test_append_then_query_returns_reading_once(store):
    ts = NOW - timedelta(minutes=15)
    store.append(Source.LOAD, ts, 2800.0)

    results = list(store.query(Source.LOAD, ts - timedelta(hours=1), ts + timedelta(hours=1)))

    assert len(results) == 1
    assert results[0].timestamp == ts
    assert results[0].value_kw == 2800.0
    assert results[0].source == Source.LOAD


def test_out_of_order_inserts_come_back_sorted(store):
    stamps = [NOW - timedelta(hours=h) for h in (1, 5, 3, 2, 4)]
    for i, ts in enumerate(stamps):
        store.append(Source.SOLAR, ts, float(i))

    results = list(store.query(Source.SOLAR, NOW - timedelta(hours=6), NOW))

    assert [r.timestamp for r in results] == sorted(stamps)
    assert len(results) == len(stamps)


def test_query_is_lazy_and_half_open(store):
    start = datetime(2026, 3, 10, 9)
    store.append(Source.GRID, start, 1.0)
    store.append(Source.GRID, start + timedelta(hours=1), 2.0)

    rows = store.query(Source.GRID, start, start + timedelta(hours=1))

    assert inspect.isgenerator(rows)
    assert [r.value_kw for r in rows] == [1.0]


def test_empty_and_inverted_ranges_yield_nothing(store):
    store.append(Source.GRID, NOW - timedelta(hours=1), 1.0)

    assert list(store.query(Source.GRID, NOW, NOW)) == []
    assert list(store.query(Source.GRID, NOW, NOW - timedelta(hours=2))) == []
    assert list(store.query(Source.BATTERY, NOW - timedelta(days=1), NOW)) == []


def test_future_reading_beyond_skew_is_rejected_and_store_unchanged(store, db):
    with pytest.raises(InvalidReading):
        store.append(Source.LOAD, NOW + timedelta(minutes=10), 2500.0)

    assert db.query(Reading).count() == 0


def test_reading_within_skew_is_accepted(store):
    reading = store.append(Source.LOAD, NOW + timedelta(minutes=4), 2500.0)
    assert reading.id is not None


def test_late_reading_is_accepted(store):
    reading = store.append(Source.SOLAR, NOW - timedelta(days=20), 0.0)
    assert reading.value_kw == 0.0


@pytest.mark.parametrize("value", [-0.1, float("nan"), float("inf"), "abc", None])
def test_invalid_values_are_rejected(store, db, value):
    with pytest.raises(InvalidReading):
        store.append(Source.BATTERY, NOW - timedelta(minutes=5), value)
    assert db.query(Reading).count() == 0


def test_unknown_source_is_rejected(store):
    with pytest.raises(InvalidReading):
        store.append("wind", NOW - timedelta(minutes=5), 1.0)


def test_source_accepts_plain_strings(store):
    reading = store.append("Solar", NOW - timedelta(minutes=5), 1.0)
    assert reading.source == Source.SOLAR


def test_aware_timestamps_are_stored_as_utc(store):
    plus_two = timezone(timedelta(hours=2))
    reading = store.append(Source.LOAD, datetime(2026, 3, 10, 13, 0, tzinfo=plus_two), 1.0)
    assert reading.timestamp == datetime(2026, 3, 10, 11, 0)


def test_identical_resubmission_returns_stored_reading(store, db):
    ts = NOW - timedelta(minutes=30)
    first = store.append(Source.LOAD, ts, 2100.0)
    second = store.append(Source.LOAD, ts, 2100.0)

    assert first.id == second.id
    assert db.query(Reading).count() == 1


def test_conflicting_resubmission_is_rejected(store):
    ts = NOW - timedelta(minutes=30)
    store.append(Source.LOAD, ts, 2100.0)

    with pytest.raises(InvalidReading):
        store.append(Source.LOAD, ts, 2200.0)

    assert [r.value_kw for r in _all(store)] == [2100.0]


def test_same_timestamp_on_different_sources_is_fine(store):
    ts = NOW - timedelta(minutes=30)
    store.append(Source.LOAD, ts, 1.0)
    store.append(Source.GRID, ts, 2.0)

    assert len(_all(store, Source.LOAD)) == 1
    assert len(_all(store, Source.GRID)) == 1


def test_latest_and_latest_received_at(store, clock):
    store.append(Source.SOLAR, NOW - timedelta(hours=2), 1.0)
    clock.advance(minutes=1)
    store.append(Source.SOLAR, NOW - timedelta(hours=3), 2.0)

    assert store.latest(Source.SOLAR).timestamp == NOW - timedelta(hours=2)
    assert store.latest(Source.GRID) is None
    assert store.latest_received_at(Source.SOLAR, NOW - timedelta(hours=4), NOW) == NOW + timedelta(minutes=1)


def test_compaction_is_lazy(db, clock):
    store = SampleStore(db, clock=clock, retention_days=7)
    store.append(Source.LOAD, NOW - timedelta(days=10), 1.0)
    store.append(Source.LOAD, NOW - timedelta(days=1), 2.0)

    # Nothing is purged until compaction runs
    assert len(_all(store)) == 2

    removed = store.compact()

    assert removed == 1
    assert [r.value_kw for r in _all(store)] == [2.0]


def test_csv_import_skips_duplicates(store):
    content = (
        "timestamp,kw\n"
        "2026-03-10 08:00:00,2400\n"
        "2026-03-10 09:00:00,2210\n"
        "03/10/2026 10:00,2290\n"
        "not a date,100\n"
    )

    result = store.process_readings_csv(content, source="load")

    assert result["new_readings"] == 3
    assert result["skipped_duplicates"] == 0
    assert result["unparsed_rows"] == 1

    again = store.process_readings_csv(content, source="load")

    assert again["new_readings"] == 0
    assert again["skipped_duplicates"] == 3
    assert len(_all(store)) == 3


def test_csv_import_reads_source_column_and_rejects_bad_rows(store):
    content = (
        "Time,source,value_kw\n"
        "2026-03-10T08:00:00Z,solar,100\n"
        "2026-03-10T08:00:00Z,grid,2210\n"
        "2026-03-10T09:00:00Z,grid,-5\n"
        "2026-03-10T13:00:00Z,grid,5\n"
    )

    result = store.process_readings_csv(content)

    assert result["new_readings"] == 2
    assert len(result["rejected"]) == 2
    assert [r.value_kw for r in _all(store, Source.SOLAR)] == [100.0]


def test_csv_without_usable_columns(store):
    result = store.process_readings_csv("foo,bar\n1,2\n", source="load")
    assert result["message"] == "No valid readings found"
    assert result["new_readings"] == 0


def test_storage_failure_surfaces_as_store_unavailable(store, db, monkeypatch):
    def broken_query(*args, **kwargs):
        raise OperationalError("SELECT 1", {}, Exception("database is down"))

    monkeypatch.setattr(db, "query", broken_query)

    with pytest.raises(StoreUnavailable):
        store.append(Source.LOAD, NOW - timedelta(minutes=5), 1.0)

    with pytest.raises(StoreUnavailable):
        list(store.query(Source.LOAD, NOW - timedelta(hours=1), NOW))


def test_bulk_conflict_with_stored_reading_is_rejected(store):
    ts = datetime(2026, 3, 10, 9)
    store.append(Source.LOAD, ts, 2100.0)

    result = store.append_many([{"source": "load", "timestamp": ts, "value_kw": 9999.0}])

    assert result["new_readings"] == 0
    assert result["skipped_duplicates"] == 0
    assert [r["row"] for r in result["rejected"]] == [1]
    assert "immutable" in result["rejected"][0]["error"]
    assert [r.value_kw for r in _all(store)] == [2100.0]


def test_bulk_conflict_within_batch_keeps_first_row(store):
    ts = datetime(2026, 3, 10, 9)
    rows = [
        {"source": "load", "timestamp": ts, "value_kw": 2100.0},
        {"source": "load", "timestamp": ts, "value_kw": 2100.0},
        {"source": "load", "timestamp": ts, "value_kw": 9999.0},
    ]

    result = store.append_many(rows)

    assert result["new_readings"] == 1
    assert result["skipped_duplicates"] == 1
    assert [r["row"] for r in result["rejected"]] == [3]
    assert [r.value_kw for r in _all(store)] == [2100.0]


def test_csv_import_rejects_changed_values(store):
    store.process_readings_csv("timestamp,kw\n2026-03-10 09:00:00,2100\n", source="load")

    result = store.process_readings_csv(
        "timestamp,kw\n"
        "2026-03-10 09:00:00,9999\n"
        "2026-03-10 10:00:00,2290\n",
        source="load",
    )

    assert result["new_readings"] == 1
    assert result["skipped_duplicates"] == 0
    assert [r["row"] for r in result["rejected"]] == [1]
    assert [r.value_kw for r in _all(store)] == [2100.0, 2290.0]


def _append_in_own_session(session_factory, clock, source, ts, value, results):
    session = session_factory()
    try:
        results.append(SampleStore(session, clock=clock).append(source, ts, value).id)
    except Exception as e:
        results.append(e)
    finally:
        session.close()


def test_writers_on_one_source_are_serialized_others_are_not(file_session_factory, clock):
    ts = NOW - timedelta(minutes=5)
    load_results, grid_results = [], []
    load_writer = threading.Thread(
        target=_append_in_own_session,
        args=(file_session_factory, clock, Source.LOAD, ts, 1.0, load_results),
    )
    grid_writer = threading.Thread(
        target=_append_in_own_session,
        args=(file_session_factory, clock, Source.GRID, ts, 2.0, grid_results),
    )

    held = sample_store._source_locks[Source.LOAD]
    held.acquire()
    try:
        load_writer.start()
        grid_writer.start()

        grid_writer.join(timeout=10)
        assert not grid_writer.is_alive()
        assert isinstance(grid_results[0], int)

        load_writer.join(timeout=0.2)
        assert load_writer.is_alive()
        assert load_results == []
    finally:
        held.release()

    load_writer.join(timeout=10)
    assert not load_writer.is_alive()
    assert isinstance(load_results[0], int)


def test_concurrent_identical_appends_store_one_row(file_session_factory, clock):
    ts = NOW - timedelta(minutes=5)
    results = []
    writers = [
        threading.Thread(
            target=_append_in_own_session,
            args=(file_session_factory, clock, Source.LOAD, ts, 2100.0, results),
        )
        for _ in range(6)
    ]
    for writer in writers:
        writer.start()
    for writer in writers:
        writer.join(timeout=20)

    assert len(results) == 6
    assert all(isinstance(r, int) for r in results)
    assert len(set(results)) == 1

    session = file_session_factory()
    try:
        assert session.query(Reading).count() == 1
    finally:
        session.close()


def _race_with_other_writer(store, session_factory, monkeypatch):
    """Let another session commit the same key between the lookup and our commit."""
    ts = NOW - timedelta(minutes=5)
    other = session_factory()
    other.add(Reading(source=Source.LOAD, timestamp=ts, value_kw=2100.0, received_at=NOW))
    other.commit()
    other.close()

    real_find = store._find
    calls = []

    def find_missing_first(source, timestamp):
        calls.append(timestamp)
        return None if len(calls) == 1 else real_find(source, timestamp)

    monkeypatch.setattr(store, "_find", find_missing_first)
    return ts, calls


def test_unique_violation_falls_back_to_stored_reading(store, session_factory, monkeypatch):
    ts, calls = _race_with_other_writer(store, session_factory, monkeypatch)

    reading = store.append(Source.LOAD, ts, 2100.0)

    assert len(calls) == 2
    assert reading.value_kw == 2100.0
    assert len(_all(store)) == 1


def test_unique_violation_with_other_value_is_rejected(store, session_factory, monkeypatch):
    ts, calls = _race_with_other_writer(store, session_factory, monkeypatch)

    with pytest.raises(InvalidReading):
        store.append(Source.LOAD, ts, 2200.0)

    assert len(calls) == 2
    assert [r.value_kw for r in _all(store)] == [2100.0]
