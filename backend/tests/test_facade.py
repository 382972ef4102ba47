from datetime import datetime, timedelta

import pytest

from microgrid.models import Source
from microgrid.timeutils import Granularity

from conftest import NOW

ELEVEN = datetime(2026, 3, 10, 11)


def test_snapshot_uses_latest_complete_bucket(store, facade):
    store.append(Source.SOLAR, datetime(2026, 3, 10, 10), 900.0)
    store.append(Source.SOLAR, ELEVEN, 1200.0)
    store.append(Source.GRID, ELEVEN, 1400.0)
    store.append(Source.LOAD, ELEVEN, 2600.0)

    snapshot = facade.current_snapshot()

    assert snapshot["as_of"] == NOW
    assert snapshot["sources"][Source.SOLAR].bucket_start == ELEVEN
    assert snapshot["sources"][Source.SOLAR].avg_kw == 1200.0
    assert snapshot["sources"][Source.BATTERY] is None
    assert snapshot["efficiency"].bucket_start == ELEVEN
    assert snapshot["efficiency"].efficiency == pytest.approx(1200.0 / 2600.0)


def test_snapshot_skips_hour_without_grid_for_efficiency(store, facade):
    store.append(Source.SOLAR, datetime(2026, 3, 10, 10), 600.0)
    store.append(Source.GRID, datetime(2026, 3, 10, 10), 400.0)
    store.append(Source.SOLAR, ELEVEN, 1200.0)

    snapshot = facade.current_snapshot()

    assert snapshot["sources"][Source.GRID].bucket_start == datetime(2026, 3, 10, 10)
    assert snapshot["efficiency"].bucket_start == datetime(2026, 3, 10, 10)
    assert snapshot["efficiency"].efficiency == pytest.approx(0.6)


def test_snapshot_with_no_data(facade):
    snapshot = facade.current_snapshot()

    assert all(bucket is None for bucket in snapshot["sources"].values())
    assert set(snapshot["sources"]) == set(Source)
    assert snapshot["efficiency"] is None


def test_series_reports_missing_windows_as_null(store, facade):
    store.append(Source.LOAD, datetime(2026, 3, 10, 9, 15), 2000.0)

    result = facade.series([Source.LOAD], Granularity.HOURLY, datetime(2026, 3, 10, 9), ELEVEN)
    points = result["series"][Source.LOAD]

    assert result["granularity"] == Granularity.HOURLY
    assert [p["timestamp"] for p in points] == [datetime(2026, 3, 10, 9), datetime(2026, 3, 10, 10)]
    assert points[0]["value"] == 2000.0
    assert points[0]["provisional"] is False
    assert points[1]["value"] is None
    assert points[1]["provisional"] is True


def test_prediction_comparison_splits_resolved_and_pending(ledger, facade):
    ledger.submit(datetime(2026, 3, 10, 9), 2400.0, 98)
    ledger.submit(datetime(2026, 3, 10, 14), 2800.0, 90)
    ledger.resolve(datetime(2026, 3, 10, 9), 2300.0)

    result = facade.prediction_comparison(datetime(2026, 3, 10), datetime(2026, 3, 11))

    assert [p["timestamp"] for p in result["points"]] == [datetime(2026, 3, 10, 9)]
    assert result["points"][0]["actual"] == 2300.0
    assert [p["timestamp"] for p in result["forecast"]] == [datetime(2026, 3, 10, 14)]
    assert "actual" not in result["forecast"][0]
    assert result["accuracy"]["pending_count"] == 1
    assert result["peak"].timestamp == datetime(2026, 3, 10, 14)


def test_efficiency_history_delegates_to_aggregator(store, facade):
    store.append(Source.SOLAR, datetime(2026, 3, 9, 12), 10.0)
    store.append(Source.GRID, datetime(2026, 3, 9, 12), 10.0)

    history = facade.efficiency_history(Granularity.DAILY, datetime(2026, 3, 9), NOW - timedelta(hours=12))

    assert [r.bucket_start for r in history] == [datetime(2026, 3, 9), datetime(2026, 3, 10)]
    assert history[0].efficiency == pytest.approx(0.5)
    assert history[1].efficiency is None


def test_patterns_delegate_to_registry(registry, facade):
    registry.upsert("A", 10, "High")
    registry.upsert("B", 20, "Low")

    assert [p.name for p in facade.patterns("impact")] == ["A", "B"]
    assert [p.name for p in facade.patterns()] == ["B", "A"]


def test_snapshot_reports_change_against_previous_hour(store, facade):
    store.append(Source.SOLAR, datetime(2026, 3, 10, 10), 900.0)
    store.append(Source.SOLAR, ELEVEN, 1200.0)
    store.append(Source.LOAD, ELEVEN, 2600.0)

    changes = facade.current_snapshot()["changes"]

    assert changes[Source.SOLAR] == pytest.approx(33.3333)
    # No reading in the hour before, so there is nothing to compare against
    assert changes[Source.LOAD] is None
    assert changes[Source.GRID] is None


def test_efficiency_history_first_row_compares_with_window_before_range(store, facade):
    store.append(Source.SOLAR, datetime(2026, 3, 8, 12), 10.0)
    store.append(Source.GRID, datetime(2026, 3, 8, 12), 10.0)
    store.append(Source.SOLAR, datetime(2026, 3, 9, 12), 15.0)
    store.append(Source.GRID, datetime(2026, 3, 9, 12), 5.0)

    history = facade.efficiency_history(Granularity.DAILY, datetime(2026, 3, 9), datetime(2026, 3, 10))

    assert [r.bucket_start for r in history] == [datetime(2026, 3, 9)]
    assert history[0].generation_change_pct == pytest.approx(50.0)
    assert history[0].efficiency_change_pct == pytest.approx(50.0)
    assert history[0].load_change_pct is None


def test_efficiency_history_of_empty_range(facade):
    assert facade.efficiency_history(Granularity.DAILY, datetime(2026, 3, 9), datetime(2026, 3, 9)) == []
