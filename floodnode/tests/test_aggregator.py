from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from floodnode.aggregator import (
    WINDOW_SEVERITY_LADDER,
    StoredReading,
    aggregate,
    flood_risk_score,
    risk_percentage,
)
from floodnode.classifier import RAIN_INTENSITY_LADDER, RainIntensity, Reading


NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def row(node_id, rain, distance=30.0, minutes_ago=5, **extra):
    data = {
        "node_id": node_id,
        "rain_analog": rain,
        "water_distance_cm": distance,
        "flood_status": "NORMAL",
        "created_at": NOW - timedelta(minutes=minutes_ago),
    }
    data.update(extra)
    return data


def test_two_readings_average_to_level_four():
    summaries = aggregate([row("A", 1700), row("A", 1900)], window_end=NOW)

    assert len(summaries) == 1
    summary = summaries[0]
    assert summary.node_id == "A"
    assert summary.reading_count == 2
    assert summary.avg_rain_raw == 1800
    assert summary.severity_level == 4


@pytest.mark.parametrize(
    "avg_rain, level",
    [
        (0, 4),
        (1799, 4),
        (1800, 4),
        (1801, 3),
        (2400, 3),
        (2401, 2),
        (3000, 2),
        (3001, 1),
        (4095, 1),
    ],
)
def test_window_severity_ladder(avg_rain, level):
    assert WINDOW_SEVERITY_LADDER.level(avg_rain) == level


def test_window_ladder_collapses_no_rain_and_light():
    # Per-reading ladder separates these two; the window ladder does not.
    assert RAIN_INTENSITY_LADDER.classify(3700) is RainIntensity.NO_RAIN
    assert RAIN_INTENSITY_LADDER.classify(3100) is RainIntensity.LIGHT
    assert WINDOW_SEVERITY_LADDER.level(3700) == WINDOW_SEVERITY_LADDER.level(3100) == 1


def test_severity_comes_from_mean_not_from_labels():
    # One torrential and one dry reading: labels would average to "moderate",
    # the raw mean 2450 is level 2.
    summaries = aggregate([row("A", 1000), row("A", 3900)], window_end=NOW)
    assert summaries[0].avg_rain_raw == 2450
    assert summaries[0].severity_level == 2


def test_empty_input_returns_empty_list():
    assert aggregate([], window_end=NOW) == []


def test_readings_outside_window_are_ignored():
    readings = [
        row("A", 1000, minutes_ago=60 * 25),
        row("B", 3500, minutes_ago=60 * 23),
    ]
    summaries = aggregate(readings, window_end=NOW)
    assert [s.node_id for s in summaries] == ["B"]

    assert aggregate([row("A", 1000, minutes_ago=60 * 25)], window_end=NOW) == []


def test_window_lower_bound_is_inclusive():
    summaries = aggregate([row("A", 2000, minutes_ago=60 * 24)], window_end=NOW)
    assert len(summaries) == 1


def test_custom_window():
    readings = [row("A", 2000, minutes_ago=90), row("A", 3000, minutes_ago=10)]
    summaries = aggregate(readings, window_end=NOW, window=timedelta(hours=1))
    assert summaries[0].reading_count == 1
    assert summaries[0].avg_rain_raw == 3000


def test_groups_per_node_and_ranks_by_severity():
    readings = [
        row("dry", 3900, minutes_ago=1),
        row("wet", 1500, distance=8.0, minutes_ago=2),
        row("mid", 2200, minutes_ago=3),
        row("wet", 1700, distance=12.0, minutes_ago=30),
    ]
    summaries = aggregate(readings, window_end=NOW)

    assert [s.node_id for s in summaries] == ["wet", "mid", "dry"]
    assert [s.severity_level for s in summaries] == [4, 3, 1]

    wet = summaries[0]
    assert wet.reading_count == 2
    assert wet.avg_rain_raw == 1600
    assert wet.avg_water_distance_cm == 10.0
    assert wet.last_reading_time == NOW - timedelta(minutes=2)


def test_ties_keep_first_seen_order_and_are_deterministic():
    readings = [row("b", 3900), row("a", 3800), row("c", 1000), row("b", 3700)]
    first = aggregate(readings, window_end=NOW)
    second = aggregate(readings, window_end=NOW)

    assert first == second
    assert [s.node_id for s in first] == ["c", "b", "a"]


def test_missing_numeric_fields_are_excluded_from_their_average():
    readings = [
        row("A", 2000, distance=10.0),
        row("A", None, distance=30.0),
        row("A", 3000, distance=None),
        row("A", "not-a-number", distance="bad"),
    ]
    summaries = aggregate(readings, window_end=NOW)

    summary = summaries[0]
    assert summary.reading_count == 4
    assert summary.avg_rain_raw == 2500
    assert summary.avg_water_distance_cm == 20.0
    assert summary.severity_level == 2


def test_records_without_node_or_timestamp_are_skipped():
    readings = [
        row("A", 2000),
        row(None, 1000),
        row("A", 1000, created_at=None),
        row("A", 1000, created_at="yesterday-ish"),
        {"rain_analog": 1000},
    ]
    summaries = aggregate(readings, window_end=NOW)
    assert len(summaries) == 1
    assert summaries[0].reading_count == 1
    assert summaries[0].avg_rain_raw == 2000


def test_node_without_any_rain_values_sits_on_bottom_level():
    summaries = aggregate([row("A", None, distance=4.0)], window_end=NOW)
    assert summaries[0].avg_rain_raw is None
    assert summaries[0].severity_level == 1
    assert summaries[0].risk_percentage == 92.0


def test_accepts_orm_like_objects_and_iso_strings():
    readings = [
        SimpleNamespace(
            node_id="A", rain_analog=1700, water_distance_cm=9.0,
            flood_status="CRITICAL FLOOD", created_at=(NOW - timedelta(hours=1)).replace(tzinfo=None),
        ),
        row("A", 1900, created_at="2024-06-01T11:30:00Z"),
    ]
    summaries = aggregate(readings, window_end=NOW)
    assert summaries[0].reading_count == 2
    assert summaries[0].last_reading_time == datetime(2024, 6, 1, 11, 30, tzinfo=timezone.utc)


def test_to_dict_uses_output_contract():
    summary = aggregate([row("A", 1700, distance=10.0)], window_end=NOW)[0]
    assert summary.to_dict() == {
        "node_id": "A",
        "total_readings": 1,
        "avg_rain_analog": 1700.0,
        "avg_water_distance": 10.0,
        "last_reading_time": (NOW - timedelta(minutes=5)).isoformat(),
        "max_flood_status_level": 4,
        "risk_percentage": 80.0,
    }


def test_stored_reading_parses_fields_into_optionals():
    parsed = StoredReading.from_record({"node_id": "", "rain_analog": True, "water_distance_cm": "12.5"})
    assert parsed.node_id is None
    assert parsed.rain_analog is None
    assert parsed.water_distance_cm == 12.5
    assert parsed.created_at is None
    assert not parsed.is_groupable


@pytest.mark.parametrize(
    "distance, expected",
    [(0, 100.0), (10, 80.0), (25, 50.0), (49.5, 1.0), (50, 0.0), (400, 0.0), (-10, 100.0)],
)
def test_risk_percentage_saturates(distance, expected):
    assert risk_percentage(distance) == expected


def test_risk_percentage_of_unknown_distance():
    assert risk_percentage(None) is None


@pytest.mark.parametrize(
    "intensity, distance, drainage, expected",
    [
        ("TORRENTIAL RAIN", 4.0, 3, 100),
        ("HEAVY RAIN", 9.0, 3, 80),
        ("MODERATE RAIN", 15.0, 5, 35),
        ("LIGHT RAIN", 50.0, None, 35),
        ("NO RAIN", 50.0, 5, 5),
        ("TORRENTIAL RAIN", 2.0, 1, 100),
        ("garbage", None, 4, 15),
    ],
)
def test_flood_risk_score(intensity, distance, drainage, expected):
    assert flood_risk_score(intensity, distance, drainage) == expected


def test_aggregates_classifier_readings():
    readings = [
        Reading.capture("A", 1700, 5.0, timestamp=NOW - timedelta(minutes=10)),
        Reading.capture("A", 1900, 15.0, timestamp=NOW - timedelta(minutes=5)),
    ]
    summaries = aggregate(readings, window_end=NOW)

    assert len(summaries) == 1
    summary = summaries[0]
    assert summary.reading_count == 2
    assert summary.avg_rain_raw == 1800
    assert summary.avg_water_distance_cm == 10.0
    assert summary.severity_level == 4
    assert summary.last_reading_time == NOW - timedelta(minutes=5)


def test_stored_reading_from_classifier_reading_keeps_status_label():
    parsed = StoredReading.from_record(Reading.capture("A", 2180, 9.5, timestamp=NOW))
    assert parsed.rain_analog == 2180
    assert parsed.flood_status == "CRITICAL FLOOD"
    assert parsed.created_at == NOW
