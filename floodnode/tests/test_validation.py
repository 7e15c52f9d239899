from datetime import datetime, timezone

from floodnode.classifier import FloodStatus, RainIntensity
from floodnode.validation import normalize_sensor_payload


def test_normalize_accepts_wire_payload():
    n = normalize_sensor_payload(
        {
            "node_id": "floodnode_01",
            "rain_analog": 2180,
            "rain_intensity": "HEAVY RAIN",
            "water_distance_cm": 9.5,
            "flood_status": "CRITICAL FLOOD",
            "timestamp": "2024-06-01T12:00:00Z",
        }
    )
    assert n.errors == []
    assert n.warnings == []
    assert n.payload == {
        "node_id": "floodnode_01",
        "rain_analog": 2180,
        "water_distance_cm": 9.5,
        "rain_intensity": RainIntensity.HEAVY,
        "flood_status": FloodStatus.CRITICAL_FLOOD,
        "timestamp": datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc),
    }


def test_normalize_clamps_rain_and_flags_bad_labels():
    n = normalize_sensor_payload(
        {"node_id": "n1", "rain_analog": 9999, "water_distance_cm": "12.3", "flood_status": "PANIC", "timestamp": "soon"}
    )
    assert n.errors == []
    assert n.payload["rain_analog"] == 4095
    assert n.payload["water_distance_cm"] == 12.3
    assert n.payload["flood_status"] is None
    assert "rain_clamped_high" in n.warnings
    assert "unknown_flood_status" in n.warnings
    assert "invalid_timestamp" in n.warnings


def test_normalize_accepts_legacy_keys():
    n = normalize_sensor_payload({"node_id": "n1", "rain": -3, "distance_cm": 55})
    assert n.errors == []
    assert n.payload["rain_analog"] == 0
    assert n.payload["water_distance_cm"] == 55.0
    assert n.warnings == ["rain_clamped_low"]


def test_normalize_reports_unusable_payloads():
    n = normalize_sensor_payload({"node_id": "", "rain_analog": "wet", "water_distance_cm": -1})
    assert n.errors == ["invalid_node_id", "missing_rain_analog", "invalid_water_distance"]

    n = normalize_sensor_payload({"node_id": "x" * 51, "rain_analog": 100})
    assert n.errors == ["invalid_node_id", "missing_water_distance"]


def test_normalize_rejects_non_object():
    assert normalize_sensor_payload(["not", "a", "dict"]).errors == ["payload_not_object"]
