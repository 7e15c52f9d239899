from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .classifier import ADC_MAX, ADC_MIN, FloodStatus, RainIntensity


MAX_LABEL_LENGTH = 50


@dataclass(frozen=True)
class NormalizedPayload:
    payload: Dict[str, Any]
    errors: List[str]
    warnings: List[str]


def _to_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    return result if math.isfinite(result) else None


def _to_int(value: Any) -> Optional[int]:
    number = _to_float(value)
    if number is None:
        return None
    return int(round(number))


def _to_timestamp(value: Any) -> Optional[datetime]:
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        ts = datetime.fromisoformat(text)
    except ValueError:
        return None
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def _label(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    text = value.strip()
    if not text or len(text) > MAX_LABEL_LENGTH:
        return None
    return text


def normalize_sensor_payload(raw: Dict[str, Any]) -> NormalizedPayload:
    """Normalize an inbound node payload before classification + storage.

    Accepts the current wire keys and the short legacy keys:
    - rain_analog OR rain
    - water_distance_cm OR distance_cm

    Returns a NormalizedPayload with:
    - payload: node_id, rain_analog, water_distance_cm, the labels the node
      reported (or None), and timestamp (datetime or None)
    - errors: issues that make the sample unusable (reject with 400)
    - warnings: non-fatal issues (clamping, unknown labels, bad timestamp)
    """

    errors: List[str] = []
    warnings: List[str] = []

    if not isinstance(raw, dict):
        return NormalizedPayload(payload={}, errors=["payload_not_object"], warnings=[])

    node_id = _label(raw.get("node_id"))
    rain = _to_int(raw.get("rain_analog", raw.get("rain")))
    distance = _to_float(raw.get("water_distance_cm", raw.get("distance_cm")))

    if node_id is None:
        errors.append("invalid_node_id")

    if rain is None:
        errors.append("missing_rain_analog")
    elif rain < ADC_MIN:
        warnings.append("rain_clamped_low")
        rain = ADC_MIN
    elif rain > ADC_MAX:
        warnings.append("rain_clamped_high")
        rain = ADC_MAX

    if distance is None:
        errors.append("missing_water_distance")
    elif distance < 0:
        errors.append("invalid_water_distance")

    reported_intensity = None
    if raw.get("rain_intensity") is not None:
        reported_intensity = RainIntensity.parse(raw.get("rain_intensity"))
        if reported_intensity is None:
            warnings.append("unknown_rain_intensity")

    reported_status = None
    if raw.get("flood_status") is not None:
        reported_status = FloodStatus.parse(raw.get("flood_status"))
        if reported_status is None:
            warnings.append("unknown_flood_status")

    timestamp = None
    if raw.get("timestamp") is not None:
        timestamp = _to_timestamp(raw.get("timestamp"))
        if timestamp is None:
            warnings.append("invalid_timestamp")

    return NormalizedPayload(
        payload={
            "node_id": node_id,
            "rain_analog": rain,
            "water_distance_cm": distance,
            "rain_intensity": reported_intensity,
            "flood_status": reported_status,
            "timestamp": timestamp,
        },
        errors=errors,
        warnings=warnings,
    )
