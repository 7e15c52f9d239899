from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List

from sqlalchemy.orm import Session

from .classifier import Reading
from .models import SensorReading
from .store import insert_reading
from .validation import normalize_sensor_payload


logger = logging.getLogger("floodnode.processor")


class PayloadRejected(ValueError):
    def __init__(self, errors: List[str]):
        super().__init__(",".join(errors))
        self.errors = errors


@dataclass(frozen=True)
class IngestResult:
    record: SensorReading
    reading: Reading
    warnings: List[str]


def process_sensor_data(db: Session, data: Dict[str, Any]) -> IngestResult:
    """Validate, classify and store one node payload.

    Labels are recomputed here from the raw values; a node reporting different
    labels is logged and overridden. Raises PayloadRejected on unusable input;
    storage errors propagate to the caller.
    """
    normalized = normalize_sensor_payload(data)
    if normalized.errors:
        logger.warning("payload_rejected errors=%s raw=%s", ",".join(normalized.errors), data)
        raise PayloadRejected(normalized.errors)

    payload = normalized.payload
    for w in normalized.warnings:
        logger.warning("payload_warning=%s raw=%s", w, data)

    reading = Reading.capture(
        payload["node_id"],
        payload["rain_analog"],
        payload["water_distance_cm"],
        timestamp=payload["timestamp"],
    )

    warnings = list(normalized.warnings)
    reported_intensity = payload["rain_intensity"]
    reported_status = payload["flood_status"]
    if reported_intensity is not None and reported_intensity is not reading.rain_intensity:
        warnings.append("rain_intensity_overridden")
        logger.warning(
            "label_mismatch node_id=%s field=rain_intensity reported=%s derived=%s",
            reading.node_id, reported_intensity.value, reading.rain_intensity.value,
        )
    if reported_status is not None and reported_status is not reading.flood_status:
        warnings.append("flood_status_overridden")
        logger.warning(
            "label_mismatch node_id=%s field=flood_status reported=%s derived=%s",
            reading.node_id, reported_status.value, reading.flood_status.value,
        )

    try:
        record = insert_reading(db, reading)
    except Exception:
        db.rollback()
        raise

    logger.info(
        "stored_reading id=%s node_id=%s rain=%s status=%s",
        record.id, record.node_id, record.rain_intensity, record.flood_status,
    )
    return IngestResult(record=record, reading=reading, warnings=warnings)
