from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from .aggregator import DEFAULT_DRAINAGE_SCORE
from .classifier import Reading
from .models import Node, SensorReading


logger = logging.getLogger("floodnode.store")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_node(db: Session, node_id: str) -> Node:
    node = db.get(Node, node_id)
    if node is None:
        node = Node(node_id=node_id, area_name="Unassigned", drainage_score=DEFAULT_DRAINAGE_SCORE)
        db.add(node)
        logger.info("node_registered node_id=%s", node_id)
    return node


def insert_reading(db: Session, reading: Reading, *, received_at: Optional[datetime] = None) -> SensorReading:
    """Append one classified reading. Commits."""
    ensure_node(db, reading.node_id)
    record = SensorReading(
        node_id=reading.node_id,
        rain_analog=int(reading.rain_raw),
        rain_intensity=reading.rain_intensity.value,
        water_distance_cm=float(reading.water_distance_cm),
        flood_status=reading.flood_status.value,
        captured_at=reading.timestamp,
        created_at=received_at or _utcnow(),
    )
    db.add(record)
    db.commit()
    db.refresh(record)
    return record


def latest_readings(db: Session, limit: int) -> List[SensorReading]:
    return (
        db.query(SensorReading)
        .order_by(SensorReading.created_at.desc(), SensorReading.id.desc())
        .limit(limit)
        .all()
    )


def node_history(db: Session, node_id: str, limit: int) -> List[SensorReading]:
    return (
        db.query(SensorReading)
        .filter(SensorReading.node_id == node_id)
        .order_by(SensorReading.created_at.desc(), SensorReading.id.desc())
        .limit(limit)
        .all()
    )


def readings_since(db: Session, since: datetime) -> List[SensorReading]:
    return (
        db.query(SensorReading)
        .filter(SensorReading.created_at >= since)
        .order_by(SensorReading.created_at.desc(), SensorReading.id.desc())
        .all()
    )


def latest_reading_per_node(db: Session) -> List[SensorReading]:
    """Newest reading of every node by created_at; ties go to the highest id."""
    ranked = (
        db.query(
            SensorReading.id.label("reading_id"),
            func.row_number()
            .over(
                partition_by=SensorReading.node_id,
                order_by=(SensorReading.created_at.desc(), SensorReading.id.desc()),
            )
            .label("rn"),
        )
        .subquery()
    )
    return (
        db.query(SensorReading)
        .join(ranked, SensorReading.id == ranked.c.reading_id)
        .filter(ranked.c.rn == 1)
        .order_by(SensorReading.node_id)
        .all()
    )


def get_node(db: Session, node_id: str) -> Optional[Node]:
    return db.get(Node, node_id)
