"""Window aggregation of stored readings into a ranked per-node risk summary.

Averages are taken over the raw numeric values and only then categorised, so
``severity_level`` is never an average of per-reading labels.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from .classifier import FloodStatus, RainIntensity


logger = logging.getLogger("floodnode.aggregator")

DEFAULT_WINDOW = timedelta(hours=24)

DEFAULT_DRAINAGE_SCORE = 3


@dataclass(frozen=True)
class WindowSeverityLadder:
    """Cutoffs on the window-averaged rain value, wettest first.

    A mean exactly on a cutoff lands on the more severe level, matching the
    per-reading ladder where a cutoff value resolves to the wetter label.
    Coarser than the per-reading rain ladder: NO_RAIN and LIGHT both land on
    the bottom level.
    """

    steps: Tuple[Tuple[float, int], ...]
    floor: int

    def level(self, avg_rain_raw: float) -> int:
        for cutoff, level in self.steps:
            if avg_rain_raw <= cutoff:
                return level
        return self.floor


# Inclusive cutoffs: means of exactly 2400 or 3000 rank one level more severe
# than the strict "< 2400" / "< 3000" checks of the earlier Node.js backend.
WINDOW_SEVERITY_LADDER = WindowSeverityLadder(
    steps=((1800, 4), (2400, 3), (3000, 2)),
    floor=1,
)


def risk_percentage(avg_water_distance_cm: Optional[float]) -> Optional[float]:
    """0-100 display gauge from water distance alone, saturating at both ends."""
    if avg_water_distance_cm is None:
        return None
    return float(max(0.0, min(100.0, 100.0 - avg_water_distance_cm * 2)))


_INTENSITY_POINTS = {
    RainIntensity.TORRENTIAL: 40,
    RainIntensity.HEAVY: 30,
    RainIntensity.MODERATE: 20,
    RainIntensity.LIGHT: 10,
    RainIntensity.NO_RAIN: 0,
}


def flood_risk_score(
    rain_intensity: Any,
    water_distance_cm: Optional[float],
    drainage_score: Optional[int] = None,
) -> int:
    """Drainage-adjusted 0-100 score for a single reading.

    Unknown intensity labels score 0; a missing distance scores as "far".
    Poor drainage (low score) raises the risk.
    """
    intensity = RainIntensity.parse(rain_intensity)
    score = _INTENSITY_POINTS.get(intensity, 0)

    if water_distance_cm is not None and water_distance_cm <= 5:
        score += 40
    elif water_distance_cm is not None and water_distance_cm <= 10:
        score += 30
    elif water_distance_cm is not None and water_distance_cm <= 20:
        score += 15
    else:
        score += 5

    drainage = DEFAULT_DRAINAGE_SCORE if drainage_score is None else int(drainage_score)
    score += (5 - drainage) * 10

    return max(0, min(100, score))


def _to_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    return result if math.isfinite(result) else None


def _to_datetime(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None
    # Naive timestamps from the store are UTC.
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _field(record: Any, name: str) -> Any:
    if isinstance(record, Mapping):
        return record.get(name)
    return getattr(record, name, None)


@dataclass(frozen=True)
class StoredReading:
    """A store row with every field parsed into an explicit optional."""

    node_id: Optional[str]
    rain_analog: Optional[float]
    water_distance_cm: Optional[float]
    flood_status: Optional[str]
    created_at: Optional[datetime]

    @classmethod
    def from_record(cls, record: Any) -> "StoredReading":
        """Accepts ORM rows, plain mappings and classifier Readings alike."""
        node_id = _field(record, "node_id")
        created_at = _field(record, "created_at")
        if created_at is None:
            created_at = _field(record, "timestamp")
        rain = _field(record, "rain_analog")
        if rain is None:
            rain = _field(record, "rain_raw")
        status = _field(record, "flood_status")
        if isinstance(status, FloodStatus):
            status = status.value
        return cls(
            node_id=str(node_id) if node_id not in (None, "") else None,
            rain_analog=_to_float(rain),
            water_distance_cm=_to_float(_field(record, "water_distance_cm")),
            flood_status=status if isinstance(status, str) else None,
            created_at=_to_datetime(created_at),
        )

    @property
    def is_groupable(self) -> bool:
        return self.node_id is not None and self.created_at is not None


@dataclass(frozen=True)
class NodeRiskSummary:
    node_id: str
    reading_count: int
    avg_rain_raw: Optional[float]
    avg_water_distance_cm: Optional[float]
    last_reading_time: datetime
    severity_level: int

    @property
    def risk_percentage(self) -> Optional[float]:
        return risk_percentage(self.avg_water_distance_cm)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "node_id": self.node_id,
            "total_readings": self.reading_count,
            "avg_rain_analog": self.avg_rain_raw,
            "avg_water_distance": self.avg_water_distance_cm,
            "last_reading_time": self.last_reading_time.isoformat(),
            "max_flood_status_level": self.severity_level,
            "risk_percentage": self.risk_percentage,
        }


class _NodeAccumulator:
    __slots__ = ("count", "rain_sum", "rain_n", "distance_sum", "distance_n", "last_seen")

    def __init__(self) -> None:
        self.count = 0
        self.rain_sum = 0.0
        self.rain_n = 0
        self.distance_sum = 0.0
        self.distance_n = 0
        self.last_seen: Optional[datetime] = None

    def add(self, reading: StoredReading) -> None:
        self.count += 1
        if reading.rain_analog is not None:
            self.rain_sum += reading.rain_analog
            self.rain_n += 1
        if reading.water_distance_cm is not None:
            self.distance_sum += reading.water_distance_cm
            self.distance_n += 1
        if self.last_seen is None or reading.created_at > self.last_seen:
            self.last_seen = reading.created_at

    def summarize(self, node_id: str) -> NodeRiskSummary:
        avg_rain = self.rain_sum / self.rain_n if self.rain_n else None
        avg_distance = self.distance_sum / self.distance_n if self.distance_n else None
        # No usable rain values: nothing to escalate on.
        severity = WINDOW_SEVERITY_LADDER.level(avg_rain) if avg_rain is not None else WINDOW_SEVERITY_LADDER.floor
        return NodeRiskSummary(
            node_id=node_id,
            reading_count=self.count,
            avg_rain_raw=avg_rain,
            avg_water_distance_cm=avg_distance,
            last_reading_time=self.last_seen,
            severity_level=severity,
        )


def aggregate(
    readings: Iterable[Any],
    window_end: Optional[datetime] = None,
    window: timedelta = DEFAULT_WINDOW,
) -> List[NodeRiskSummary]:
    """Summarise readings inside ``[window_end - window, ...)`` per node.

    Returns summaries ranked by ``severity_level`` descending; ties keep the
    order in which nodes were first seen in ``readings``. Records that cannot
    be windowed or grouped (no node id, no timestamp) are skipped.
    """
    window_end = _to_datetime(window_end) or datetime.now(timezone.utc)
    window_start = window_end - window

    groups: Dict[str, _NodeAccumulator] = {}
    skipped = 0
    for record in readings:
        reading = StoredReading.from_record(record)
        if not reading.is_groupable:
            skipped += 1
            continue
        if reading.created_at < window_start:
            continue
        groups.setdefault(reading.node_id, _NodeAccumulator()).add(reading)

    if skipped:
        logger.warning("aggregate_skipped_records count=%s", skipped)

    summaries = [acc.summarize(node_id) for node_id, acc in groups.items()]
    # sorted() is stable, so equal severities keep first-seen order.
    return sorted(summaries, key=lambda s: s.severity_level, reverse=True)
