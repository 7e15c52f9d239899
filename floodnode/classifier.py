"""Per-reading classification run on the sensing node.

Two ladders live here:

- ``RAIN_INTENSITY_LADDER`` maps the raw YL-83 ADC value to a 5-level rain
  intensity. The sensor reads *higher* when it is drier.
- ``FLOOD_STATUS_POLICY`` combines the rain value with the HC-SR04 water
  distance. Rain gates the decision: water distance only refines the status
  once rain is in the heavy regime.

The coarser window ladder used for aggregated data is in ``aggregator`` and
deliberately uses different boundaries.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Tuple


# ESP32 ADC is 12-bit.
ADC_MIN = 0
ADC_MAX = 4095

# Reported when the ultrasonic sensor gets no echo inside its timeout. Chosen to
# read as "far / safe" so a sensor fault can never raise a flood alarm.
NO_ECHO_DISTANCE_CM = 400.0

# Substituted when the rain sensor cannot be read at all.
DRY_RAIN_SENTINEL = ADC_MAX

# Speed of sound in cm per microsecond; the pulse covers the distance twice.
_SOUND_CM_PER_US = 0.034


class RainIntensity(Enum):
    NO_RAIN = "NO RAIN"
    LIGHT = "LIGHT RAIN"
    MODERATE = "MODERATE RAIN"
    HEAVY = "HEAVY RAIN"
    TORRENTIAL = "TORRENTIAL RAIN"

    @property
    def rank(self) -> int:
        return _RAIN_ORDER.index(self)

    @classmethod
    def parse(cls, value: Any) -> Optional["RainIntensity"]:
        return _parse_label(cls, value)


class FloodStatus(Enum):
    NORMAL = "NORMAL"
    RAIN_ALERT = "RAIN ALERT"
    FLOOD_RISK = "FLOOD RISK"
    CRITICAL_FLOOD = "CRITICAL FLOOD"

    @property
    def rank(self) -> int:
        return _FLOOD_ORDER.index(self)

    @classmethod
    def parse(cls, value: Any) -> Optional["FloodStatus"]:
        return _parse_label(cls, value)


_RAIN_ORDER = list(RainIntensity)
_FLOOD_ORDER = list(FloodStatus)


def _parse_label(enum_cls, value: Any):
    """Accept either the wire label ("HEAVY RAIN") or the member name ("HEAVY")."""
    if isinstance(value, enum_cls):
        return value
    if not isinstance(value, str):
        return None
    text = value.strip().upper()
    for member in enum_cls:
        if text == member.value or text == member.name:
            return member
    return None


@dataclass(frozen=True)
class RainIntensityLadder:
    """Strict ``>`` cutoffs evaluated from driest to wettest.

    A value exactly on a cutoff falls into the wetter label below it.
    """

    steps: Tuple[Tuple[int, RainIntensity], ...]
    floor: RainIntensity

    def classify(self, rain_raw: int) -> RainIntensity:
        for cutoff, label in self.steps:
            if rain_raw > cutoff:
                return label
        return self.floor


@dataclass(frozen=True)
class FloodStatusPolicy:
    # Rain below this ADC value is "elevated" and enables flood escalation.
    rain_gate: int
    critical_below_cm: float
    risk_below_cm: float

    def classify(self, rain_raw: int, water_distance_cm: float) -> FloodStatus:
        if rain_raw >= self.rain_gate:
            return FloodStatus.NORMAL
        if water_distance_cm < self.critical_below_cm:
            return FloodStatus.CRITICAL_FLOOD
        if water_distance_cm < self.risk_below_cm:
            return FloodStatus.FLOOD_RISK
        return FloodStatus.RAIN_ALERT


RAIN_INTENSITY_LADDER = RainIntensityLadder(
    steps=(
        (3600, RainIntensity.NO_RAIN),
        (3000, RainIntensity.LIGHT),
        (2400, RainIntensity.MODERATE),
        (1800, RainIntensity.HEAVY),
    ),
    floor=RainIntensity.TORRENTIAL,
)

FLOOD_STATUS_POLICY = FloodStatusPolicy(rain_gate=2400, critical_below_cm=10.0, risk_below_cm=20.0)


def sanitize_rain_raw(value: Any) -> int:
    """Coerce a raw rain sample into the ADC range.

    Missing or unparseable samples become ``DRY_RAIN_SENTINEL``.
    """
    if value is None or isinstance(value, bool):
        return DRY_RAIN_SENTINEL
    try:
        rain = int(value)
    except (TypeError, ValueError):
        return DRY_RAIN_SENTINEL
    return max(ADC_MIN, min(ADC_MAX, rain))


def sanitize_distance_cm(value: Any) -> float:
    """Negative, missing or non-finite distances are treated as no echo."""
    if value is None or isinstance(value, bool):
        return NO_ECHO_DISTANCE_CM
    try:
        distance = float(value)
    except (TypeError, ValueError):
        return NO_ECHO_DISTANCE_CM
    if not math.isfinite(distance) or distance < 0:
        return NO_ECHO_DISTANCE_CM
    return distance


def echo_to_distance_cm(duration_us: Any) -> float:
    """Convert an HC-SR04 echo pulse width to centimetres.

    ``pulseIn`` returns 0 when it times out; that maps to ``NO_ECHO_DISTANCE_CM``.
    """
    if duration_us is None:
        return NO_ECHO_DISTANCE_CM
    try:
        duration = float(duration_us)
    except (TypeError, ValueError):
        return NO_ECHO_DISTANCE_CM
    if duration <= 0:
        return NO_ECHO_DISTANCE_CM
    return duration * _SOUND_CM_PER_US / 2.0


def classify(rain_raw: int, water_distance_cm: float) -> Tuple[RainIntensity, FloodStatus]:
    return (
        RAIN_INTENSITY_LADDER.classify(rain_raw),
        FLOOD_STATUS_POLICY.classify(rain_raw, water_distance_cm),
    )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Reading:
    node_id: str
    rain_raw: int
    water_distance_cm: float
    rain_intensity: RainIntensity
    flood_status: FloodStatus
    timestamp: datetime = field(default_factory=_utcnow)

    @classmethod
    def capture(
        cls,
        node_id: str,
        rain_raw: Any,
        water_distance_cm: Any,
        timestamp: Optional[datetime] = None,
    ) -> "Reading":
        """Build a reading from raw samples; labels are always derived here."""
        rain = sanitize_rain_raw(rain_raw)
        distance = sanitize_distance_cm(water_distance_cm)
        intensity, status = classify(rain, distance)
        return cls(
            node_id=node_id,
            rain_raw=rain,
            water_distance_cm=distance,
            rain_intensity=intensity,
            flood_status=status,
            timestamp=timestamp or _utcnow(),
        )

    def to_wire(self) -> Dict[str, Any]:
        return {
            "node_id": self.node_id,
            "rain_analog": self.rain_raw,
            "rain_intensity": self.rain_intensity.value,
            "water_distance_cm": round(self.water_distance_cm, 2),
            "flood_status": self.flood_status.value,
            "timestamp": self.timestamp.isoformat(),
        }
