"""Raw sample sources for the node agent.

The YL-83 rain sensor and HC-SR04 ultrasonic sensor are wired to a
microcontroller that prints one JSON line per measurement over USB serial::

    {"rain_analog": 2875, "echo_us": 1420}

A source never raises on a sensor fault; it returns a sample carrying the
safe sentinels instead so the classification cycle always runs.
"""

from __future__ import annotations

import json
import logging
import math
import random
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import serial
from serial.tools import list_ports

from .classifier import (
    ADC_MAX,
    ADC_MIN,
    NO_ECHO_DISTANCE_CM,
    echo_to_distance_cm,
    sanitize_distance_cm,
)
from .config import settings


logger = logging.getLogger("floodnode.sensors")


@dataclass(frozen=True)
class SensorSample:
    # None means the rain sensor could not be read; Reading.capture substitutes the dry sentinel.
    rain_raw: Optional[int]
    water_distance_cm: float
    fault: Optional[str] = None


def fault_sample(reason: str) -> SensorSample:
    return SensorSample(rain_raw=None, water_distance_cm=NO_ECHO_DISTANCE_CM, fault=reason)


def parse_sample_line(line: str) -> Optional[SensorSample]:
    """Parse one microcontroller line; returns None for anything that isn't a sample."""
    line = line.strip()
    if not (line.startswith("{") and line.endswith("}")):
        return None
    try:
        data = json.loads(line)
    except json.JSONDecodeError:
        return None
    if not isinstance(data, dict):
        return None

    rain = data.get("rain_analog")
    if isinstance(rain, bool) or not isinstance(rain, (int, float)) or not math.isfinite(rain):
        rain = None
    else:
        rain = int(rain)

    if "echo_us" in data:
        distance = echo_to_distance_cm(data.get("echo_us"))
    else:
        distance = sanitize_distance_cm(data.get("water_distance_cm"))

    fault = None
    if rain is None:
        fault = "rain_unreadable"
    elif distance == NO_ECHO_DISTANCE_CM:
        fault = "no_echo"
    return SensorSample(rain_raw=rain, water_distance_cm=distance, fault=fault)


class SensorSource(ABC):
    """Base class for anything that produces raw samples."""

    @abstractmethod
    def read(self) -> SensorSample:
        """Return the most recent raw sample."""

    def close(self) -> None:
        pass


class SerialSensorSource(SensorSource):
    def __init__(
        self,
        port: Optional[str] = None,
        baudrate: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self.port = port if port is not None else settings.SERIAL_PORT
        self.baudrate = baudrate or settings.SERIAL_BAUDRATE
        self.timeout = timeout if timeout is not None else settings.SERIAL_READ_TIMEOUT_SECONDS
        self._ser: Optional[serial.Serial] = None
        self._next_connect_at = 0.0
        self.last_error: Optional[str] = None

    @property
    def connected(self) -> bool:
        return self._ser is not None and self._ser.is_open

    @staticmethod
    def auto_detect_port() -> Optional[str]:
        # Prefer ports that look like ESP32/USB-serial bridges.
        candidates = list_ports.comports()
        if not candidates:
            return None

        def score(p) -> int:
            text = " ".join(
                [
                    p.device or "",
                    p.description or "",
                    getattr(p, "manufacturer", "") or "",
                    p.hwid or "",
                ]
            ).lower()
            keywords = ["esp32", "usb serial", "wch", "ch340", "cp210", "ftdi", "silicon labs"]
            return sum(1 for k in keywords if k in text)

        best = max(candidates, key=score)
        return best.device

    def _connect(self) -> Optional[serial.Serial]:
        port = self.port or self.auto_detect_port()
        if not port:
            self.last_error = "No serial ports detected"
            logger.warning("serial_no_ports")
            return None
        try:
            self._ser = serial.Serial(port, self.baudrate, timeout=self.timeout)
        except serial.SerialException as e:
            self._ser = None
            self.last_error = str(e)
            logger.error("serial_connect_failed port=%s error=%s", port, e)
            return None

        self.last_error = None
        logger.info("serial_connected port=%s baudrate=%s", port, self.baudrate)
        return self._ser

    def _connection(self) -> Optional[serial.Serial]:
        if self._ser is not None and self._ser.is_open:
            return self._ser
        # Back off between reconnect attempts; the cycle uses sentinels meanwhile.
        now = time.monotonic()
        if now < self._next_connect_at:
            return None
        self._next_connect_at = now + settings.SERIAL_CONNECT_RETRY_SECONDS
        return self._connect()

    def read(self) -> SensorSample:
        connection = self._connection()
        if connection is None:
            return fault_sample("serial_unavailable")

        latest: Optional[SensorSample] = None
        try:
            raw = connection.readline()
            # Drain anything buffered since the last cycle and keep the newest sample.
            while raw:
                line = raw.decode(errors="replace").strip()
                sample = parse_sample_line(line)
                if sample is not None:
                    latest = sample
                if not connection.in_waiting:
                    break
                raw = connection.readline()
        except serial.SerialException as e:
            self.last_error = str(e)
            logger.error("serial_read_failed error=%s", e)
            self.close()
            return fault_sample("serial_read_failed")

        if latest is None:
            return fault_sample("no_sample")
        return latest

    def close(self) -> None:
        if self._ser is not None:
            try:
                self._ser.close()
            except serial.SerialException as e:
                logger.debug("serial_close_failed error=%s", e)
        self._ser = None


class SimulatedSensorSource(SensorSource):
    """Random-walk rain and water level for bench runs without hardware."""

    def __init__(
        self,
        base_rain: float = 3200.0,
        base_distance_cm: float = 60.0,
        no_echo_chance: float = 0.02,
        seed: Optional[int] = None,
    ) -> None:
        self.base_rain = base_rain
        self.base_distance_cm = base_distance_cm
        self.no_echo_chance = no_echo_chance
        self._rng = random.Random(seed)
        self._rain = base_rain
        self._distance = base_distance_cm

    def _walk(self, current: float, base: float, variation: float) -> float:
        value = current + self._rng.uniform(-variation, variation)
        # Mean reversion
        return value * 0.9 + base * 0.1

    def read(self) -> SensorSample:
        self._rain = max(ADC_MIN, min(ADC_MAX, self._walk(self._rain, self.base_rain, 250.0)))
        self._distance = max(0.0, self._walk(self._distance, self.base_distance_cm, 4.0))

        if self._rng.random() < self.no_echo_chance:
            return SensorSample(rain_raw=int(self._rain), water_distance_cm=NO_ECHO_DISTANCE_CM, fault="no_echo")
        return SensorSample(rain_raw=int(self._rain), water_distance_cm=round(self._distance, 2))


def build_sensor_source(kind: Optional[str] = None) -> SensorSource:
    kind = (kind or settings.NODE_SENSOR or "serial").lower()
    if kind == "serial":
        return SerialSensorSource()
    if kind == "simulated":
        return SimulatedSensorSource()
    raise ValueError(f"Unsupported sensor source: {kind}")
