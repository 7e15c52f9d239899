"""Sensing-node loop: sample, classify, log locally, hand off for transmission.

Classification runs on a fixed period in the calling thread. Transmission is
handed to a single daemon sender thread through a bounded queue, so a slow or
unreachable backend never delays or skips a sampling cycle.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from typing import Callable, Optional

import requests

from .classifier import Reading
from .config import settings
from .sensors import SensorSource


logger = logging.getLogger("floodnode.node")


class HttpTransmitter:
    """POSTs readings to the ingest endpoint. Best effort: failures are logged."""

    def __init__(
        self,
        url: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.url = url or settings.INGEST_URL
        self.timeout_seconds = (
            timeout_seconds if timeout_seconds is not None else settings.NODE_HTTP_TIMEOUT_SECONDS
        )
        self._session = session or requests.Session()

    def send(self, reading: Reading) -> bool:
        try:
            resp = self._session.post(self.url, json=reading.to_wire(), timeout=self.timeout_seconds)
        except requests.RequestException as e:
            logger.warning("transmit_failed node_id=%s error=%s", reading.node_id, e)
            return False

        if not resp.ok:
            logger.warning(
                "transmit_rejected node_id=%s status=%s body=%s",
                reading.node_id, resp.status_code, resp.text[:200],
            )
            return False

        logger.debug("transmit_ok node_id=%s status=%s", reading.node_id, resp.status_code)
        return True

    def close(self) -> None:
        self._session.close()


class NodeAgent:
    def __init__(
        self,
        source: SensorSource,
        transmitter,
        node_id: Optional[str] = None,
        period_seconds: Optional[float] = None,
        queue_size: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.source = source
        self.transmitter = transmitter
        self.node_id = node_id or settings.NODE_ID
        self.period_seconds = period_seconds if period_seconds is not None else settings.NODE_SAMPLE_PERIOD_SECONDS
        self._clock = clock
        self._outbox: "queue.Queue[Optional[Reading]]" = queue.Queue(
            maxsize=queue_size if queue_size is not None else settings.NODE_SEND_QUEUE_SIZE
        )
        self._stop_event = threading.Event()
        self._sender: Optional[threading.Thread] = None
        self.dropped = 0

    # -- transmission ----------------------------------------------------

    def start_sender(self) -> None:
        if self._sender is None or not self._sender.is_alive():
            self._sender = threading.Thread(target=self._send_loop, name="node-sender", daemon=True)
            self._sender.start()

    def _send_loop(self) -> None:
        while True:
            reading = self._outbox.get()
            try:
                if reading is None:
                    return
                self.transmitter.send(reading)
            except Exception as e:
                # A transmitter bug must not kill the sender thread.
                logger.exception("transmit_crashed error=%s", e)
            finally:
                self._outbox.task_done()

    def _enqueue(self, reading: Reading) -> None:
        try:
            self._outbox.put_nowait(reading)
        except queue.Full:
            self.dropped += 1
            logger.warning("transmit_queue_full dropped=%s node_id=%s", self.dropped, reading.node_id)

    # -- sampling --------------------------------------------------------

    def run_once(self) -> Reading:
        """One sampling cycle. Never blocks on the network."""
        sample = self.source.read()
        if sample.fault:
            logger.warning(
                "sensor_fault node_id=%s fault=%s detail=%s",
                self.node_id, sample.fault, getattr(self.source, "last_error", None),
            )

        reading = Reading.capture(self.node_id, sample.rain_raw, sample.water_distance_cm)
        logger.info(
            "reading node_id=%s rain=%s intensity=%s distance_cm=%.2f status=%s",
            reading.node_id,
            reading.rain_raw,
            reading.rain_intensity.value,
            reading.water_distance_cm,
            reading.flood_status.value,
        )
        self._enqueue(reading)
        return reading

    def run_forever(self) -> None:
        self.start_sender()
        logger.info("node_started node_id=%s period_s=%s", self.node_id, self.period_seconds)
        next_tick = self._clock()
        while not self._stop_event.is_set():
            try:
                self.run_once()
            except Exception as e:
                logger.exception("cycle_failed node_id=%s error=%s", self.node_id, e)

            # Fixed cadence: sleep until the next tick, skipping ticks we overran.
            next_tick += self.period_seconds
            now = self._clock()
            if next_tick < now:
                next_tick = now
            self._stop_event.wait(next_tick - now)

        logger.info("node_stopped node_id=%s", self.node_id)

    def stop(self, timeout: float = 3.0) -> None:
        self._stop_event.set()
        if self._sender is not None and self._sender.is_alive():
            try:
                self._outbox.put(None, timeout=timeout)
            except queue.Full:
                logger.warning("sender_shutdown_queue_full")
            self._sender.join(timeout=timeout)


def main() -> None:
    from .logging_config import configure_logging
    from .sensors import build_sensor_source

    configure_logging()
    source = build_sensor_source()
    transmitter = HttpTransmitter()
    agent = NodeAgent(source, transmitter)

    try:
        agent.run_forever()
    except KeyboardInterrupt:
        pass
    finally:
        agent.stop()
        transmitter.close()
        source.close()


if __name__ == "__main__":
    main()
