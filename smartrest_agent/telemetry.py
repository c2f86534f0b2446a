"""Periodic telemetry producer.

Publishes a batch of measurements, an event and an alarm on every tick, plus
a custom JSON event, sharing the outbound channel with operation status
updates. The loop is a timer-driven task with an explicit stop event so
shutdown is deterministic.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import random
from datetime import datetime, timezone
from typing import Callable, List, Optional, Protocol, Sequence

from .smartrest.errors import MalformedRowError, TransportError
from .smartrest.facts import (
    Alarm,
    CustomJsonFragment,
    Event,
    Measurement,
    MeasurementBatch,
    MeasurementValue,
    OutboundFact,
    RowBatch,
)

LOGGER = logging.getLogger(__name__)

Sampler = Callable[[datetime], Sequence[OutboundFact]]


class FactSink(Protocol):
    async def publish_fact(self, fact: OutboundFact) -> None: ...


def simulated_samples(now: datetime) -> List[OutboundFact]:
    """Sample telemetry of the simulated device at ``now``."""

    batch = RowBatch(
        (
            Measurement("temperature", "T", round(random.uniform(12.0, 18.0), 1)),
            Measurement("pressure", "p", round(random.uniform(14.0, 16.0), 1)),
            Measurement("yourMeasurementCategory", "yourMeasurementName", 16),
            MeasurementBatch(
                "yourMeaType",
                (
                    MeasurementValue(
                        "c8y_SinglePhaseEnergyMeasurement",
                        "A1",
                        random.randint(1000, 1500),
                        "kWh",
                    ),
                    MeasurementValue(
                        "c8y_SinglePhaseEnergyMeasurement",
                        "A2",
                        random.randint(2000, 2500),
                        "kWh",
                    ),
                ),
            ),
            Event("yourEventType", "Your Event description"),
            Alarm("yourAlarmType", "here is your alarm text"),
        )
    )
    custom_event = CustomJsonFragment.event(
        "myCustomEventType", "Your new Event", time=now, yourCustomFragment=123
    )
    return [batch, custom_event]


class TelemetryProducer:
    """Publishes sampled telemetry facts on a fixed interval."""

    def __init__(
        self,
        publisher: FactSink,
        *,
        interval: float,
        sampler: Sampler = simulated_samples,
        stop_grace_seconds: float = 5.0,
    ) -> None:
        if interval <= 0:
            raise ValueError("Telemetry interval must be positive")
        self._publisher = publisher
        self._interval = interval
        self._sampler = sampler
        self._stop_grace = stop_grace_seconds
        self._stop_event: Optional[asyncio.Event] = None
        self._task: Optional[asyncio.Task[None]] = None
        self.ticks = 0
        self.failures = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.running:
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run(), name="telemetry-producer")
        self._task.add_done_callback(self._on_task_done)
        LOGGER.info("Telemetry producer started (interval=%.1fs)", self._interval)

    async def stop(self) -> None:
        task = self._task
        if task is None:
            return
        if self._stop_event is not None:
            self._stop_event.set()
        try:
            if not task.done():
                await asyncio.wait_for(asyncio.shield(task), timeout=self._stop_grace)
        except asyncio.TimeoutError:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        finally:
            self._task = None
        LOGGER.info("Telemetry producer stopped")

    async def publish_once(self, now: Optional[datetime] = None) -> int:
        """Publish one round of samples; returns the number of facts sent."""

        moment = now or datetime.now(timezone.utc)
        published = 0
        for fact in self._sampler(moment):
            try:
                await self._publisher.publish_fact(fact)
            except MalformedRowError:
                self.failures += 1
                LOGGER.exception("Dropping telemetry %s", type(fact).__name__)
            except TransportError as exc:
                self.failures += 1
                LOGGER.warning("Telemetry publish failed: %s", exc)
            else:
                published += 1
        self.ticks += 1
        return published

    async def _run(self) -> None:
        assert self._stop_event is not None
        stop_event = self._stop_event
        while not stop_event.is_set():
            await self.publish_once()
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                continue

    @staticmethod
    def _on_task_done(task: asyncio.Task[None]) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            LOGGER.error("Telemetry producer stopped unexpectedly", exc_info=exc)
