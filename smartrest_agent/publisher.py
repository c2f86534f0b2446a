"""Outbound fact publisher shared by operations, telemetry and startup."""

from __future__ import annotations

import logging
from typing import Protocol, Tuple

from . import constants
from .smartrest.codec import encode_rows
from .smartrest.errors import TransportError
from .smartrest.facts import CustomJsonFragment, OutboundFact
from .smartrest.templates import validate

LOGGER = logging.getLogger(__name__)

QOS_AT_LEAST_ONCE = 1


class MQTTPublishClient(Protocol):
    async def publish_acknowledged(
        self,
        topic: str,
        payload: bytes,
        qos: int = 1,
        retain: bool = False,
        *,
        timeout: float = 10.0,
    ) -> None: ...


class FactPublisher:
    """Encodes facts and hands them to the transport.

    Every call to :meth:`publish_fact` produces exactly one transport message
    (one row or one newline separated batch) and returns once the broker has
    acknowledged it. The MQTT adapter submits each message synchronously
    under its own lock, so concurrent callers never interleave partial rows.
    """

    def __init__(
        self,
        mqtt: MQTTPublishClient,
        *,
        timeout: float = 10.0,
        upstream_topic: str = constants.SMARTREST_UPSTREAM_TOPIC,
    ) -> None:
        self._mqtt = mqtt
        self._timeout = timeout
        self._upstream_topic = upstream_topic

    def encode(self, fact: OutboundFact) -> Tuple[str, bytes]:
        """Return the topic and payload ``fact`` is published with.

        Raises:
            MalformedRowError: if a row does not match its template.
        """

        if isinstance(fact, CustomJsonFragment):
            return fact.topic, fact.to_json().encode("utf-8")

        rows = fact.rows()
        for row in rows:
            validate(row)
        return self._upstream_topic, encode_rows(rows).encode("utf-8")

    async def publish_fact(self, fact: OutboundFact) -> None:
        """Publish ``fact`` at QoS 1 without the retain flag.

        Raises:
            TransportError: if the transport rejects the message or does not
                acknowledge it in time.
        """

        topic, payload = self.encode(fact)
        try:
            await self._mqtt.publish_acknowledged(
                topic,
                payload,
                qos=QOS_AT_LEAST_ONCE,
                retain=False,
                timeout=self._timeout,
            )
        except TransportError as exc:
            LOGGER.warning(
                "Failed to publish %s on %s: %s", type(fact).__name__, topic, exc
            )
            raise

        LOGGER.info(
            "Published message topic=%s qos=%d retained=%s msg=%s",
            topic,
            QOS_AT_LEAST_ONCE,
            False,
            payload.decode("utf-8", errors="replace"),
        )
