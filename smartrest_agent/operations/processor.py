"""Inbound SmartREST processing: subscription, decoding and dispatch."""

from __future__ import annotations

import logging
from typing import Optional, Protocol

from .. import constants
from ..smartrest.codec import decode_all
from ..smartrest.errors import MalformedRowError
from .lifecycle import OperationController
from .requests import UnsupportedRequest, dispatch

LOGGER = logging.getLogger(__name__)


class MQTTOperationsClient(Protocol):
    def subscribe(self, topic: str, qos: int = 1) -> None: ...

    def unsubscribe(self, topic: str) -> None: ...

    def set_message_handler(self, handler): ...


class OperationProcessor:
    """Consumes downstream SmartREST rows and hands operations to the controller."""

    def __init__(
        self,
        mqtt: MQTTOperationsClient,
        controller: OperationController,
        *,
        operations_topic: str = constants.SMARTREST_DOWNSTREAM_TOPIC,
        error_topic: Optional[str] = constants.SMARTREST_ERROR_TOPIC,
    ) -> None:
        self._mqtt = mqtt
        self._controller = controller
        self._operations_topic = operations_topic
        self._error_topic = error_topic
        self._handler_registered = False

    @property
    def controller(self) -> OperationController:
        return self._controller

    @property
    def pending_count(self) -> int:
        return self._controller.pending_count

    async def start(self) -> None:
        if self._handler_registered:
            raise RuntimeError("OperationProcessor already started")

        self._mqtt.set_message_handler(self.handle_message)
        self._subscribe()
        self._handler_registered = True
        LOGGER.info("Subscribed to operations topic %s", self._operations_topic)

    async def stop(self) -> None:
        if not self._handler_registered:
            return

        try:
            for topic in self._topics():
                self._mqtt.unsubscribe(topic)
        except RuntimeError as exc:
            LOGGER.debug("Unsubscribe during stop failed: %s", exc)
        finally:
            self._mqtt.set_message_handler(None)
            self._handler_registered = False

    def resubscribe(self) -> None:
        """Restore subscriptions after the transport reconnected."""

        if not self._handler_registered:
            return
        self._subscribe()
        LOGGER.info("Resubscribed to operations topic %s", self._operations_topic)

    async def handle_message(self, topic: str, payload: bytes) -> None:
        text = payload.decode("utf-8", errors="replace")
        LOGGER.info("Received MQTT message topic=%s msg=%s", topic, text)

        if self._error_topic and topic == self._error_topic:
            LOGGER.warning("Platform reported an error: %s", text.strip())
            return

        if topic != self._operations_topic:
            LOGGER.debug("Ignoring message on unexpected topic %s", topic)
            return

        for line in decode_all(text):
            if line.row is None:
                LOGGER.warning(
                    "Dropping malformed row %d (%r): %s",
                    line.line_number,
                    line.raw,
                    line.error,
                )
                continue

            try:
                request = dispatch(line.row)
            except MalformedRowError as exc:
                LOGGER.warning(
                    "Dropping malformed operation row %d (%r): %s",
                    line.line_number,
                    line.raw,
                    exc,
                )
                continue

            if isinstance(request, UnsupportedRequest):
                LOGGER.info(
                    "Operation not supported by the device: template=%s payload=%s",
                    request.template_id,
                    list(request.fields),
                )
                continue

            LOGGER.info(
                "Operation %s requested for %s: %s",
                request.kind.value,
                request.device_serial,
                request,
            )
            self._controller.submit(request)

    def _topics(self) -> list[str]:
        topics = [self._operations_topic]
        if self._error_topic:
            topics.append(self._error_topic)
        return topics

    def _subscribe(self) -> None:
        for topic in self._topics():
            self._mqtt.subscribe(topic, qos=1)
