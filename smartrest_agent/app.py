"""Main application entry-point for smartrest-agent."""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Mapping, Optional, Set

from .adapters import MQTTClient, MQTTConnectionError
from .config import AgentConfig, load_config
from .health import HealthReporter, HealthServer
from .inventory import DeviceInventory
from .logging import configure_logging
from .operations import (
    OperationController,
    OperationHandler,
    OperationKind,
    OperationProcessor,
    build_simulated_handlers,
)
from .publisher import FactPublisher
from .smartrest.errors import TransportError
from .telemetry import Sampler, TelemetryProducer, simulated_samples

LOGGER = logging.getLogger(__name__)


class AgentState(str, Enum):
    COLD_START = "cold_start"
    AWAITING_MQTT = "awaiting_mqtt"
    REGISTERING = "registering"
    ACTIVE = "active"
    DEGRADED = "degraded"
    RECOVERING = "recovering"
    STOPPING = "stopping"


class SmartRestAgentApp:
    """Coordinates application startup and shutdown.

    Startup connects the transport, subscribes to operations, registers the
    device and its inventory, then starts the periodic telemetry producer.
    Every collaborator is created here and passed down explicitly; the
    transport, the action handlers and the telemetry sampler can be injected
    for testing.
    """

    def __init__(
        self,
        config: Optional[AgentConfig] = None,
        *,
        mqtt_client: Optional[MQTTClient] = None,
        handlers: Optional[Mapping[OperationKind, OperationHandler]] = None,
        sampler: Sampler = simulated_samples,
    ) -> None:
        self._config = config or load_config()
        self._inventory = DeviceInventory.from_config(self._config.device)
        self._mqtt_client = mqtt_client
        self._handlers = handlers
        self._sampler = sampler
        self._publisher: Optional[FactPublisher] = None
        self._controller: Optional[OperationController] = None
        self._processor: Optional[OperationProcessor] = None
        self._telemetry: Optional[TelemetryProducer] = None
        self._health = HealthReporter()
        self._health_server: Optional[HealthServer] = None
        self._shutdown_event: Optional[asyncio.Event] = None
        self._state = AgentState.COLD_START
        self._stopping = False
        self._disconnected = False
        self._background: Set[asyncio.Task[None]] = set()

    @property
    def state(self) -> AgentState:
        return self._state

    @property
    def inventory(self) -> DeviceInventory:
        return self._inventory

    @property
    def health(self) -> HealthReporter:
        return self._health

    async def run(self) -> None:
        """Start all services and run until shutdown is requested."""

        self._shutdown_event = asyncio.Event()

        LOGGER.info("smartrest-agent starting with config: %s", self._config.path)
        started = await self._start_services()
        if not started:
            LOGGER.warning("Service startup incomplete; running in degraded mode")

        try:
            await self._shutdown_event.wait()
        except asyncio.CancelledError:
            LOGGER.info("smartrest-agent received shutdown signal")
            raise
        finally:
            await self._stop_services()

    def request_shutdown(self) -> None:
        if self._shutdown_event is not None:
            self._shutdown_event.set()

    @classmethod
    def start(cls, config: Optional[AgentConfig] = None) -> None:
        instance = cls(config=config)
        configure_logging(
            instance._config.logging.level,
            log_path=instance._config.logging.path,
            log_network=instance._config.logging.log_network,
        )
        try:
            asyncio.run(instance.run())
        except KeyboardInterrupt:
            LOGGER.info("smartrest-agent received shutdown signal")

    async def _transition_state(self, state: AgentState) -> None:
        if state == self._state:
            return
        previous = self._state
        self._state = state
        LOGGER.info("Agent state transition %s -> %s", previous.value, state.value)
        await self._health.set_agent_state(
            state.value, healthy=state == AgentState.ACTIVE
        )

    def _schedule(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _start_services(self) -> bool:
        config = self._config
        self._stopping = False
        await self._transition_state(AgentState.COLD_START)
        await self._health.update("mqtt", False, "initialising")
        await self._health.update("operations", False, "awaiting mqtt connectivity")
        await self._health.update("telemetry", False, "awaiting mqtt connectivity")

        mqtt = self._mqtt_client
        if mqtt is None:
            mqtt = MQTTClient(
                config.cloud,
                client_id=config.client_id,
                reconnect_min_delay=config.resilience.reconnect_min_seconds,
                reconnect_max_delay=config.resilience.reconnect_max_seconds,
            )
            self._mqtt_client = mqtt
        mqtt.register_disconnect_handler(self._on_mqtt_disconnect)
        mqtt.register_connect_handler(self._on_mqtt_connect)

        await self._transition_state(AgentState.AWAITING_MQTT)
        try:
            await mqtt.connect()
        except MQTTConnectionError as exc:
            LOGGER.error("MQTT connection failed: %s", exc)
            await self._health.update("mqtt", False, str(exc))
            await self._transition_state(AgentState.DEGRADED)
            return False
        await self._health.update("mqtt", True, None)

        publisher = FactPublisher(
            mqtt, timeout=config.operations.publish_timeout_seconds
        )
        self._publisher = publisher

        handlers = self._handlers
        if handlers is None:
            handlers = build_simulated_handlers(
                config.operations.simulated_duration_seconds,
                software=self._inventory.software,
            )
        controller = OperationController(
            publisher,
            handlers,
            terminal_retries=config.operations.terminal_retries,
        )
        self._controller = controller
        self._health.track("pendingOperations", lambda: controller.pending_count)
        self._processor = OperationProcessor(mqtt, self._controller)
        try:
            await self._processor.start()
        except MQTTConnectionError as exc:
            LOGGER.error("Could not subscribe to operations: %s", exc)
            await self._health.update("operations", False, str(exc))
            self._processor = None
        else:
            await self._health.update("operations", True, None)

        await self._transition_state(AgentState.REGISTERING)
        registered = await self._register_device()

        if config.telemetry.enabled:
            telemetry = TelemetryProducer(
                publisher,
                interval=config.telemetry.interval_seconds,
                sampler=self._sampler,
            )
            self._telemetry = telemetry
            await telemetry.start()
            self._health.track("telemetryFailures", lambda: telemetry.failures)
            await self._health.update("telemetry", True, None)
        else:
            await self._health.update("telemetry", True, "disabled")

        await self._start_health_server()

        ready = registered and self._processor is not None
        await self._transition_state(
            AgentState.ACTIVE if ready else AgentState.DEGRADED
        )
        return ready

    async def _register_device(self) -> bool:
        assert self._publisher is not None
        inventory = self._inventory
        try:
            await self._publisher.publish_fact(inventory.registration())
            settle = self._config.resilience.startup_settle_seconds
            if settle > 0:
                await asyncio.sleep(settle)
            for fact in inventory.startup_facts():
                await self._publisher.publish_fact(fact)
        except TransportError as exc:
            LOGGER.error("Device registration for %s failed: %s", inventory.serial, exc)
            await self._health.update("inventory", False, str(exc))
            return False

        LOGGER.info("Registered device %s (%s)", inventory.name, inventory.serial)
        await self._health.update("inventory", True, None)
        return True

    async def _start_health_server(self) -> None:
        resilience = self._config.resilience
        if not resilience.health_enabled or resilience.health_port <= 0:
            return

        server = HealthServer(
            self._health, resilience.health_host, resilience.health_port
        )
        try:
            await server.start()
        except OSError as exc:
            LOGGER.error("Failed to start health endpoint: %s", exc)
            await self._health.update("health-endpoint", False, str(exc))
        else:
            self._health_server = server
            await self._health.update("health-endpoint", True, None)

    # ------------------------------------------------------------------
    # MQTT callbacks, delivered on the event loop by the adapter
    # ------------------------------------------------------------------

    def _on_mqtt_disconnect(self, rc: int) -> None:
        if self._stopping:
            return
        self._disconnected = True
        if self._controller is not None:
            self._controller.abandon_inflight(f"mqtt disconnected (rc={rc})")
        self._schedule(self._health.update("mqtt", False, f"disconnected (rc={rc})"))
        self._schedule(self._transition_state(AgentState.RECOVERING))

    def _on_mqtt_connect(self, rc: int) -> None:
        if self._stopping or not self._disconnected:
            return
        self._disconnected = False
        if self._processor is not None:
            try:
                self._processor.resubscribe()
            except MQTTConnectionError as exc:
                LOGGER.error("Resubscribe after reconnect failed: %s", exc)
                self._schedule(self._health.update("operations", False, str(exc)))
                return
        self._schedule(self._health.update("mqtt", True, None))
        self._schedule(self._transition_state(AgentState.ACTIVE))

    async def _stop_services(self) -> None:
        await self._transition_state(AgentState.STOPPING)
        self._stopping = True

        if self._telemetry is not None:
            await self._telemetry.stop()
            self._telemetry = None
            self._health.untrack("telemetryFailures")
            await self._health.update("telemetry", False, "shutdown")

        if self._processor is not None:
            await self._processor.stop()
            self._processor = None

        if self._controller is not None:
            await self._controller.shutdown("shutdown")
            self._controller = None
            self._health.untrack("pendingOperations")
            await self._health.update("operations", False, "shutdown")

        if self._health_server is not None:
            await self._health_server.stop()
            self._health_server = None

        if self._mqtt_client is not None:
            await self._mqtt_client.disconnect()
            await self._health.update("mqtt", False, "shutdown")

        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

        if self._shutdown_event is not None:
            self._shutdown_event.set()
