"""Tests for the MQTT adapter."""

import asyncio
import logging
from types import SimpleNamespace

import pytest
import pytest_asyncio

from smartrest_agent.adapters import MQTTClient, MQTTConnectionError
from smartrest_agent.config import CloudConfig

import paho.mqtt.client as mqtt


class FakeMqttClient:
    """Minimal fake paho-mqtt client (callback API version 2)."""

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        events: dict,
        *,
        rc_connect: int = 0,
        rc_disconnect: int = 0,
        publish_rc: int = mqtt.MQTT_ERR_SUCCESS,
        subscribe_rc: int = mqtt.MQTT_ERR_SUCCESS,
        ack_mode: str = "async",
    ):
        self._loop = loop
        self._events = events
        self._rc_connect = rc_connect
        self._rc_disconnect = rc_disconnect
        self._publish_rc = publish_rc
        self._subscribe_rc = subscribe_rc
        self._ack_mode = ack_mode
        self._mid = 0

        self.on_connect = None
        self.on_disconnect = None
        self.on_message = None
        self.on_publish = None

    # paho interface -------------------------------------------------
    def enable_logger(self, logger):
        self._events.setdefault("logger_enabled", True)

    def username_pw_set(self, username, password=None):
        self._events["auth"] = (username, password)

    def tls_set(self):
        self._events["tls"] = True

    def reconnect_delay_set(self, min_delay=1, max_delay=120):
        self._events["reconnect_delay"] = (min_delay, max_delay)

    def connect_async(self, host, port, keepalive):
        self._events["connect_args"] = (host, port, keepalive)
        if self.on_connect:
            self._loop.call_soon(
                self.on_connect, self, None, None, self._rc_connect, None
            )

    def loop_start(self):
        self._events["loop_start"] = self._events.get("loop_start", 0) + 1

    def loop_stop(self):
        self._events["loop_stop"] = self._events.get("loop_stop", 0) + 1

    def disconnect(self):
        self._events["disconnect_called"] = True
        if self.on_disconnect:
            self._loop.call_soon(
                self.on_disconnect, self, None, None, self._rc_disconnect, None
            )

    def publish(self, topic, payload, qos=0, retain=False):
        self._mid += 1
        mid = self._mid
        self._events.setdefault("published", []).append((topic, payload, qos, retain))
        if self._publish_rc == mqtt.MQTT_ERR_SUCCESS and self.on_publish:
            if self._ack_mode == "sync":
                self.on_publish(self, None, mid, 0, None)
            elif self._ack_mode == "async":
                self._loop.call_soon(self.on_publish, self, None, mid, 0, None)
        return SimpleNamespace(rc=self._publish_rc, mid=mid)

    def subscribe(self, topic, qos=0):
        self._events.setdefault("subscribed", []).append((topic, qos))
        return self._subscribe_rc, 1

    def unsubscribe(self, topic):
        self._events.setdefault("unsubscribed", []).append(topic)
        return mqtt.MQTT_ERR_SUCCESS, 2


def _install_fake(monkeypatch, events: dict, **options) -> None:
    loop = asyncio.get_running_loop()

    def factory(*args, **kwargs):
        events["client_args"] = (args, kwargs)
        return FakeMqttClient(loop, events, **options)

    monkeypatch.setattr("smartrest_agent.adapters.mqtt.mqtt.Client", factory)


def _cloud_config(**overrides) -> CloudConfig:
    values = dict(
        broker_host="mqtt.example.com",
        broker_port=1883,
        tls=False,
        username="tenant/device",
        password="secret",
    )
    values.update(overrides)
    return CloudConfig(**values)


@pytest_asyncio.fixture
async def mqtt_client(monkeypatch):
    events: dict = {}
    _install_fake(monkeypatch, events)

    client = MQTTClient(_cloud_config(), client_id="kobu-sn-7123")
    await client.connect()

    yield client, events

    await client.disconnect()


@pytest.mark.asyncio
async def test_connect_configures_client(mqtt_client):
    client, events = mqtt_client

    args, kwargs = events["client_args"]
    assert args == (mqtt.CallbackAPIVersion.VERSION2,)
    assert kwargs == {"client_id": "kobu-sn-7123"}
    assert events["connect_args"] == ("mqtt.example.com", 1883, 60)
    assert events["auth"] == ("tenant/device", "secret")
    assert events["reconnect_delay"] == (1, 30)
    assert events["loop_start"] == 1
    assert "tls" not in events
    assert client.is_connected()


@pytest.mark.asyncio
async def test_connect_enables_tls(monkeypatch):
    events: dict = {}
    _install_fake(monkeypatch, events)

    client = MQTTClient(_cloud_config(tls=True), client_id="dev")
    await client.connect()
    await client.disconnect()

    assert events["tls"] is True


@pytest.mark.asyncio
async def test_connect_rejected_raises(monkeypatch):
    events: dict = {}
    _install_fake(monkeypatch, events, rc_connect=5)

    client = MQTTClient(_cloud_config(), client_id="dev")

    with pytest.raises(MQTTConnectionError):
        await client.connect()
    assert events["loop_stop"] == 1


@pytest.mark.asyncio
async def test_publish_waits_for_acknowledgement(mqtt_client):
    client, events = mqtt_client

    await client.publish_acknowledged("s/us", b"501,c8y_Restart", timeout=1.0)

    assert events["published"] == [("s/us", b"501,c8y_Restart", 1, False)]


@pytest.mark.asyncio
async def test_publish_acknowledged_before_registration(monkeypatch):
    events: dict = {}
    _install_fake(monkeypatch, events, ack_mode="sync")
    client = MQTTClient(_cloud_config(), client_id="dev")
    await client.connect()

    await client.publish_acknowledged("s/us", b"400,type,text", timeout=1.0)
    await client.disconnect()

    assert events["published"] == [("s/us", b"400,type,text", 1, False)]


@pytest.mark.asyncio
async def test_publish_without_acknowledgement_times_out(monkeypatch):
    events: dict = {}
    _install_fake(monkeypatch, events, ack_mode="never")
    client = MQTTClient(_cloud_config(), client_id="dev")
    await client.connect()

    with pytest.raises(MQTTConnectionError):
        await client.publish_acknowledged("s/us", b"501,c8y_Restart", timeout=0.05)
    await client.disconnect()


@pytest.mark.asyncio
async def test_publish_failure_raises(monkeypatch):
    events: dict = {}
    _install_fake(monkeypatch, events, publish_rc=mqtt.MQTT_ERR_NO_CONN)
    client = MQTTClient(_cloud_config(), client_id="dev")
    await client.connect()

    with pytest.raises(MQTTConnectionError):
        await client.publish_acknowledged("s/us", b"501,c8y_Restart")
    await client.disconnect()


@pytest.mark.asyncio
async def test_publish_when_not_connected_raises():
    client = MQTTClient(_cloud_config(), client_id="dev")

    with pytest.raises(MQTTConnectionError):
        await client.publish_acknowledged("s/us", b"501,c8y_Restart")


@pytest.mark.asyncio
async def test_connection_loss_fails_pending_publish(monkeypatch):
    events: dict = {}
    _install_fake(monkeypatch, events, ack_mode="never")
    client = MQTTClient(_cloud_config(), client_id="dev")
    await client.connect()

    publish = asyncio.create_task(
        client.publish_acknowledged("s/us", b"501,c8y_Restart", timeout=5.0)
    )
    await asyncio.sleep(0)
    client._on_disconnect(client._client, None, None, 7, None)  # type: ignore[arg-type]

    with pytest.raises(MQTTConnectionError, match="rc=7"):
        await asyncio.wait_for(publish, timeout=1.0)
    assert not client.is_connected()
    await client.disconnect()


@pytest.mark.asyncio
async def test_disconnect_and_connect_handlers_receive_reason(monkeypatch):
    events: dict = {}
    _install_fake(monkeypatch, events)
    client = MQTTClient(_cloud_config(), client_id="dev")
    seen = []
    client.register_disconnect_handler(lambda rc: seen.append(("down", rc)))
    client.register_connect_handler(lambda rc: seen.append(("up", rc)))

    await client.connect()
    await asyncio.sleep(0)
    client._on_disconnect(client._client, None, None, 7, None)  # type: ignore[arg-type]
    await asyncio.sleep(0)

    assert seen == [("up", 0), ("down", 7)]
    await client.disconnect()


@pytest.mark.asyncio
async def test_subscribe_records_topics(mqtt_client):
    client, events = mqtt_client

    client.subscribe("s/ds", qos=1)
    client.unsubscribe("s/ds")

    assert events["subscribed"] == [("s/ds", 1)]
    assert events["unsubscribed"] == ["s/ds"]


@pytest.mark.asyncio
async def test_subscribe_failure_raises(monkeypatch):
    events: dict = {}
    _install_fake(monkeypatch, events, subscribe_rc=mqtt.MQTT_ERR_NO_CONN)
    client = MQTTClient(_cloud_config(), client_id="dev")
    await client.connect()

    with pytest.raises(MQTTConnectionError):
        client.subscribe("s/ds")
    await client.disconnect()


@pytest.mark.asyncio
async def test_message_handler_dispatches_async(monkeypatch):
    events: dict = {}
    _install_fake(monkeypatch, events)
    client = MQTTClient(_cloud_config(), client_id="dev")

    message_event = asyncio.Event()

    async def handler(topic: str, payload: bytes) -> None:
        events["handled"] = (topic, payload)
        message_event.set()

    client.set_message_handler(handler)
    await client.connect()

    message = SimpleNamespace(topic="s/ds", payload=b"510,dev")
    client._on_message(client._client, None, message)  # type: ignore[arg-type]

    await asyncio.wait_for(message_event.wait(), timeout=1.0)
    await client.disconnect()

    assert events["handled"] == ("s/ds", b"510,dev")


@pytest.mark.asyncio
async def test_failing_message_handler_is_logged(monkeypatch, caplog):
    events: dict = {}
    _install_fake(monkeypatch, events)
    client = MQTTClient(_cloud_config(), client_id="dev")

    async def handler(topic: str, payload: bytes) -> None:
        raise RuntimeError("cannot process row")

    client.set_message_handler(handler)
    await client.connect()

    message = SimpleNamespace(topic="s/ds", payload=b"510,dev")
    with caplog.at_level(logging.ERROR, logger="smartrest_agent.adapters.mqtt"):
        client._on_message(client._client, None, message)  # type: ignore[arg-type]

        async def _wait_for_log():
            while "MQTT message handler failed" not in caplog.text:
                await asyncio.sleep(0.005)

        await asyncio.wait_for(_wait_for_log(), timeout=1.0)
    await client.disconnect()

    assert "cannot process row" in caplog.text
