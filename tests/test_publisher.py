"""Tests for the outbound fact publisher."""

import asyncio
import json

import pytest

from smartrest_agent.adapters import MQTTConnectionError
from smartrest_agent.publisher import FactPublisher
from smartrest_agent.smartrest.codec import decode_row
from smartrest_agent.smartrest.errors import MalformedRowError, TransportError
from smartrest_agent.smartrest.facts import (
    CustomJsonFragment,
    Event,
    InventoryUpdate,
    Measurement,
    OperationStatus,
    RowBatch,
)


class FakeMQTT:
    def __init__(self, *, fail: bool = False) -> None:
        self.published = []
        self.fail = fail

    async def publish_acknowledged(
        self, topic, payload, qos=1, retain=False, *, timeout=10.0
    ):
        await asyncio.sleep(0)
        if self.fail:
            raise MQTTConnectionError("MQTT client not connected")
        self.published.append((topic, payload, qos, retain))


@pytest.mark.asyncio
async def test_publish_row_at_least_once_without_retain():
    mqtt = FakeMQTT()
    publisher = FactPublisher(mqtt)

    await publisher.publish_fact(InventoryUpdate.firmware("fwA", "2.0", "http://x"))

    assert mqtt.published == [("s/us", b"115,fwA,2.0,http://x", 1, False)]


@pytest.mark.asyncio
async def test_row_batch_is_one_message():
    mqtt = FakeMQTT()
    publisher = FactPublisher(mqtt)

    await publisher.publish_fact(
        RowBatch((Measurement("temperature", "T", 15), Event("type", "a, b")))
    )

    assert mqtt.published == [
        ("s/us", b'200,temperature,T,15\n400,type,"a, b"', 1, False)
    ]


@pytest.mark.asyncio
async def test_json_fragment_uses_its_topic():
    mqtt = FakeMQTT()
    publisher = FactPublisher(mqtt)
    fragment = CustomJsonFragment.inventory_update("dev1", {"a": 1})

    await publisher.publish_fact(fragment)

    topic, payload, qos, retain = mqtt.published[0]
    assert topic == "inventory/managedObjects/update/dev1"
    assert json.loads(payload) == {"a": 1}
    assert (qos, retain) == (1, False)


@pytest.mark.asyncio
async def test_transport_error_propagates():
    publisher = FactPublisher(FakeMQTT(fail=True))

    with pytest.raises(TransportError):
        await publisher.publish_fact(OperationStatus.executing("c8y_Restart"))


@pytest.mark.asyncio
async def test_invalid_row_is_rejected_before_publishing():
    mqtt = FakeMQTT()
    publisher = FactPublisher(mqtt)

    with pytest.raises(MalformedRowError):
        await publisher.publish_fact(InventoryUpdate("115", ("only-name",)))

    assert mqtt.published == []


@pytest.mark.asyncio
async def test_concurrent_publishes_keep_rows_whole():
    mqtt = FakeMQTT()
    publisher = FactPublisher(mqtt)
    facts = [
        OperationStatus.failed(f"c8y_Op{index}", f"reason, with comma {index}")
        for index in range(20)
    ]

    await asyncio.gather(*(publisher.publish_fact(fact) for fact in facts))

    decoded = sorted(
        decode_row(payload.decode()) for _, payload, _, _ in mqtt.published
    )
    expected = sorted(list(fact.rows()[0]) for fact in facts)
    assert decoded == expected
