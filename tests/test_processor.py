"""Tests for inbound SmartREST processing."""

import logging

import pytest

from smartrest_agent.operations.lifecycle import OperationController, OperationResult
from smartrest_agent.operations.processor import OperationProcessor
from smartrest_agent.operations.requests import OperationKind


class FakeMQTT:
    def __init__(self) -> None:
        self.handler = None
        self.subscriptions = []
        self.unsubscriptions = []

    def set_message_handler(self, handler):
        self.handler = handler

    def subscribe(self, topic, qos=1):
        self.subscriptions.append((topic, qos))

    def unsubscribe(self, topic):
        self.unsubscriptions.append(topic)


async def _succeed(request, context):
    return OperationResult.success()


def _build(publisher):
    mqtt = FakeMQTT()
    handlers = {
        OperationKind.RESTART: _succeed,
        OperationKind.SHELL: _succeed,
        OperationKind.LOGFILE_REQUEST: _succeed,
    }
    controller = OperationController(publisher, handlers)
    return mqtt, OperationProcessor(mqtt, controller)


@pytest.mark.asyncio
async def test_start_subscribes_operation_and_error_topics(publisher):
    mqtt, processor = _build(publisher)

    await processor.start()

    assert mqtt.subscriptions == [("s/ds", 1), ("s/e", 1)]
    assert mqtt.handler == processor.handle_message

    with pytest.raises(RuntimeError):
        await processor.start()


@pytest.mark.asyncio
async def test_stop_unsubscribes_and_clears_handler(publisher):
    mqtt, processor = _build(publisher)
    await processor.start()

    await processor.stop()

    assert mqtt.unsubscriptions == ["s/ds", "s/e"]
    assert mqtt.handler is None


@pytest.mark.asyncio
async def test_resubscribe_restores_subscriptions(publisher):
    mqtt, processor = _build(publisher)
    await processor.start()

    processor.resubscribe()

    assert mqtt.subscriptions == [("s/ds", 1), ("s/e", 1)] * 2


@pytest.mark.asyncio
async def test_operations_are_submitted_to_controller(publisher):
    _, processor = _build(publisher)

    await processor.handle_message("s/ds", b"510,dev1\n511,dev1,uptime")
    assert await processor.controller.wait_idle(timeout=1.0)

    assert publisher.status_rows("c8y_Restart") == [
        ("501", "c8y_Restart"),
        ("503", "c8y_Restart"),
    ]
    assert publisher.status_rows("c8y_Command") == [
        ("501", "c8y_Command"),
        ("503", "c8y_Command"),
    ]


@pytest.mark.asyncio
async def test_malformed_row_is_dropped_and_later_rows_processed(publisher, caplog):
    _, processor = _build(publisher)

    with caplog.at_level(logging.WARNING):
        await processor.handle_message(
            "s/ds", b'510,dev1\n522,dev1\n400,"broken\n511,dev1,ls'
        )
        assert await processor.controller.wait_idle(timeout=1.0)

    assert "Dropping malformed operation row 2" in caplog.text
    assert "Dropping malformed row 3" in caplog.text
    assert {row[1] for row in publisher.status_rows()} == {
        "c8y_Restart",
        "c8y_Command",
    }
    assert "c8y_LogfileRequest" not in {row[1] for row in publisher.status_rows()}


@pytest.mark.asyncio
async def test_unsupported_operation_publishes_nothing(publisher, caplog):
    _, processor = _build(publisher)

    with caplog.at_level(logging.INFO):
        await processor.handle_message("s/ds", b"999,dev1,whatever")

    assert processor.pending_count == 0
    assert publisher.attempts == []
    assert "Operation not supported by the device: template=999" in caplog.text


@pytest.mark.asyncio
async def test_operation_without_handler_publishes_nothing(publisher):
    _, processor = _build(publisher)

    await processor.handle_message("s/ds", b"515,dev1,fwA,2.0,http://x")

    assert processor.pending_count == 0
    assert publisher.attempts == []


@pytest.mark.asyncio
async def test_platform_errors_are_logged(publisher, caplog):
    _, processor = _build(publisher)

    with caplog.at_level(logging.WARNING):
        await processor.handle_message("s/e", b"41,100,Device already exists")

    assert "Platform reported an error: 41,100,Device already exists" in caplog.text
    assert processor.pending_count == 0
    assert publisher.attempts == []
