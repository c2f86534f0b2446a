import aiohttp
import pytest

from smartrest_agent.health import HealthReporter, HealthServer


@pytest.mark.asyncio
async def test_health_reporter_snapshot():
    reporter = HealthReporter()

    await reporter.update("mqtt", True)
    await reporter.update("telemetry", False, "stopped")

    snapshot = await reporter.snapshot()

    assert snapshot["status"] == "degraded"
    component_list = snapshot.get("components", [])
    assert isinstance(component_list, list)
    components = {item["name"]: item for item in component_list}
    assert components["mqtt"]["healthy"] is True
    assert components["telemetry"]["healthy"] is False
    assert components["telemetry"]["detail"] == "stopped"


@pytest.mark.asyncio
async def test_health_reporter_agent_state_affects_status():
    reporter = HealthReporter()

    await reporter.update("mqtt", True)
    await reporter.set_agent_state("recovering", healthy=False)

    snapshot = await reporter.snapshot()

    assert snapshot["status"] == "degraded"
    agent = snapshot.get("agentState")
    assert agent is not None
    assert agent["state"] == "recovering"
    assert agent["healthy"] is False


@pytest.mark.asyncio
async def test_health_server_serves_snapshot(unused_tcp_port):
    reporter = HealthReporter()
    await reporter.update("mqtt", True)

    host = "127.0.0.1"
    port = unused_tcp_port
    server = HealthServer(reporter, host, port)
    await server.start()

    try:
        async with aiohttp.ClientSession() as session:
            async with session.get(f"http://{host}:{port}/healthz") as response:
                payload = await response.json()
                assert response.status == 200
                assert payload["status"] == "ok"

            await reporter.update("operations", False, "shutdown")
            async with session.get(f"http://{host}:{port}/healthz") as response:
                assert response.status == 503
    finally:
        await server.stop()


@pytest.mark.asyncio
async def test_health_reporter_counters_are_read_on_snapshot():
    reporter = HealthReporter()
    pending = [2]

    assert "counters" not in await reporter.snapshot()

    reporter.track("pendingOperations", lambda: pending[0])
    first = await reporter.snapshot()
    pending[0] = 0
    second = await reporter.snapshot()

    assert first["counters"] == {"pendingOperations": 2}
    assert second["counters"] == {"pendingOperations": 0}

    reporter.untrack("pendingOperations")
    assert "counters" not in await reporter.snapshot()
