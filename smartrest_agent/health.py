"""Health reporting for the running agent.

Besides per-component status the snapshot carries live counters, such as the
number of operations still in flight, read from their sources on demand.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from aiohttp import web

LOGGER = logging.getLogger(__name__)

CounterSource = Callable[[], int]


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class ComponentStatus:
    name: str
    healthy: bool
    detail: Optional[str] = None
    updated_at: datetime = field(default_factory=_now)

    def as_dict(self) -> Dict[str, object]:
        return {
            "name": self.name,
            "healthy": self.healthy,
            "detail": self.detail,
            "updatedAt": self.updated_at.isoformat(timespec="seconds"),
        }


class HealthReporter:
    """Tracks the status of the transport, operations and telemetry."""

    def __init__(self) -> None:
        self._components: Dict[str, ComponentStatus] = {}
        self._agent_state: Optional[ComponentStatus] = None
        self._counters: Dict[str, CounterSource] = {}
        self._lock = asyncio.Lock()

    def track(self, name: str, source: CounterSource) -> None:
        """Report ``source()`` under ``counters.<name>`` in every snapshot."""

        self._counters[name] = source

    def untrack(self, name: str) -> None:
        self._counters.pop(name, None)

    async def update(
        self, name: str, healthy: bool, detail: Optional[str] = None
    ) -> None:
        async with self._lock:
            self._components[name] = ComponentStatus(name, healthy, detail)

    async def set_agent_state(self, state: str, *, healthy: bool) -> None:
        async with self._lock:
            self._agent_state = ComponentStatus("agent", healthy, state)

    async def snapshot(self) -> Dict[str, object]:
        async with self._lock:
            components: List[Dict[str, object]] = [
                status.as_dict() for status in self._components.values()
            ]
            agent_state = self._agent_state
            counters = dict(self._counters)

        healthy = all(item["healthy"] for item in components)
        if agent_state is not None and not agent_state.healthy:
            healthy = False

        payload: Dict[str, object] = {
            "status": "ok" if healthy else "degraded",
            "components": components,
        }
        if agent_state is not None:
            payload["agentState"] = {
                "state": agent_state.detail,
                "healthy": agent_state.healthy,
                "updatedAt": agent_state.updated_at.isoformat(timespec="seconds"),
            }
        if counters:
            payload["counters"] = {
                name: source() for name, source in sorted(counters.items())
            }
        return payload


class HealthServer:
    """Minimal HTTP server exposing `/healthz`."""

    def __init__(self, reporter: HealthReporter, host: str, port: int) -> None:
        self._reporter = reporter
        self._host = host
        self._port = port
        self._runner: Optional[web.AppRunner] = None
        self._site: Optional[web.TCPSite] = None

    async def start(self) -> None:
        app = web.Application()
        app.router.add_get("/healthz", self._handle_health)

        self._runner = web.AppRunner(app)
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, self._host, self._port)
        await self._site.start()
        LOGGER.info(
            "Health endpoint listening on http://%s:%s/healthz", self._host, self._port
        )

    async def stop(self) -> None:
        with contextlib.suppress(RuntimeError):
            if self._site is not None:
                await self._site.stop()
        if self._runner is not None:
            await self._runner.cleanup()
        self._site = None
        self._runner = None

    async def _handle_health(self, request: web.Request) -> web.Response:
        snapshot = await self._reporter.snapshot()
        status = 200 if snapshot["status"] == "ok" else 503
        return web.json_response(snapshot, status=status)
