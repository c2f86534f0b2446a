import asyncio
from typing import Dict, List, Optional

import pytest

from smartrest_agent.smartrest.errors import TransportError
from smartrest_agent.smartrest.facts import (
    CustomJsonFragment,
    OperationStatus,
    OutboundFact,
)


class RecordingPublisher:
    """Fact publisher double that records facts and can fail on demand.

    ``fail_counts`` maps a template identifier (or a JSON topic) to the number
    of consecutive publish attempts that should raise ``TransportError``.
    """

    def __init__(self, fail_counts: Optional[Dict[str, int]] = None) -> None:
        self.facts: List[OutboundFact] = []
        self.attempts: List[OutboundFact] = []
        self.fail_counts: Dict[str, int] = dict(fail_counts or {})
        self.fail_all = False

    async def publish_fact(self, fact: OutboundFact) -> None:
        self.attempts.append(fact)
        await asyncio.sleep(0)
        key = _key(fact)
        if self.fail_all:
            raise TransportError("broker unavailable")
        remaining = self.fail_counts.get(key, 0)
        if remaining > 0:
            self.fail_counts[key] = remaining - 1
            raise TransportError("broker unavailable")
        self.facts.append(fact)

    def rows(self) -> List[tuple]:
        rows: List[tuple] = []
        for fact in self.facts:
            if isinstance(fact, CustomJsonFragment):
                continue
            rows.extend(fact.rows())
        return rows

    def status_rows(self, capability: Optional[str] = None) -> List[tuple]:
        rows: List[tuple] = []
        for fact in self.facts:
            if not isinstance(fact, OperationStatus):
                continue
            if capability is not None and fact.capability != capability:
                continue
            rows.extend(fact.rows())
        return rows


def _key(fact: OutboundFact) -> str:
    if isinstance(fact, CustomJsonFragment):
        return fact.topic
    return fact.rows()[0][0]


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


@pytest.fixture
def make_publisher():
    def factory(**kwargs) -> RecordingPublisher:
        return RecordingPublisher(**kwargs)

    return factory
