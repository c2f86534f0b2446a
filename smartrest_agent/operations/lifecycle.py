"""Operation lifecycle controller.

Each dispatched operation runs through its own state machine::

    RECEIVED -> EXECUTING -> SUCCESSFUL | FAILED

EXECUTING is reported to the platform before the action handler runs and
exactly one terminal status follows it. Operations are independent: the
controller spawns one task per operation so a slow handler never blocks the
reception of later operations.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import (
    Awaitable,
    Callable,
    Dict,
    FrozenSet,
    List,
    Mapping,
    Optional,
    Protocol,
    Tuple,
)

from ..smartrest.errors import MalformedRowError, TransportError
from ..smartrest.facts import InventoryUpdate, OperationStatus, OutboundFact
from .requests import FirmwareUpdateRequest, OperationKind, OperationRequest

LOGGER = logging.getLogger(__name__)


class LifecycleState(str, Enum):
    RECEIVED = "received"
    EXECUTING = "executing"
    SUCCESSFUL = "successful"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (LifecycleState.SUCCESSFUL, LifecycleState.FAILED)


_TRANSITIONS: Dict[LifecycleState, FrozenSet[LifecycleState]] = {
    LifecycleState.RECEIVED: frozenset({LifecycleState.EXECUTING}),
    LifecycleState.EXECUTING: frozenset(
        {LifecycleState.SUCCESSFUL, LifecycleState.FAILED}
    ),
    LifecycleState.SUCCESSFUL: frozenset(),
    LifecycleState.FAILED: frozenset(),
}


class OperationCancelledError(RuntimeError):
    """Raised inside a handler when its operation has been abandoned."""


@dataclass(slots=True)
class OperationResult:
    """Terminal result reported by an action handler.

    ``facts`` are published after a successful handler and before the
    SUCCESSFUL status, e.g. the software list after a software update.
    """

    successful: bool
    reason: str = ""
    facts: Tuple[OutboundFact, ...] = ()

    @classmethod
    def success(cls, *facts: OutboundFact) -> "OperationResult":
        return cls(successful=True, facts=tuple(facts))

    @classmethod
    def failed(cls, reason: str) -> "OperationResult":
        return cls(successful=False, reason=reason)


class OperationContext:
    """Cancellation-aware context handed to action handlers."""

    def __init__(self, request: OperationRequest) -> None:
        self.request = request
        self._cancelled = asyncio.Event()
        self._reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def cancel_reason(self) -> Optional[str]:
        return self._reason

    def cancel(self, reason: str) -> None:
        if self._cancelled.is_set():
            return
        self._reason = reason
        self._cancelled.set()

    async def wait_cancelled(self) -> None:
        await self._cancelled.wait()

    async def sleep(self, seconds: float) -> None:
        """Sleep for ``seconds`` unless the operation is abandoned first.

        Raises:
            OperationCancelledError: if the operation is abandoned.
        """

        if self.cancelled:
            raise OperationCancelledError(self._reason or "operation abandoned")
        try:
            await asyncio.wait_for(self._cancelled.wait(), timeout=max(0.0, seconds))
        except asyncio.TimeoutError:
            return
        raise OperationCancelledError(self._reason or "operation abandoned")


OperationHandler = Callable[
    [OperationRequest, OperationContext], Awaitable[Optional[OperationResult]]
]


class StatusPublisher(Protocol):
    async def publish_fact(self, fact: OutboundFact) -> None: ...


@dataclass(slots=True)
class OperationLifecycle:
    """State of a single operation; never shared between operations."""

    request: OperationRequest
    state: LifecycleState = LifecycleState.RECEIVED
    history: List[LifecycleState] = field(
        default_factory=lambda: [LifecycleState.RECEIVED]
    )

    def transition(self, state: LifecycleState) -> None:
        if state not in _TRANSITIONS[self.state]:
            raise RuntimeError(
                f"Invalid operation transition {self.state.value} -> {state.value}"
            )
        self.state = state
        self.history.append(state)


class OperationController:
    """Runs operation handlers and reports their status transitions."""

    def __init__(
        self,
        publisher: StatusPublisher,
        handlers: Mapping[OperationKind, OperationHandler],
        *,
        terminal_retries: int = 1,
    ) -> None:
        self._publisher = publisher
        self._handlers: Dict[OperationKind, OperationHandler] = dict(handlers)
        self._terminal_retries = max(0, terminal_retries)
        self._inflight: Dict[
            asyncio.Task[Optional[LifecycleState]], OperationContext
        ] = {}

    @property
    def pending_count(self) -> int:
        return len(self._inflight)

    def can_handle(self, request: OperationRequest) -> bool:
        return (
            request.kind is not OperationKind.UNSUPPORTED
            and request.kind in self._handlers
        )

    def submit(
        self, request: OperationRequest
    ) -> Optional[asyncio.Task[Optional[LifecycleState]]]:
        """Run ``request`` in its own task; returns ``None`` when unsupported."""

        if not self.can_handle(request):
            self._log_unsupported(request)
            return None

        context = OperationContext(request)
        task = asyncio.create_task(
            self.run(request, context=context),
            name=f"operation-{request.kind.value}",
        )
        self._inflight[task] = context
        task.add_done_callback(self._on_task_done)
        return task

    async def run(
        self,
        request: OperationRequest,
        *,
        context: Optional[OperationContext] = None,
    ) -> Optional[LifecycleState]:
        """Drive one operation to its terminal state.

        Returns the terminal state, or ``None`` when the operation is
        unsupported or its lifecycle had to be abandoned.
        """

        if not self.can_handle(request):
            self._log_unsupported(request)
            return None

        handler = self._handlers[request.kind]
        capability = request.capability
        assert capability is not None
        context = context or OperationContext(request)
        lifecycle = OperationLifecycle(request)

        if context.cancelled:
            LOGGER.warning(
                "Operation %s abandoned before execution: %s",
                capability,
                context.cancel_reason,
            )
            return None

        lifecycle.transition(LifecycleState.EXECUTING)
        try:
            await self._publisher.publish_fact(OperationStatus.executing(capability))
        except (TransportError, MalformedRowError) as exc:
            LOGGER.error(
                "Could not report %s as executing; abandoning operation: %s",
                capability,
                exc,
            )
            return None

        result = await self._invoke(handler, request, context)

        if context.cancelled:
            LOGGER.warning(
                "Operation %s abandoned after execution (%s); status not reported",
                capability,
                context.cancel_reason,
            )
            return None

        if result.successful:
            reason = await self._publish_result_facts(request, result, context)
            if context.cancelled:
                LOGGER.warning(
                    "Operation %s abandoned while reporting results (%s)",
                    capability,
                    context.cancel_reason,
                )
                return None
            if reason is not None:
                result = OperationResult.failed(reason)

        if result.successful:
            lifecycle.transition(LifecycleState.SUCCESSFUL)
            status = OperationStatus.successful(capability)
        else:
            LOGGER.warning("Operation %s failed: %s", capability, result.reason)
            lifecycle.transition(LifecycleState.FAILED)
            status = OperationStatus.failed(capability, result.reason)

        await self._publish_with_retries(
            status, context, f"{status.outcome.value} status for {capability}"
        )
        return lifecycle.state

    def abandon_inflight(self, reason: str) -> int:
        """Signal every in-flight operation to stop publishing."""

        contexts = list(self._inflight.values())
        for context in contexts:
            context.cancel(reason)
        if contexts:
            LOGGER.warning(
                "Abandoned %d in-flight operation(s): %s", len(contexts), reason
            )
        return len(contexts)

    async def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Wait for in-flight operations; returns ``False`` on timeout."""

        tasks = list(self._inflight)
        if not tasks:
            return True
        _, pending = await asyncio.wait(tasks, timeout=timeout)
        return not pending

    async def shutdown(self, reason: str = "shutdown") -> None:
        self.abandon_inflight(reason)
        tasks = list(self._inflight)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _invoke(
        self,
        handler: OperationHandler,
        request: OperationRequest,
        context: OperationContext,
    ) -> OperationResult:
        try:
            result = await handler(request, context)
        except OperationCancelledError as exc:
            return OperationResult.failed(str(exc) or "operation abandoned")
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            LOGGER.warning(
                "Handler for %s raised an exception", request.capability, exc_info=True
            )
            return OperationResult.failed(str(exc) or type(exc).__name__)

        if result is None:
            return OperationResult.success()
        return result

    async def _publish_result_facts(
        self,
        request: OperationRequest,
        result: OperationResult,
        context: OperationContext,
    ) -> Optional[str]:
        """Publish the facts preceding SUCCESSFUL.

        Returns a failure reason when one of them could not be reported.
        """

        facts: List[Tuple[str, OutboundFact]] = [
            (type(fact).__name__, fact) for fact in result.facts
        ]
        if isinstance(request, FirmwareUpdateRequest):
            installed = InventoryUpdate.firmware(
                request.name, request.version, request.url
            )
            facts.insert(0, ("installed firmware", installed))

        for label, fact in facts:
            published = await self._publish_with_retries(
                fact, context, f"{label} for {request.capability}"
            )
            if not published:
                return f"Could not report {label}"
        return None

    async def _publish_with_retries(
        self, fact: OutboundFact, context: OperationContext, label: str
    ) -> bool:
        attempts = 1 + self._terminal_retries
        for attempt in range(1, attempts + 1):
            if context.cancelled:
                LOGGER.warning("Dropping %s: %s", label, context.cancel_reason)
                return False
            try:
                await self._publisher.publish_fact(fact)
            except MalformedRowError:
                LOGGER.exception("Dropping %s: row cannot be encoded", label)
                return False
            except TransportError as exc:
                if attempt < attempts:
                    LOGGER.warning(
                        "Retrying %s after transport error: %s", label, exc
                    )
                    continue
                LOGGER.error(
                    "Dropping %s after %d attempt(s): %s", label, attempts, exc
                )
                return False
            return True
        return False

    def _on_task_done(self, task: asyncio.Task[Optional[LifecycleState]]) -> None:
        self._inflight.pop(task, None)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            LOGGER.error("Operation task failed", exc_info=exc)

    @staticmethod
    def _log_unsupported(request: OperationRequest) -> None:
        LOGGER.info(
            "Operation not supported by the device: template=%s serial=%s",
            request.template_id,
            request.device_serial,
        )
