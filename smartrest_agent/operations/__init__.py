"""Operation dispatch, lifecycle and inbound processing."""

from .handlers import SimulatedDevice, build_simulated_handlers
from .lifecycle import (
    LifecycleState,
    OperationCancelledError,
    OperationContext,
    OperationController,
    OperationHandler,
    OperationResult,
)
from .processor import OperationProcessor
from .requests import (
    FirmwareUpdateRequest,
    LogfileRequest,
    OperationKind,
    OperationRequest,
    RemoteAccessConnectRequest,
    RestartRequest,
    ShellRequest,
    SoftwarePackage,
    SoftwareUpdateRequest,
    UnsupportedRequest,
    dispatch,
)

__all__ = [
    "FirmwareUpdateRequest",
    "LifecycleState",
    "LogfileRequest",
    "OperationCancelledError",
    "OperationContext",
    "OperationController",
    "OperationHandler",
    "OperationKind",
    "OperationProcessor",
    "OperationRequest",
    "OperationResult",
    "RemoteAccessConnectRequest",
    "RestartRequest",
    "ShellRequest",
    "SimulatedDevice",
    "SoftwarePackage",
    "SoftwareUpdateRequest",
    "UnsupportedRequest",
    "build_simulated_handlers",
    "dispatch",
]
