"""fleetcp — copy one file to or from many SSH hosts at once."""

from __future__ import annotations

from fleetcp.auth import AuthMethod, AuthProvider
from fleetcp.config import ConfigManager
from fleetcp.connection import ConnectionPool, Session
from fleetcp.errors import (
    AuthenticationError,
    ConnectError,
    FleetcpError,
    HostTransferError,
    LocalPathError,
    RemoteExistsError,
    RemoteIsDirectoryError,
    TransferTooLargeError,
    UnsupportedFeatureError,
)
from fleetcp.transfer import (
    ResultStore,
    StreamCopier,
    TransferDirection,
    TransferOrchestrator,
    TransferOutcome,
    TransferReport,
    TransferRequest,
    format_outcome,
)

__version__ = "1.0.0"

__all__ = [
    "AuthMethod",
    "AuthProvider",
    "AuthenticationError",
    "ConfigManager",
    "ConnectError",
    "ConnectionPool",
    "FleetcpError",
    "HostTransferError",
    "LocalPathError",
    "RemoteExistsError",
    "RemoteIsDirectoryError",
    "ResultStore",
    "Session",
    "StreamCopier",
    "TransferDirection",
    "TransferOrchestrator",
    "TransferOutcome",
    "TransferReport",
    "TransferRequest",
    "TransferTooLargeError",
    "UnsupportedFeatureError",
    "format_outcome",
]
