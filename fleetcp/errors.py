"""Exception hierarchy for fleetcp.

Fatal errors abort a run before any transfer starts; host-local errors are
raised inside a single host's transfer task and never affect its siblings.
"""

from __future__ import annotations


class FleetcpError(Exception):
    """Base class for every error raised by fleetcp."""


# ---------------------------------------------------------------------------
# Fatal (batch-aborting)
# ---------------------------------------------------------------------------


class AuthenticationError(FleetcpError):
    """Raised when no usable authentication method can be resolved."""


class ConnectError(FleetcpError):
    """Raised when dialling or negotiating a session with a host fails.

    Carries the normalized ``host:port`` string that failed so the caller can
    report which host aborted the batch.
    """

    def __init__(self, message: str, host: str = "") -> None:
        """Initialise with the failing host."""
        super().__init__(message)
        self.host = host


class LocalPathError(FleetcpError):
    """Raised when the local path does not suit the requested direction."""


class UnsupportedFeatureError(FleetcpError):
    """Raised for recursive (directory) transfers, which are not implemented."""


# ---------------------------------------------------------------------------
# Host-local
# ---------------------------------------------------------------------------


class HostTransferError(FleetcpError):
    """Base class for failures confined to one host's transfer."""


class RemoteIsDirectoryError(HostTransferError):
    """Raised when a fetch targets a remote directory."""


class TransferTooLargeError(HostTransferError):
    """Raised when the remote file exceeds the configured maximum size."""


class RemoteExistsError(HostTransferError):
    """Raised when a send target exists and overwriting is not allowed."""
