"""SSH/SFTP session management for fleetcp.

The :class:`ConnectionPool` opens one SSH client plus one SFTP client per
target host, sequentially and fail-fast: the first host that cannot be
dialled or authenticated aborts the whole pool, and every session opened so
far is released before the error propagates.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable

import paramiko

from fleetcp.auth import AUTH_AGENT, AUTH_KEY, AUTH_PASSWORD, AuthMethod, AuthProvider
from fleetcp.errors import ConnectError
from fleetcp.utils.path_helpers import format_address, normalize_host, split_host_port

logger = logging.getLogger(__name__)

DEFAULT_PORT = 22
CONNECT_TIMEOUT = 30.0  # seconds; the only timeout applied to a run


# ---------------------------------------------------------------------------
# Host-key policy
# ---------------------------------------------------------------------------


class _AcceptAnyHostKeyPolicy(paramiko.MissingHostKeyPolicy):
    """Accepts every host key without recording it anywhere."""

    def missing_host_key(
        self,
        client: paramiko.SSHClient,
        hostname: str,
        key: paramiko.PKey,
    ) -> None:
        """Log the unverified key and let the handshake continue."""
        logger.debug("Accepting unverified %s host key for %s", key.get_name(), hostname)


# ---------------------------------------------------------------------------
# Helper
# ---------------------------------------------------------------------------


def _close_client_safely(client: paramiko.SSHClient) -> None:
    """Close *client* without raising."""
    try:
        client.close()
    except Exception as exc:
        logger.debug("Ignoring error while closing SSH client: %s", exc)


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


@dataclass
class Session:
    """An SSH client and its SFTP client, bound to one host.

    ``host`` is the normalized input string (``host:port``); ``address`` is
    the peer address as seen on the wire (``ip:port``).
    """

    host: str
    address: str
    client: paramiko.SSHClient
    sftp: paramiko.SFTPClient
    _closed: bool = field(default=False, repr=False)

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Close the SFTP and SSH channels; later calls are no-ops."""
        if self._closed:
            return
        self._closed = True
        try:
            self.sftp.close()
        except Exception as exc:
            logger.debug("Ignoring error while closing SFTP for %s: %s", self.host, exc)
        _close_client_safely(self.client)
        logger.debug("Closed session to %s", self.host)


# ---------------------------------------------------------------------------
# ConnectionPool
# ---------------------------------------------------------------------------


class ConnectionPool:
    """Owns one :class:`Session` per target host for the duration of a run.

    Use as a context manager so every session is closed exactly once, even
    when transfers fail::

        with ConnectionPool(auth) as pool:
            for session in pool.connect(["web1", "web2:2222"]):
                ...
    """

    def __init__(
        self,
        auth: AuthProvider,
        default_port: int = DEFAULT_PORT,
        timeout: float = CONNECT_TIMEOUT,
        insecure_host_key_accept: bool = True,
    ) -> None:
        """Initialise pool parameters (does NOT connect yet).

        Args:
            auth: Supplies the username and the ordered auth methods.
            default_port: Port appended to hosts given without one.
            timeout: TCP connect / banner / auth timeout in seconds.
            insecure_host_key_accept: Accept any host key without
                verification.  When False, system ``known_hosts`` are
                loaded and unknown hosts are rejected.
        """
        self._auth = auth
        self.default_port = default_port
        self.timeout = timeout
        self.insecure_host_key_accept = insecure_host_key_accept
        self._sessions: dict[str, Session] = {}

        if insecure_host_key_accept:
            logger.warning(
                "SSH host key verification DISABLED (insecure_host_key_accept) — "
                "any host key will be accepted"
            )

    # ------------------------------------------------------------------
    # Context manager
    # ------------------------------------------------------------------

    def __enter__(self) -> "ConnectionPool":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def __len__(self) -> int:
        return len(self._sessions)

    @property
    def sessions(self) -> list[Session]:
        """Live sessions, one per distinct normalized host."""
        return list(self._sessions.values())

    # ------------------------------------------------------------------
    # Connect / close
    # ------------------------------------------------------------------

    def connect(self, hosts: Iterable[str]) -> list[Session]:
        """Open a session to every host in *hosts*, one after another.

        Raises:
            AuthenticationError: No usable authentication method.
            ConnectError: Any host failed to connect; no session stays open.
        """
        if self._sessions:
            raise RuntimeError("ConnectionPool is already connected")

        methods = self._auth.methods()
        try:
            for raw in hosts:
                try:
                    host = normalize_host(raw, self.default_port)
                except ValueError as exc:
                    raise ConnectError(f"Invalid host {raw!r}: {exc}", host=raw) from exc
                if host in self._sessions:
                    logger.debug("Skipping duplicate host %s", host)
                    continue
                self._sessions[host] = self._dial(host, methods)
        except Exception:
            self.close()
            raise

        logger.info("Connected to %d host(s)", len(self._sessions))
        return self.sessions

    def close(self) -> None:
        """Close every session; safe to call more than once."""
        sessions = list(self._sessions.values())
        self._sessions.clear()
        for session in sessions:
            session.close()
        if sessions:
            logger.info("Closed %d session(s)", len(sessions))

    # ------------------------------------------------------------------
    # Dialling
    # ------------------------------------------------------------------

    def _connect_kwargs(self, hostname: str, port: int, methods: list[AuthMethod]) -> dict:
        """Translate *methods* into ``SSHClient.connect`` keyword arguments."""
        kwargs: dict = {
            "hostname": hostname,
            "port": port,
            "username": self._auth.username,
            "timeout": self.timeout,
            "banner_timeout": self.timeout,
            "auth_timeout": self.timeout,
            "allow_agent": False,
            "look_for_keys": False,
        }
        key_files = [m.value for m in methods if m.kind == AUTH_KEY]
        if key_files:
            kwargs["key_filename"] = key_files
        for method in methods:
            if method.kind == AUTH_PASSWORD and "password" not in kwargs:
                kwargs["password"] = method.value
            elif method.kind == AUTH_AGENT:
                kwargs["allow_agent"] = True
        return kwargs

    def _dial(self, host: str, methods: list[AuthMethod]) -> Session:
        """Connect to *host* (``host:port``) and open its SFTP channel."""
        logger.info("Connecting to %s@%s", self._auth.username, host)

        client = paramiko.SSHClient()
        if self.insecure_host_key_accept:
            client.set_missing_host_key_policy(_AcceptAnyHostKeyPolicy())
        else:
            client.load_system_host_keys()
            client.set_missing_host_key_policy(paramiko.RejectPolicy())

        try:
            hostname, port = split_host_port(host)
            client.connect(**self._connect_kwargs(hostname, port, methods))
            transport = client.get_transport()
            if transport is None:
                raise paramiko.SSHException("SSH transport unavailable")
            peer = transport.getpeername()
            sftp = client.open_sftp()
        except (paramiko.SSHException, OSError, ValueError) as exc:
            _close_client_safely(client)
            raise ConnectError(f"Failed to connect to {host}: {exc}", host=host) from exc

        address = format_address(peer[0], peer[1])
        logger.info("Connected to %s (%s)", host, address)
        return Session(host=host, address=address, client=client, sftp=sftp)
