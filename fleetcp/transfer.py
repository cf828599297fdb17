"""Fan-out file transfer engine for fleetcp.

Copies one file between the local machine and every pooled host:
- fetch pulls a remote file from each host into a local directory, tagging
  each copy with the peer address so same-named files never collide
- send pushes one local file to the same remote path on each host

One worker thread runs per host and the orchestrator waits for all of them
before returning.  A failure on one host is reported and never affects the
others; only the set-up steps (path validation, connecting) are fatal.
"""

from __future__ import annotations

import logging
import os
import stat as _stat
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import BinaryIO, Callable, Iterator

from fleetcp.config import DEFAULT_MAX_TRANSFER_SIZE
from fleetcp.connection import ConnectionPool, Session
from fleetcp.errors import (
    LocalPathError,
    RemoteExistsError,
    RemoteIsDirectoryError,
    TransferTooLargeError,
    UnsupportedFeatureError,
)
from fleetcp.utils.path_helpers import (
    fetch_target_name,
    human_readable_size,
    send_target_path,
)

logger = logging.getLogger(__name__)

COPY_BUFFER_SIZE = 1024  # bytes per read/write call
LOCAL_DIR_MODE = 0o755

ErrorSink = Callable[[str, BaseException], None]

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class TransferDirection(Enum):
    """Direction of a transfer run."""

    FETCH = "GET"  # remote → local
    SEND = "PUT"   # local → remote


class TransferState(Enum):
    """Lifecycle state of a transfer run."""

    PENDING = auto()
    VALIDATED = auto()
    CONNECTED = auto()
    TRANSFERRING = auto()
    COMPLETED = auto()
    FAILED = auto()


# ---------------------------------------------------------------------------
# Data types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TransferRequest:
    """Immutable description of one run."""

    direction: TransferDirection
    local_path: str
    remote_path: str
    hosts: tuple[str, ...]
    overwrite: bool = False
    recursive: bool = False

    def __post_init__(self) -> None:
        # Accept any iterable of hosts but store a tuple.
        object.__setattr__(self, "hosts", tuple(self.hosts))


@dataclass(frozen=True)
class TransferOutcome:
    """Result of one successful per-host transfer."""

    source: str
    destination: str
    size: int
    elapsed: float  # seconds


def format_outcome(address: str, outcome: TransferOutcome) -> str:
    """Render *outcome* as one human-readable result line."""
    return "%21s: %s => %s %dByte %.2f seconds" % (
        address,
        outcome.source,
        outcome.destination,
        outcome.size,
        outcome.elapsed,
    )


# ---------------------------------------------------------------------------
# StreamCopier
# ---------------------------------------------------------------------------


class StreamCopier:
    """Copies a readable stream into a writable one through a fixed buffer."""

    def __init__(self, buffer_size: int = COPY_BUFFER_SIZE) -> None:
        if buffer_size <= 0:
            raise ValueError(f"buffer_size must be > 0, got {buffer_size}")
        self.buffer_size = buffer_size

    def copy(self, src: BinaryIO, dst: BinaryIO) -> tuple[int, float]:
        """Stream *src* into *dst*; return ``(bytes_copied, elapsed_seconds)``.

        A read error ends the copy exactly like end-of-stream does, so the
        destination may be truncated without the caller noticing.  The error
        is logged but not raised.  Write errors propagate.
        """
        size = 0
        start = time.monotonic()
        while True:
            try:
                chunk = src.read(self.buffer_size)
            except OSError as exc:
                logger.warning("Read failed after %d bytes, stopping copy: %s", size, exc)
                break
            if not chunk:
                break
            dst.write(chunk)
            size += len(chunk)
        return size, time.monotonic() - start


# ---------------------------------------------------------------------------
# ResultStore
# ---------------------------------------------------------------------------


class ResultStore:
    """Thread-safe mapping from peer address to :class:`TransferOutcome`.

    Written concurrently by transfer tasks; the lock is only held across the
    dict mutation, never across I/O.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._results: dict[str, TransferOutcome] = {}

    def record(self, address: str, outcome: TransferOutcome) -> None:
        """Insert or replace the outcome for *address*."""
        with self._lock:
            self._results[address] = outcome

    def get(self, address: str) -> TransferOutcome | None:
        with self._lock:
            return self._results.get(address)

    def snapshot(self) -> dict[str, TransferOutcome]:
        """Return a shallow copy of every recorded outcome."""
        with self._lock:
            return dict(self._results)

    def __len__(self) -> int:
        with self._lock:
            return len(self._results)

    def __contains__(self, address: object) -> bool:
        with self._lock:
            return address in self._results

    def __iter__(self) -> Iterator[str]:
        return iter(self.snapshot())


@dataclass
class TransferReport:
    """What a run produced: per-host outcomes and per-host failures."""

    results: dict[str, TransferOutcome] = field(default_factory=dict)
    failures: dict[str, BaseException] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failures


# ---------------------------------------------------------------------------
# TransferOrchestrator
# ---------------------------------------------------------------------------


def _log_error(address: str, exc: BaseException) -> None:
    logger.error("%s: %s", address, exc)


class TransferOrchestrator:
    """Runs one :class:`TransferRequest` against every host of a pool.

    Usage::

        pool = ConnectionPool(AuthProvider("deploy"))
        report = TransferOrchestrator(pool).run(
            TransferRequest(TransferDirection.SEND, "app.conf", "/etc/app/", hosts)
        )
    """

    def __init__(
        self,
        pool: ConnectionPool,
        max_transfer_size: int = DEFAULT_MAX_TRANSFER_SIZE,
        copier: StreamCopier | None = None,
        on_error: ErrorSink | None = None,
    ) -> None:
        """Initialise the orchestrator.

        Args:
            pool: An unconnected pool; :meth:`run` connects and closes it.
            max_transfer_size: Largest remote file (bytes) a fetch accepts.
            copier: Stream copier shared by all tasks.
            on_error: Called with ``(address, exception)`` for every host
                whose transfer fails.  Defaults to logging the error.
        """
        self._pool = pool
        self.max_transfer_size = max_transfer_size
        self._copier = copier or StreamCopier()
        self._on_error = on_error or _log_error
        self._state = TransferState.PENDING
        self._results = ResultStore()

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> TransferState:
        return self._state

    @property
    def results(self) -> ResultStore:
        return self._results

    def _set_state(self, new_state: TransferState) -> None:
        self._state = new_state
        logger.debug("Transfer state → %s", new_state.name)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def run(self, request: TransferRequest) -> TransferReport:
        """Validate, connect, fan out and wait for every host.

        Raises:
            UnsupportedFeatureError: Recursive transfer was requested.
            LocalPathError: The local path does not suit the direction.
            AuthenticationError: No usable authentication method.
            ConnectError: Any host failed to connect.
        """
        self._results = ResultStore()
        try:
            local_path = self._validate(request)
            self._set_state(TransferState.VALIDATED)

            with self._pool as pool:
                sessions = pool.connect(request.hosts)
                self._set_state(TransferState.CONNECTED)

                if request.direction is TransferDirection.FETCH:
                    def task(session: Session) -> None:
                        self._fetch(session, request.remote_path, local_path)
                else:
                    def task(session: Session) -> None:
                        self._send(session, local_path, request.remote_path, request.overwrite)

                self._set_state(TransferState.TRANSFERRING)
                failures = self._fan_out(sessions, task)
        except Exception:
            self._set_state(TransferState.FAILED)
            raise

        self._set_state(TransferState.COMPLETED)
        report = TransferReport(results=self._results.snapshot(), failures=failures)
        logger.info(
            "%s finished: %d succeeded, %d failed",
            request.direction.name.lower(),
            len(report.results),
            len(report.failures),
        )
        return report

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _validate(self, request: TransferRequest) -> str:
        """Check local preconditions before any host is contacted."""
        if request.recursive:
            raise UnsupportedFeatureError("Recursive transfer is not supported")

        local_path = os.fspath(request.local_path)
        if request.direction is TransferDirection.FETCH:
            if os.path.exists(local_path):
                if not os.path.isdir(local_path):
                    raise LocalPathError(f"Local path cannot be a file: {local_path}")
            else:
                try:
                    os.makedirs(local_path, LOCAL_DIR_MODE)
                except OSError as exc:
                    raise LocalPathError(f"Cannot create {local_path}: {exc}") from exc
                logger.info("Created local directory %s", local_path)
            return local_path

        if not os.path.exists(local_path):
            raise LocalPathError(f"Local file not found: {local_path}")
        if os.path.isdir(local_path):
            raise UnsupportedFeatureError(
                f"Local path {local_path} is a directory; recursive transfer is not supported"
            )
        if not os.path.isfile(local_path):
            raise LocalPathError(f"Local path is not a regular file: {local_path}")
        return local_path

    # ------------------------------------------------------------------
    # Fan-out
    # ------------------------------------------------------------------

    def _fan_out(
        self,
        sessions: list[Session],
        task: Callable[[Session], None],
    ) -> dict[str, BaseException]:
        """Run *task* once per session concurrently and wait for all of them."""
        failures: dict[str, BaseException] = {}
        if not sessions:
            return failures

        with ThreadPoolExecutor(
            max_workers=len(sessions), thread_name_prefix="transfer"
        ) as executor:
            futures = {executor.submit(task, session): session for session in sessions}
            for future in as_completed(futures):
                exc = future.exception()
                if exc is None:
                    continue
                address = futures[future].address
                failures[address] = exc
                try:
                    self._on_error(address, exc)
                except Exception:
                    logger.exception("Exception in on_error callback")
        return failures

    # ------------------------------------------------------------------
    # Fetch
    # ------------------------------------------------------------------

    def _fetch(self, session: Session, remote_path: str, local_dir: str) -> None:
        """Pull *remote_path* from one host into *local_dir*."""
        sftp = session.sftp
        attr = sftp.stat(remote_path)
        if isinstance(attr.st_mode, int) and _stat.S_ISDIR(attr.st_mode):
            raise RemoteIsDirectoryError(f"Remote dir get is not supported: {remote_path}")
        size = attr.st_size or 0
        if size > self.max_transfer_size:
            raise TransferTooLargeError(
                f"{remote_path} is {human_readable_size(size)}; "
                f"max transfer size is set to {self.max_transfer_size}"
            )

        local_path = os.path.join(local_dir, fetch_target_name(remote_path, session.address))
        with sftp.open(remote_path, "rb") as remote_fh:
            with open(local_path, "wb") as local_fh:
                copied, elapsed = self._copier.copy(remote_fh, local_fh)

        self._results.record(
            session.address,
            TransferOutcome(source=remote_path, destination=local_path, size=copied, elapsed=elapsed),
        )
        logger.info("Fetched %s:%s → %s (%d bytes)", session.address, remote_path, local_path, copied)

    # ------------------------------------------------------------------
    # Send
    # ------------------------------------------------------------------

    def _send(self, session: Session, local_path: str, remote_path: str, overwrite: bool) -> None:
        """Push *local_path* to *remote_path* on one host."""
        sftp = session.sftp
        target = send_target_path(remote_path, local_path)

        try:
            sftp.stat(target)
        except OSError:
            pass  # Destination does not exist yet
        else:
            if not overwrite:
                raise RemoteExistsError(f"Remote file exists: {target}")

        with open(local_path, "rb") as local_fh:
            with sftp.open(target, "wb") as remote_fh:
                copied, elapsed = self._copier.copy(local_fh, remote_fh)

        self._results.record(
            session.address,
            TransferOutcome(source=local_path, destination=target, size=copied, elapsed=elapsed),
        )
        logger.info("Sent %s → %s:%s (%d bytes)", local_path, session.address, target, copied)
