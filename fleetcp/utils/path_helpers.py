"""Host-string and path helpers shared by the connection pool and transfers."""

from __future__ import annotations

import logging
import os
import posixpath

logger = logging.getLogger(__name__)


def posix_join(*parts: str) -> str:
    """Join path parts using POSIX (forward-slash) rules.

    Suitable for constructing remote paths regardless of the local OS.
    """
    return posixpath.join(*parts)


def human_readable_size(size_bytes: int | float) -> str:
    """Convert a byte count to a human-readable string (e.g. "4.2 MB").

    Uses 1024-based units (KiB/MiB/GiB) but labels them KB/MB/GB for
    familiarity with everyday usage.
    """
    if size_bytes < 0:
        return "0 B"
    for unit in ("B", "KB", "MB", "GB", "TB"):
        if size_bytes < 1024.0:
            if unit == "B":
                return f"{int(size_bytes)} B"
            return f"{size_bytes:.1f} {unit}"
        size_bytes /= 1024.0
    return f"{size_bytes:.1f} PB"


# ---------------------------------------------------------------------------
# Hosts
# ---------------------------------------------------------------------------


def has_port(host: str) -> bool:
    """Return True if *host* already carries an explicit port.

    Bracketed IPv6 literals (``[::1]:22``) are recognised; a bare IPv6
    literal without brackets is treated as having no port.
    """
    if host.startswith("["):
        return "]:" in host
    return host.count(":") == 1


def normalize_host(host: str, default_port: int) -> str:
    """Return *host* as ``host:port``, appending *default_port* when absent."""
    host = host.strip()
    if not host:
        raise ValueError("Host must not be empty")
    if has_port(host):
        return host
    if ":" in host and not host.startswith("["):
        # Bare IPv6 literal
        return f"[{host}]:{default_port}"
    return f"{host}:{default_port}"


def split_host_port(address: str) -> tuple[str, int]:
    """Split a ``host:port`` (or ``[v6]:port``) string into its parts."""
    host, sep, port = address.rpartition(":")
    if not sep or not port.isdigit():
        raise ValueError(f"Address has no port: {address!r}")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    return host, int(port)


def format_address(ip: str, port: int) -> str:
    """Format a peer address the way it appears on the wire (``ip:port``)."""
    if ":" in ip:
        return f"[{ip}]:{port}"
    return f"{ip}:{port}"


# ---------------------------------------------------------------------------
# Fetch naming
# ---------------------------------------------------------------------------


def split_basename(name: str) -> tuple[str, str]:
    """Split *name* into (stem, extension) on the final ``.``.

    With no ``.`` the whole name is the stem and the extension is empty.
    """
    stem, sep, ext = name.rpartition(".")
    if not sep:
        return name, ""
    return stem, ext


def peer_suffix(address: str) -> str:
    """Return a filesystem-safe tag for the peer IP in *address*.

    ``10.0.0.5:22`` becomes ``10-0-0-5``; IPv6 colons are replaced as well.
    """
    ip, _ = split_host_port(address)
    return ip.replace(".", "-").replace(":", "-")


def fetch_target_name(remote_path: str, address: str) -> str:
    """Return the local file name for a file fetched from *address*.

    The result is always ``<stem>-<peer>.<ext>``; a remote name without an
    extension still ends in ``.``.
    """
    stem, ext = split_basename(posixpath.basename(remote_path))
    return f"{stem}-{peer_suffix(address)}.{ext}"


def send_target_path(remote_path: str, local_path: str | os.PathLike[str]) -> str:
    """Return the remote path a send writes to.

    A *remote_path* ending in ``/`` names a directory, so the local basename
    is appended.
    """
    if remote_path.endswith("/"):
        return posix_join(remote_path, os.path.basename(os.fspath(local_path)))
    return remote_path
