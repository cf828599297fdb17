"""Configuration and host-group management for fleetcp.

All settings are stored as JSON files under ``~/.fleetcp/``.
Passwords are never written to disk — they are delegated to ``keyring``.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

DEFAULT_MAX_TRANSFER_SIZE = 1099511627776  # 1 TiB

DEFAULT_CONFIG: dict[str, Any] = {
    "username": "root",
    "auth_type": "key",
    "key_path": None,
    "allow_agent": True,
    "default_port": 22,
    "connect_timeout": 30,
    "transfer_max_size": DEFAULT_MAX_TRANSFER_SIZE,
    "copy_buffer_size": 1024,
    "insecure_host_key_accept": True,
}

# ---------------------------------------------------------------------------
# ConfigManager
# ---------------------------------------------------------------------------


class ConfigManager:
    """Manages run defaults and named host groups.

    Writes files atomically (write-to-temp, then rename) to prevent
    corruption on unexpected exit.  A corrupt file triggers a warning and
    a safe reset — it never aborts a transfer run.
    """

    def __init__(self, base_dir: Path | None = None) -> None:
        """Initialise, creating ``~/.fleetcp/`` if necessary."""
        self._base = base_dir or Path.home() / ".fleetcp"
        self._config_path = self._base / "config.json"
        self._groups_path = self._base / "groups.json"

        self._base.mkdir(parents=True, exist_ok=True)
        self._config: dict[str, Any] = self._load_config()
        self._groups: dict[str, list[str]] = self._load_groups()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _atomic_write(self, path: Path, data: Any) -> None:
        """Serialise *data* as JSON and write atomically to *path*."""
        tmp = path.with_suffix(".tmp")
        try:
            tmp.write_text(json.dumps(data, indent=2), encoding="utf-8")
            tmp.replace(path)
        except OSError as exc:
            logger.error("Failed to write %s: %s", path, exc)
            raise

    def _load_config(self) -> dict[str, Any]:
        """Load ``config.json``, resetting to defaults on corruption."""
        if not self._config_path.exists():
            logger.debug("No config file — creating defaults")
            config = dict(DEFAULT_CONFIG)
            self._atomic_write(self._config_path, config)
            return config

        try:
            raw = self._config_path.read_text(encoding="utf-8")
            loaded = json.loads(raw)
            if not isinstance(loaded, dict):
                raise ValueError("Config root must be a JSON object")
            # Merge with defaults so new keys are always present
            merged = dict(DEFAULT_CONFIG)
            merged.update(loaded)
            return merged
        except (json.JSONDecodeError, ValueError, OSError) as exc:
            logger.warning(
                "Corrupt config.json (%s) — resetting to defaults", exc
            )
            config = dict(DEFAULT_CONFIG)
            self._atomic_write(self._config_path, config)
            return config

    def _load_groups(self) -> dict[str, list[str]]:
        """Load ``groups.json``, returning an empty mapping on corruption."""
        if not self._groups_path.exists():
            return {}
        try:
            raw = self._groups_path.read_text(encoding="utf-8")
            loaded = json.loads(raw)
            if not isinstance(loaded, dict):
                raise ValueError("Groups root must be a JSON object")
            for name, hosts in loaded.items():
                if not isinstance(hosts, list) or not all(isinstance(h, str) for h in hosts):
                    raise ValueError(f"Group {name!r} must be a list of host strings")
            return loaded
        except (json.JSONDecodeError, ValueError, OSError) as exc:
            logger.warning(
                "Corrupt groups.json (%s) — resetting to empty mapping", exc
            )
            self._atomic_write(self._groups_path, {})
            return {}

    # ------------------------------------------------------------------
    # Config access
    # ------------------------------------------------------------------

    def get(self, key: str, default: Any = None) -> Any:
        """Return the value for *key*, or *default* if missing."""
        return self._config.get(key, default)

    # ------------------------------------------------------------------
    # Host groups
    # ------------------------------------------------------------------

    def get_groups(self) -> dict[str, list[str]]:
        """Return a copy of all saved host groups."""
        return {name: list(hosts) for name, hosts in self._groups.items()}

    def get_group(self, name: str) -> list[str] | None:
        """Return the host list for group *name*, or ``None`` if not found."""
        hosts = self._groups.get(name)
        return list(hosts) if hosts is not None else None

    def save_group(self, name: str, hosts: list[str]) -> None:
        """Upsert the host group *name*.

        Raises:
            ValueError: If *name* is empty or *hosts* contains no host.
        """
        if not name:
            raise ValueError("Group must have a non-empty name")
        hosts = [h.strip() for h in hosts if h.strip()]
        if not hosts:
            raise ValueError(f"Group {name!r} must contain at least one host")

        self._groups[name] = hosts
        self._atomic_write(self._groups_path, self._groups)
        logger.info("Host group saved: %s (%d host(s))", name, len(hosts))

    def delete_group(self, name: str) -> bool:
        """Delete the host group identified by *name*.

        Returns ``True`` if a group was deleted, ``False`` if not found.
        """
        if name not in self._groups:
            logger.warning("delete_group: group not found: %s", name)
            return False
        del self._groups[name]
        self._atomic_write(self._groups_path, self._groups)
        logger.info("Host group deleted: %s", name)
        return True
