"""Authentication material resolution for fleetcp.

Turns the configured credentials into an ordered list of authentication
methods that the connection pool hands to paramiko.  Passwords are read
from (and stored in) the OS keyring; they never touch the config files.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

import keyring
import keyring.errors

from fleetcp.errors import AuthenticationError

logger = logging.getLogger(__name__)

_KEYRING_SERVICE = "fleetcp"

# Probed in this order when no explicit key file is configured.
_DEFAULT_KEY_NAMES = ("id_ed25519", "id_ecdsa", "id_rsa")

AUTH_PASSWORD = "password"
AUTH_KEY = "key"
AUTH_AGENT = "agent"

PasswordPrompt = Callable[[str], str]


@dataclass(frozen=True)
class AuthMethod:
    """One usable authentication method.

    ``value`` holds the password for ``password`` methods and the private
    key path for ``key`` methods; it is ``None`` for the agent.
    """

    kind: str
    value: str | None = None

    def __repr__(self) -> str:
        # Keep passwords out of logs and tracebacks.
        shown = "***" if self.kind == AUTH_PASSWORD else self.value
        return f"AuthMethod(kind={self.kind!r}, value={shown!r})"


class AuthProvider:
    """Resolves authentication methods for one run."""

    def __init__(
        self,
        username: str,
        auth_type: str = AUTH_KEY,
        key_path: str | None = None,
        password: str | None = None,
        allow_agent: bool = True,
        password_prompt: PasswordPrompt | None = None,
    ) -> None:
        """Initialise credential sources (nothing is resolved yet).

        Args:
            username: Remote login name.
            auth_type: ``"password"`` or ``"key"``.
            key_path: Explicit private key file (``"key"`` mode).
            password: Explicit password; falls back to the keyring when None.
            allow_agent: Offer the SSH agent after any key files.
            password_prompt: Asked for the password when neither an explicit
                one nor a keyring entry exists.  Receives the prompt text.
        """
        if auth_type not in (AUTH_PASSWORD, AUTH_KEY):
            raise ValueError(f"Unknown auth_type: {auth_type!r}")
        self.username = username
        self.auth_type = auth_type
        self.key_path = key_path
        self._password = password
        self.allow_agent = allow_agent
        self._password_prompt = password_prompt

    @classmethod
    def from_config(cls, config: Any, **overrides: Any) -> "AuthProvider":
        """Build a provider from a ``ConfigManager``; *overrides* win when not None."""
        values = {
            "username": config.get("username"),
            "auth_type": config.get("auth_type", AUTH_KEY),
            "key_path": config.get("key_path"),
            "allow_agent": config.get("allow_agent", True),
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    def methods(self) -> list[AuthMethod]:
        """Return the ordered authentication methods for this run.

        Raises:
            AuthenticationError: If no usable method can be resolved.
        """
        if self.auth_type == AUTH_PASSWORD:
            password = self._password
            if password is None:
                password = keyring.get_password(_KEYRING_SERVICE, self.username)
            if not password and self._password_prompt is not None:
                password = self._password_prompt(f"Password for {self.username}: ")
            if not password:
                raise AuthenticationError(
                    f"No password for {self.username!r}: pass one explicitly "
                    f"or store it in the keyring first"
                )
            logger.debug("Using password authentication for %s", self.username)
            return [AuthMethod(AUTH_PASSWORD, password)]

        methods: list[AuthMethod] = []
        if self.key_path:
            key = Path(self.key_path).expanduser()
            if not key.is_file():
                raise AuthenticationError(f"Private key not found: {key}")
            methods.append(AuthMethod(AUTH_KEY, str(key)))
        else:
            ssh_dir = Path.home() / ".ssh"
            for name in _DEFAULT_KEY_NAMES:
                candidate = ssh_dir / name
                if candidate.is_file():
                    methods.append(AuthMethod(AUTH_KEY, str(candidate)))

        if self.allow_agent:
            methods.append(AuthMethod(AUTH_AGENT))

        if not methods:
            raise AuthenticationError(
                f"No private key found for {self.username!r} and the SSH agent is disabled"
            )
        logger.debug("Resolved %d auth method(s): %r", len(methods), methods)
        return methods


# ---------------------------------------------------------------------------
# Credential helpers
# ---------------------------------------------------------------------------


def store_password(username: str, password: str) -> None:
    """Store *password* in the OS keyring for *username*."""
    keyring.set_password(_KEYRING_SERVICE, username, password)
    logger.debug("Password stored in keyring for %s", username)


def delete_password(username: str) -> None:
    """Remove the stored password for *username* from the OS keyring."""
    try:
        keyring.delete_password(_KEYRING_SERVICE, username)
    except keyring.errors.PasswordDeleteError:
        pass
    logger.debug("Password deleted from keyring for %s", username)
