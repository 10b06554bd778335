"""
Credentials
===========
Credential container, environment lookup, and the credential-store contract.

Recorded replay steps never contain real secrets; they carry the reserved
placeholders ``{auth_username}`` and ``{auth_password}`` which are resolved
against a ``Credentials`` object when the step executes.

Security:
    - ``Credentials.__repr__`` masks the password.
    - Nothing in this package logs credential values.
"""

from __future__ import annotations

import json
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, Optional, Sequence

from ..errors import MissingCredentialsError

logger = logging.getLogger(__name__)

USERNAME_PLACEHOLDER = "{auth_username}"
PASSWORD_PLACEHOLDER = "{auth_password}"

DEFAULT_ENV_PREFIXES = ("AUTOCRAWL", "CRAWLER")


@dataclass
class Credentials:
    """Plain credential container — resolved once, used by the login flow."""
    username: str = ""
    password: str = ""
    extra: Dict[str, str] = field(default_factory=dict)

    @property
    def is_complete(self) -> bool:
        return bool(self.username and self.password)

    def __repr__(self) -> str:
        return f"Credentials(username={self.username!r}, password={'***' if self.password else ''!r})"

    @classmethod
    def from_env(cls, prefixes: Sequence[str] = DEFAULT_ENV_PREFIXES) -> Optional["Credentials"]:
        """Look up ``{PREFIX}_USERNAME`` / ``{PREFIX}_PASSWORD`` for each prefix.

        The first prefix providing both values wins. Returns None otherwise.
        """
        for prefix in prefixes:
            user = os.environ.get(f"{prefix}_USERNAME", "") or os.environ.get(f"{prefix}_EMAIL", "")
            pwd = os.environ.get(f"{prefix}_PASSWORD", "")
            if user and pwd:
                logger.info(f"[AUTH] Credentials resolved from {prefix}_* environment variables")
                return cls(username=user, password=pwd)
        return None


def resolve_credentials(
    username: Optional[str] = None,
    password: Optional[str] = None,
    prefixes: Sequence[str] = DEFAULT_ENV_PREFIXES,
) -> Optional[Credentials]:
    """Explicit values first, then environment variables."""
    if username and password:
        return Credentials(username=username, password=password)
    return Credentials.from_env(prefixes)


def resolve_placeholder(value: Optional[str], credentials: Optional[Credentials]) -> Optional[str]:
    """Replace ``{auth_username}`` / ``{auth_password}`` in a step value.

    Raises:
        MissingCredentialsError: the value references a placeholder but no
            (or incomplete) credentials are configured.
    """
    if not value:
        return value
    for placeholder, attr in ((USERNAME_PLACEHOLDER, "username"), (PASSWORD_PLACEHOLDER, "password")):
        if placeholder in value:
            secret = getattr(credentials, attr, "") if credentials else ""
            if not secret:
                raise MissingCredentialsError(placeholder)
            value = value.replace(placeholder, secret)
    return value


# ---------------------------------------------------------------------------
# Credential store contract
# ---------------------------------------------------------------------------

class CredentialStore(ABC):
    """Turns an opaque stored blob into usable credentials."""

    @abstractmethod
    def decrypt(self, blob: str) -> Credentials:
        ...


class PlainCredentialStore(CredentialStore):
    """Unencrypted JSON blob: ``{"username"|"email": ..., "password": ...}``."""

    def decrypt(self, blob: str) -> Credentials:
        data = json.loads(blob) if blob else {}
        if not isinstance(data, dict):
            raise ValueError("Credential blob must be a JSON object")
        return Credentials(
            username=str(data.get("username") or data.get("email") or ""),
            password=str(data.get("password") or ""),
            extra={k: str(v) for k, v in data.items() if k not in ("username", "email", "password")},
        )
