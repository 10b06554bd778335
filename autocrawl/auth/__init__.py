"""
Authentication
==============
Credentials and login-form handling for crawled applications.

    - ``Credentials``          — username/password container (env lookup)
    - ``CredentialStore``      — opaque blob → ``Credentials`` contract
    - ``PlainCredentialStore`` — JSON blob implementation
    - ``LoginHandler``         — visible-form login detection and submission
"""

from .credentials import (
    PASSWORD_PLACEHOLDER,
    USERNAME_PLACEHOLDER,
    CredentialStore,
    Credentials,
    PlainCredentialStore,
    resolve_credentials,
    resolve_placeholder,
)
from .login import LoginHandler, LoginOutcome

__all__ = [
    "Credentials",
    "CredentialStore",
    "PlainCredentialStore",
    "resolve_credentials",
    "resolve_placeholder",
    "USERNAME_PLACEHOLDER",
    "PASSWORD_PLACEHOLDER",
    "LoginHandler",
    "LoginOutcome",
]
