"""
Crawl Errors
============
Exception hierarchy for the crawl core.

    CrawlError
    ├── NavigationError          — a replay step failed (carries 1-based index)
    │   └── SeedUnreachableError — the depth-0 seed could not be reached
    ├── MissingCredentialsError  — {auth_*} placeholder with no credentials
    └── ElementNotFoundError     — no unique visible match, even after healing
"""

from __future__ import annotations

from typing import Optional


class CrawlError(Exception):
    """Base class for all crawl-core errors."""


class NavigationError(CrawlError):
    """A replay step failed; the remaining steps were not executed."""

    def __init__(self, step_index: int, action: str, reason: str,
                 url: Optional[str] = None):
        self.step_index = step_index
        self.action = action
        self.reason = reason
        self.url = url
        super().__init__(f"Step {step_index} ({action}) failed: {reason}")


class SeedUnreachableError(NavigationError):
    """Raised when the seed URL cannot be reached; the run fails."""

    @classmethod
    def wrap(cls, err: NavigationError) -> "SeedUnreachableError":
        return cls(err.step_index, err.action, err.reason, url=err.url)


class MissingCredentialsError(CrawlError):
    """A step referenced {auth_username}/{auth_password} but none are configured."""

    def __init__(self, placeholder: str):
        self.placeholder = placeholder
        super().__init__(f"No credentials configured for placeholder {placeholder}")


class ElementNotFoundError(CrawlError):
    """No uniquely visible element matched the selector or any alternative."""

    def __init__(self, selector: str, matches: int = 0):
        self.selector = selector
        self.matches = matches
        super().__init__(f"No unique visible element for {selector!r} ({matches} visible matches)")
