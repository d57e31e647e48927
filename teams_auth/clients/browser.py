"""
Contract for the browser automation collaborator.

The package never drives a browser itself. A host application registers an
implementation (for example one built on Playwright) that can open the
persistent Teams profile, let MSAL complete a silent or interactive sign-in,
and save the resulting session through the same ``SessionStore`` paths.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Protocol, runtime_checkable

LogSink = Callable[[str], None]


@dataclass
class BrowserHandle:
    """An open browser: the page and context handed back to the collaborator."""

    page: Any
    context: Any


@runtime_checkable
class BrowserAutomation(Protocol):
    async def open(self, headless: bool) -> BrowserHandle:
        ...

    async def ensure_authenticated(
        self,
        page: Any,
        context: Any,
        log: LogSink,
        show_overlay: bool,
        fail_fast: bool,
    ) -> None:
        """Complete sign-in and persist the session, or raise.

        With ``fail_fast`` the implementation must raise instead of waiting
        for user interaction.
        """
        ...

    async def close(self, handle: BrowserHandle, save_session: bool) -> None:
        ...


__all__ = ["BrowserAutomation", "BrowserHandle", "LogSink"]
