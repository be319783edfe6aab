"""Mailbox protocol and search query."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from email.message import Message
    from types import TracebackType


@dataclass(frozen=True)
class MailQuery:
    """Messages received after ``after`` (epoch seconds) matching any keyword."""

    after: int
    keywords: tuple[str, ...] = ()

    def to_gmail(self) -> str:
        """Render as a Gmail search string: ``after:<epoch> ("a" OR "b")``."""
        terms = [f'"{k.strip()}"' for k in self.keywords if k.strip()]
        if not terms:
            return f"after:{self.after}"
        return f"after:{self.after} ({' OR '.join(terms)})"

    def __str__(self) -> str:
        return self.to_gmail()


@runtime_checkable
class Mailbox(Protocol):
    """Read-only mailbox session.

    Used as a context manager: entering opens the session, leaving closes it.
    """

    def __enter__(self) -> Mailbox: ...

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None: ...

    def search(self, query: MailQuery, limit: int) -> list[str]: ...

    def fetch(self, external_id: str) -> Message: ...
