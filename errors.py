#!/usr/bin/env python3
"""
Error taxonomy for the IMAP mailbox migration system.

Every failure carries an ErrorKind so callers can branch on the kind of
problem instead of parsing messages.
"""

from enum import Enum
from typing import Any, Dict, Optional

from imapclient import exceptions as imap_exceptions


class ErrorKind(Enum):
    """Kinds of failure a migration job can report."""

    # Job level
    AUTH = "auth"
    CONNECTION = "connection"

    # Mailbox level
    LOCK = "lock"
    CREATE = "create"
    OPEN = "open"
    SEARCH = "search"
    FETCH = "fetch"
    APPEND = "append"
    CANCELLED = "cancelled"
    UNEXPECTED = "unexpected"


class MigrationError(Exception):
    """Base class for all migration failures."""

    def __init__(self, kind: ErrorKind, detail: str):
        super().__init__(f"{kind.value}: {detail}")
        self.kind = kind
        self.detail = detail

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind.value, "detail": self.detail}


class FatalError(MigrationError):
    """Session establishment failed; the whole job is aborted."""

    def __init__(self, kind: ErrorKind, detail: str, endpoint: str = ""):
        super().__init__(kind, detail)
        self.endpoint = endpoint

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        if self.endpoint:
            data["endpoint"] = self.endpoint
        return data


class MailboxError(MigrationError):
    """A failure scoped to one mailbox. Never aborts sibling mailboxes."""

    def __init__(self, kind: ErrorKind, detail: str, path: str = "", copied: int = 0):
        super().__init__(kind, detail)
        self.path = path
        self.copied = copied

    def with_progress(self, path: str, copied: int) -> "MailboxError":
        """Attach the mailbox path and the number of messages already copied."""
        self.path = path
        self.copied = copied
        return self


class TransientIOError(MailboxError):
    """Network hiccup during fetch or append. Not retried within a run."""


# Socket, TLS and timeout errors are all OSError subclasses
TRANSIENT_EXCEPTIONS = (OSError, imap_exceptions.IMAPClientAbortError)


def is_transient(error: BaseException) -> bool:
    """True if an exception looks like a dropped or stalled connection."""
    return isinstance(error, TRANSIENT_EXCEPTIONS)


def mailbox_error_from(kind: ErrorKind, error: BaseException, path: str = "") -> MailboxError:
    """Translate a low-level exception into a MailboxError of the given kind."""
    if isinstance(error, MailboxError):
        return error
    detail = describe(error)
    if is_transient(error):
        return TransientIOError(kind, detail, path=path)
    return MailboxError(kind, detail, path=path)


def describe(error: Optional[BaseException]) -> str:
    """Short human readable text for an exception, decoding IMAP byte payloads."""
    if error is None:
        return ""
    args = getattr(error, "args", ())
    if len(args) == 1 and isinstance(args[0], bytes):
        text = args[0].decode("utf-8", errors="replace")
    else:
        text = str(error)
    return f"{type(error).__name__}: {text}" if text else type(error).__name__
