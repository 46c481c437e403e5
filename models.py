#!/usr/bin/env python3
"""
Data model for the IMAP mailbox migration system.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from errors import MailboxError

DEFAULT_PORT = 993
DEFAULT_BATCH_SIZE = 25
DEFAULT_MAX_CONCURRENCY = 4
DEFAULT_PACING_DELAY = 2.0
DEFAULT_LOCK_TIMEOUT = 30.0

IP_ADDRESS_RE = re.compile(r"^\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3}$")
DOMAIN_RE = re.compile(r"^[a-zA-Z0-9_-]+(\.[a-zA-Z0-9_-]+)*\.[a-zA-Z]{2,}$")


def is_valid_host(host: str) -> bool:
    """Accept an IPv4 address, a domain name or localhost."""
    if not host:
        return False
    return host == "localhost" or bool(IP_ADDRESS_RE.match(host) or DOMAIN_RE.match(host))


@dataclass(frozen=True)
class ConnectionProfile:
    """Connection parameters for one mail store. Lives only as long as the job."""

    host: str
    username: str
    secret: str = field(repr=False)
    port: int = DEFAULT_PORT
    use_tls: bool = True

    def __post_init__(self):
        if not is_valid_host(self.host):
            raise ValueError(f"Invalid host '{self.host}': expected an IP address or domain name")
        if not isinstance(self.port, int) or isinstance(self.port, bool) or not 1 <= self.port <= 65535:
            raise ValueError(f"Invalid port {self.port!r}: expected 1-65535")
        if not self.username:
            raise ValueError("Username is required")

    @property
    def label(self) -> str:
        return f"{self.username}@{self.host}:{self.port}"


@dataclass(frozen=True)
class MailboxDescriptor:
    """One source mailbox and where it lands on the destination."""

    path: str
    destination_path: str
    exists_on_destination: bool
    selectable: bool = True
    error: Optional[MailboxError] = None

    @property
    def replicable(self) -> bool:
        return self.error is None and self.selectable


@dataclass(frozen=True)
class MessageHandle:
    """Raw content and flags of one source message."""

    message_id: int
    raw: bytes = field(repr=False)
    flags: Tuple[str, ...] = ()
    internal_date: Optional[datetime] = None


class MailboxState(Enum):
    """Per-mailbox task states. Transitions only move forward."""

    PENDING = "pending"
    LOCKED = "locked"
    COPYING = "copying"
    COMPLETED = "completed"
    FAILED = "failed"
    ABORTED = "aborted"


ALLOWED_TRANSITIONS = {
    MailboxState.PENDING: {MailboxState.LOCKED, MailboxState.ABORTED},
    MailboxState.LOCKED: {MailboxState.COPYING, MailboxState.FAILED},
    MailboxState.COPYING: {MailboxState.COMPLETED, MailboxState.FAILED},
    MailboxState.COMPLETED: set(),
    MailboxState.FAILED: set(),
    MailboxState.ABORTED: set(),
}


class MigrationStatus(Enum):
    COMPLETE = "complete"
    PARTIAL = "partial"
    FAILED = "failed"
    FATAL = "fatal"


@dataclass(frozen=True)
class MailboxOutcome:
    """Terminal record of what happened to one mailbox."""

    path: str
    messages_copied: int = 0
    error: Optional[MailboxError] = None
    state: MailboxState = MailboxState.COMPLETED
    batches: int = 0

    @property
    def succeeded(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"path": self.path, "copied": self.messages_copied}
        if self.error is not None:
            data["error"] = self.error.to_dict()
        return data


@dataclass(frozen=True)
class MigrationResult:
    """The job's only externally visible result."""

    outcomes: Tuple[MailboxOutcome, ...]
    status: MigrationStatus
    cancelled: bool = False

    @classmethod
    def from_outcomes(cls, outcomes: List[MailboxOutcome], cancelled: bool = False) -> "MigrationResult":
        return cls(outcomes=tuple(outcomes), status=overall_status(outcomes), cancelled=cancelled)

    @property
    def total_copied(self) -> int:
        return sum(outcome.messages_copied for outcome in self.outcomes)

    @property
    def failed_mailboxes(self) -> List[MailboxOutcome]:
        return [outcome for outcome in self.outcomes if not outcome.succeeded]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "cancelled": self.cancelled,
            "perMailbox": [outcome.to_dict() for outcome in self.outcomes],
        }


def overall_status(outcomes: List[MailboxOutcome]) -> MigrationStatus:
    """complete if nothing failed, partial if mixed, failed if every mailbox failed."""
    failures = sum(1 for outcome in outcomes if not outcome.succeeded)
    if failures == 0:
        return MigrationStatus.COMPLETE
    if failures == len(outcomes):
        return MigrationStatus.FAILED
    return MigrationStatus.PARTIAL
