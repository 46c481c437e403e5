#!/usr/bin/env python3
"""
Utility functions for the IMAP mailbox migration system.
"""

from typing import Iterator, List, Optional, Sequence, TypeVar

T = TypeVar("T")


def batch_windows(items: Sequence[T], batch_size: int) -> Iterator[List[T]]:
    """Split items into contiguous windows of at most batch_size, keeping order."""
    if batch_size < 1:
        raise ValueError(f"batch_size must be >= 1, got {batch_size}")
    for i in range(0, len(items), batch_size):
        yield list(items[i:i + batch_size])


def window_count(total: int, batch_size: int) -> int:
    """Number of windows needed for total items."""
    return (total + batch_size - 1) // batch_size


def translate_path(path: str, source_delimiter: Optional[str], destination_delimiter: Optional[str],
                   source_prefix: str = "", destination_prefix: str = "") -> str:
    """Rewrite a mailbox path for a server with another delimiter or personal namespace.

    The source namespace prefix (for example ``INBOX.`` on Courier or Cyrus) is
    stripped, delimiters are swapped, and the destination prefix is added.
    INBOX itself is never prefixed.
    """
    if path.upper() == "INBOX":
        return path
    if source_prefix and path.startswith(source_prefix) and len(path) > len(source_prefix):
        path = path[len(source_prefix):]
    if source_delimiter and destination_delimiter and source_delimiter != destination_delimiter:
        path = destination_delimiter.join(path.split(source_delimiter))
    if destination_prefix and not path.startswith(destination_prefix):
        path = destination_prefix + path
    return path


def mask_secret(secret: str) -> str:
    """Never log a password."""
    return "*" * 8 if secret else ""


def folder_key(path: str) -> str:
    """Comparison key for mailbox names. INBOX is case-insensitive, other names are not."""
    return "INBOX" if path.upper() == "INBOX" else path
