#!/usr/bin/env python3
"""
Copies every message of one mailbox from the source to the destination in
fixed-size windows.
"""

import time
import logging
import threading
from contextlib import ExitStack
from typing import Callable, Optional

from errors import ErrorKind, MailboxError, describe
from imap_client import IMAPEndpoint
from models import DEFAULT_BATCH_SIZE, DEFAULT_PACING_DELAY, MailboxState
from utils import batch_windows, window_count

StateCallback = Callable[[MailboxState], None]
BatchCallback = Callable[[int, int, int], None]


class BatchReplicator:
    """Snapshot copy of one mailbox pair. Never retries, never deletes."""

    def __init__(self, batch_size: int = DEFAULT_BATCH_SIZE, pacing_delay: float = DEFAULT_PACING_DELAY,
                 stop_event: Optional[threading.Event] = None, progress=None):
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        if pacing_delay < 0:
            raise ValueError(f"pacing_delay must be >= 0, got {pacing_delay}")
        self.batch_size = batch_size
        self.pacing_delay = pacing_delay
        self.stop_event = stop_event or threading.Event()
        self.progress = progress

    def replicate(self, source: IMAPEndpoint, destination: IMAPEndpoint, path: str,
                  destination_path: Optional[str] = None, batch_size: Optional[int] = None,
                  on_state: Optional[StateCallback] = None, on_batch: Optional[BatchCallback] = None) -> int:
        """Copy all messages of path and return how many were copied.

        Raises MailboxError carrying the number of messages copied before the
        failure. Both mailbox locks are released on every exit path.
        """
        batch_size = batch_size or self.batch_size
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        destination_path = destination_path or path
        notify = on_state or (lambda state: None)
        copied = 0

        with ExitStack() as locks:
            try:
                locks.enter_context(source.lock_mailbox(path))
                locks.enter_context(destination.lock_mailbox(destination_path))
            except MailboxError as e:
                logging.error(f"🔒 Could not lock '{path}': {e.detail}")
                raise e.with_progress(path, 0)
            notify(MailboxState.LOCKED)

            try:
                message_ids = source.search_all(path)
                notify(MailboxState.COPYING)
                total_batches = window_count(len(message_ids), batch_size)
                logging.info(f"📬 '{path}': {len(message_ids)} messages in {total_batches} batches of {batch_size}")

                for index, window in enumerate(batch_windows(message_ids, batch_size), 1):
                    self._check_cancelled(path, copied)
                    logging.debug(f"📥 '{path}': batch {index}/{total_batches} ({len(window)} messages)")
                    for handle in source.fetch(path, window):
                        if copied:
                            self._pace(path, copied)
                        destination.append(destination_path, handle.raw, handle.flags, handle.internal_date)
                        copied += 1
                        if self.progress is not None:
                            self.progress.message_copied(path)
                    if on_batch is not None:
                        on_batch(index, total_batches, len(window))
                    logging.info(f"📤 '{path}': batch {index}/{total_batches} done ({copied} copied)")
            except MailboxError as e:
                raise e.with_progress(path, copied)
            except Exception as e:
                raise MailboxError(ErrorKind.UNEXPECTED, describe(e), path=path, copied=copied) from e

        return copied

    def _check_cancelled(self, path: str, copied: int) -> None:
        if self.stop_event.is_set():
            logging.info(f"🛑 '{path}': cancellation requested, stopping after {copied} messages")
            raise MailboxError(ErrorKind.CANCELLED, "job cancelled", path=path, copied=copied)

    def _pace(self, path: str, copied: int) -> None:
        """Wait between appends; cancellation cuts the wait short."""
        if self.pacing_delay <= 0:
            self._check_cancelled(path, copied)
            return
        start = time.monotonic()
        if self.stop_event.wait(self.pacing_delay):
            logging.debug(f"'{path}': pacing interrupted after {time.monotonic() - start:.2f}s")
            self._check_cancelled(path, copied)
