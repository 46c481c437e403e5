#!/usr/bin/env python3
"""
Main migration coordinator for the IMAP mailbox migration system.

Runs one replication task per mailbox on a bounded worker pool and turns
every task's fate into a MailboxOutcome. A failing mailbox never cancels its
siblings.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import List, Optional, Sequence

from batch_replicator import BatchReplicator
from errors import ErrorKind, MailboxError, describe
from imap_client import IMAPEndpoint
from models import (ALLOWED_TRANSITIONS, DEFAULT_MAX_CONCURRENCY, DEFAULT_PACING_DELAY, MailboxDescriptor,
                    MailboxOutcome, MailboxState, MigrationResult)
from progress_manager import ProgressTracker


class MailboxTask:
    """State machine of one mailbox: pending -> locked -> copying -> completed | failed."""

    def __init__(self, mailbox: MailboxDescriptor):
        self.mailbox = mailbox
        self.state = MailboxState.PENDING
        self.batches = 0

    def advance(self, state: MailboxState) -> None:
        if state not in ALLOWED_TRANSITIONS[self.state]:
            raise RuntimeError(f"Illegal transition {self.state.value} -> {state.value} for '{self.mailbox.path}'")
        logging.debug(f"'{self.mailbox.path}': {self.state.value} -> {state.value}")
        self.state = state

    def batch_done(self, index: int, total: int, size: int) -> None:
        self.batches += 1

    def complete(self, copied: int) -> MailboxOutcome:
        self.advance(MailboxState.COMPLETED)
        return MailboxOutcome(self.mailbox.path, copied, None, self.state, self.batches)

    def fail(self, error: MailboxError) -> MailboxOutcome:
        """Aborted if nothing started, failed otherwise."""
        terminal = MailboxState.ABORTED if self.state == MailboxState.PENDING else MailboxState.FAILED
        self.advance(terminal)
        return MailboxOutcome(self.mailbox.path, error.copied, error, self.state, self.batches)


class MigrationCoordinator:
    """Fans replication out across mailboxes with bounded concurrency."""

    def __init__(self, pacing_delay: float = DEFAULT_PACING_DELAY, stop_event: Optional[threading.Event] = None,
                 progress: Optional[ProgressTracker] = None, replicator: Optional[BatchReplicator] = None):
        self.stop_event = stop_event or threading.Event()
        self.progress = progress
        self.replicator = replicator or BatchReplicator(pacing_delay=pacing_delay, stop_event=self.stop_event,
                                                        progress=progress)

    def cancel(self) -> None:
        """Stop issuing batches. Messages already copied stay copied."""
        logging.info("🛑 Cancellation requested, in-flight mailboxes will stop at the next batch")
        self.stop_event.set()

    def migrate_all(self, source: IMAPEndpoint, destination: IMAPEndpoint, mailboxes: Sequence[MailboxDescriptor],
                    batch_size: Optional[int] = None,
                    max_concurrency: int = DEFAULT_MAX_CONCURRENCY) -> MigrationResult:
        """Replicate every mailbox and return one outcome per mailbox, in the given order."""
        if max_concurrency < 1:
            raise ValueError(f"max_concurrency must be >= 1, got {max_concurrency}")
        if self.progress is not None:
            self.progress.start(len(mailboxes))

        tasks = [MailboxTask(mailbox) for mailbox in mailboxes]
        outcomes: List[Optional[MailboxOutcome]] = [None] * len(tasks)
        runnable = []
        for index, task in enumerate(tasks):
            if task.mailbox.error is not None:
                outcomes[index] = self._finish(task.fail(task.mailbox.error))
            elif not task.mailbox.selectable:
                logging.info(f"📁 '{task.mailbox.path}' cannot hold messages, nothing to copy")
                outcomes[index] = self._finish(MailboxOutcome(task.mailbox.path))
            else:
                runnable.append(index)

        logging.info(f"Replicating {len(runnable)} mailboxes with up to {max_concurrency} in flight")
        with ThreadPoolExecutor(max_workers=max_concurrency, thread_name_prefix="mailbox") as executor:
            futures = {executor.submit(self._run_task, source, destination, tasks[index], batch_size): index
                       for index in runnable}
            try:
                for future in as_completed(futures):
                    outcomes[futures[future]] = future.result()
            except KeyboardInterrupt:
                logging.info("🛑 Interrupted, waiting for in-flight mailboxes to stop")
                self.cancel()
                for future in futures:
                    future.cancel()

        for future, index in futures.items():
            if outcomes[index] is not None:
                continue
            if future.cancelled():
                task = tasks[index]
                error = MailboxError(ErrorKind.CANCELLED, "job cancelled before mailbox started", path=task.mailbox.path)
                outcomes[index] = self._finish(task.fail(error))
            else:
                outcomes[index] = future.result()

        result = MigrationResult.from_outcomes(outcomes, cancelled=self.stop_event.is_set())
        if self.progress is not None:
            self.progress.finish(result)
        return result

    def _run_task(self, source: IMAPEndpoint, destination: IMAPEndpoint, task: MailboxTask,
                  batch_size: Optional[int]) -> MailboxOutcome:
        """Run one mailbox. Never raises."""
        mailbox = task.mailbox
        if self.stop_event.is_set():
            error = MailboxError(ErrorKind.CANCELLED, "job cancelled before mailbox started", path=mailbox.path)
            return self._finish(task.fail(error))

        try:
            copied = self.replicator.replicate(source, destination, mailbox.path, mailbox.destination_path,
                                               batch_size=batch_size, on_state=task.advance,
                                               on_batch=task.batch_done)
        except MailboxError as e:
            logging.error(f"❌ Mailbox '{mailbox.path}' failed after {e.copied} messages: {e}")
            return self._finish(task.fail(e))
        except Exception as e:
            logging.error(f"❌ Mailbox '{mailbox.path}' failed unexpectedly: {describe(e)}")
            return self._finish(task.fail(MailboxError(ErrorKind.UNEXPECTED, describe(e), path=mailbox.path)))
        return self._finish(task.complete(copied))

    def _finish(self, outcome: MailboxOutcome) -> MailboxOutcome:
        if self.progress is not None:
            self.progress.mailbox_finished(outcome.path, outcome.succeeded)
        return outcome
