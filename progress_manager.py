#!/usr/bin/env python3
"""
Progress tracking for the IMAP mailbox migration system.

Progress lives in memory only: a restarted job copies everything again.
"""

import sys
import time
import logging
import threading
from typing import Dict, Optional

import psutil

# Progress bar
from tqdm import tqdm

from models import MigrationResult


class ProgressTracker:
    """Thread-safe counters shared by all mailbox tasks, with an optional progress bar."""

    def __init__(self, show_bar: Optional[bool] = None):
        if show_bar is None:
            show_bar = sys.stderr.isatty()
        self.show_bar = show_bar
        self.copied_by_mailbox: Dict[str, int] = {}
        self.mailboxes_total = 0
        self.mailboxes_done = 0
        self.start_time = None
        self._lock = threading.Lock()
        self._bar = None
        self._process = psutil.Process()
        self._initial_memory = 0.0

    def start(self, mailboxes_total: int) -> None:
        """Begin tracking a job over mailboxes_total mailboxes."""
        with self._lock:
            self.mailboxes_total = mailboxes_total
            self.mailboxes_done = 0
            self.copied_by_mailbox = {}
            self.start_time = time.time()
            self._initial_memory = self._memory_mb()
            self._bar = tqdm(desc="📤 Copied", unit="msg", disable=not self.show_bar, leave=True)
        logging.info(f"🚀 Migrating {mailboxes_total} mailboxes")
        logging.info(f"💾 Initial memory usage: {self._initial_memory:.1f} MB")

    def message_copied(self, path: str) -> None:
        with self._lock:
            self.copied_by_mailbox[path] = self.copied_by_mailbox.get(path, 0) + 1
            if self._bar is not None:
                self._bar.update(1)

    def mailbox_finished(self, path: str, succeeded: bool) -> None:
        with self._lock:
            self.mailboxes_done += 1
            done, total = self.mailboxes_done, self.mailboxes_total
            if self._bar is not None:
                self._bar.set_postfix_str(f"mailboxes {done}/{total}")
        icon = "✅" if succeeded else "❌"
        logging.info(f"{icon} Mailbox '{path}' finished ({done}/{total})")

    @property
    def total_copied(self) -> int:
        with self._lock:
            return sum(self.copied_by_mailbox.values())

    def _memory_mb(self) -> float:
        try:
            return self._process.memory_info().rss / (1024 * 1024)
        except psutil.Error:
            return 0.0

    def finish(self, result: MigrationResult) -> None:
        """Close the progress bar and log a summary of the job."""
        with self._lock:
            if self._bar is not None:
                self._bar.close()
                self._bar = None
        elapsed = time.time() - self.start_time if self.start_time else 0.0
        final_memory = self._memory_mb()
        rate = result.total_copied / elapsed if elapsed > 0 else 0.0

        logging.info("=== MIGRATION SUMMARY ===")
        logging.info(f"Status: {result.status.value}{' (cancelled)' if result.cancelled else ''}")
        logging.info(f"Mailboxes: {len(result.outcomes)} ({len(result.failed_mailboxes)} failed)")
        logging.info(f"Messages copied: {result.total_copied} in {elapsed:.1f}s ({rate:.2f} msg/s)")
        logging.info(f"Memory usage: {self._initial_memory:.1f}MB → {final_memory:.1f}MB "
                     f"(Δ{final_memory - self._initial_memory:+.1f}MB)")
        for outcome in result.failed_mailboxes:
            logging.error(f"  ✗ {outcome.path}: {outcome.error} (copied {outcome.messages_copied})")
