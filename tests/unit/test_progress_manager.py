#!/usr/bin/env python3
"""
Unit tests for progress_manager.py module.
"""

import logging
import threading

from errors import ErrorKind, MailboxError
from models import MailboxOutcome, MigrationResult
from progress_manager import ProgressTracker


class TestProgressTracker:
    """Tests for ProgressTracker."""

    def test_counts_messages_and_mailboxes(self):
        tracker = ProgressTracker(show_bar=False)
        tracker.start(2)
        tracker.message_copied("INBOX")
        tracker.message_copied("INBOX")
        tracker.message_copied("Sent")
        tracker.mailbox_finished("INBOX", True)

        assert tracker.total_copied == 3
        assert tracker.copied_by_mailbox == {"INBOX": 2, "Sent": 1}
        assert tracker.mailboxes_done == 1

    def test_thread_safe_counting(self):
        tracker = ProgressTracker(show_bar=False)
        tracker.start(4)

        def worker(path):
            for _ in range(250):
                tracker.message_copied(path)

        threads = [threading.Thread(target=worker, args=(f"Folder{i}",)) for i in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert tracker.total_copied == 1000

    def test_finish_logs_summary(self, caplog):
        tracker = ProgressTracker(show_bar=False)
        tracker.start(2)
        error = MailboxError(ErrorKind.APPEND, "quota exceeded", path="Sent", copied=1)
        result = MigrationResult.from_outcomes([MailboxOutcome("INBOX", 5), MailboxOutcome("Sent", 1, error)])

        with caplog.at_level(logging.INFO):
            tracker.finish(result)

        assert "Status: partial" in caplog.text
        assert "Messages copied: 6" in caplog.text
        assert "Sent" in caplog.text
