#!/usr/bin/env python3
"""
Unit tests for imap_migrate.py (command line entry point).
"""

import json

import pytest

import imap_migrate
from session_manager import SessionManager

CONFIG = """
source:
  server: imap.source.example
  username: alice@source.example
  password: s3cret
destination:
  server: imap.destination.example
  username: alice@destination.example
  password: hunter2
settings:
  pacing_delay: 0
  log_file: ""
"""


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(CONFIG)
    return str(path)


@pytest.fixture(autouse=True)
def fake_sessions(monkeypatch, endpoint_factory):
    monkeypatch.setattr(imap_migrate, "SessionManager",
                        lambda lock_timeout=30.0: SessionManager(endpoint_factory=endpoint_factory))
    monkeypatch.setattr(imap_migrate, "setup_logging", lambda log_file, verbose=False: None)
    monkeypatch.setattr(imap_migrate, "install_signal_handlers", lambda stop_event: None)


class TestMain:
    """Exit codes and output of main()."""

    def test_complete(self, config_file, source_store, destination_store, capsys):
        source_store.add_folder("INBOX", messages=5)
        destination_store.add_folder("INBOX")

        code = imap_migrate.main(["--config", config_file, "--json", "--batch-size", "2"])

        assert code == imap_migrate.EXIT_COMPLETE
        output = json.loads(capsys.readouterr().out)
        assert output["status"] == "complete"
        assert output["perMailbox"] == [{"path": "INBOX", "copied": 5}]
        assert len(source_store.fetch_calls) == 3

    def test_partial(self, config_file, source_store, destination_store):
        source_store.add_folder("INBOX", messages=2)
        source_store.add_folder("Sent", messages=2)
        destination_store.add_folder("INBOX")
        destination_store.add_folder("Sent")
        destination_store.fail_append["Sent"] = 1

        assert imap_migrate.main(["--config", config_file]) == imap_migrate.EXIT_PARTIAL

    def test_fatal(self, config_file, source_store, capsys):
        source_store.fail_login = True

        code = imap_migrate.main(["--config", config_file, "--json"])

        assert code == imap_migrate.EXIT_FATAL
        assert json.loads(capsys.readouterr().out)["status"] == "fatal"

    def test_missing_config(self, tmp_path):
        assert imap_migrate.main(["--config", str(tmp_path / "nope.yaml")]) == imap_migrate.EXIT_CONFIG

    def test_dry_run_changes_nothing(self, config_file, source_store, destination_store, capsys):
        source_store.add_folder("INBOX", messages=3)
        source_store.add_folder("Archive", messages=1)
        destination_store.add_folder("INBOX")

        code = imap_migrate.main(["--config", config_file, "--dry-run", "--json"])

        assert code == imap_migrate.EXIT_COMPLETE
        plan = json.loads(capsys.readouterr().out)["plan"]
        assert plan == [
            {"path": "INBOX", "destinationPath": "INBOX", "messages": 3, "exists": True},
            {"path": "Archive", "destinationPath": "Archive", "messages": 1, "exists": False},
        ]
        assert destination_store.created == []
        assert destination_store.raws("INBOX") == []
        assert source_store.fetch_calls == []

    def test_rejects_bad_batch_size(self, config_file):
        with pytest.raises(SystemExit):
            imap_migrate.main(["--config", config_file, "--batch-size", "0"])
