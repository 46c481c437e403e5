#!/usr/bin/env python3
"""
Shared pytest fixtures for imap-migrate tests.

FakeMailStore stands in for an IMAP server at the imapclient boundary, so the
real IMAPEndpoint, its connection lock and its mailbox locks are exercised.
"""

import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

import pytest
from imapclient import exceptions as imap_exceptions

# Make the top-level modules importable without installing
sys.path.insert(0, str(Path(__file__).parent.parent))

from imap_client import IMAPEndpoint  # noqa: E402
from models import ConnectionProfile  # noqa: E402


class FakeMailStore:
    """In-memory mail server state with failure injection."""

    def __init__(self, delimiter: str = "/", namespace_prefix: Optional[str] = None):
        self.delimiter = delimiter
        # None means the server does not advertise NAMESPACE
        self.namespace_prefix = namespace_prefix
        self.folders: Dict[str, List[dict]] = {}
        self.noselect = set()
        self.next_uid = 1

        self.fail_connect = False
        self.fail_login = False
        self.fail_logout = False
        self.fail_list = False
        self.fail_create = set()
        self.fail_fetch = set()
        self.fail_search = set()
        # folder -> 1-based index of the append that fails
        self.fail_append: Dict[str, int] = {}
        self.append_error = None

        self.fetch_calls = []
        self.append_counts: Dict[str, int] = {}
        self.created = []
        self.logins = 0
        self.logouts = 0

    def add_folder(self, name: str, messages: int = 0, noselect: bool = False) -> None:
        self.folders.setdefault(name, [])
        if noselect:
            self.noselect.add(name)
        for n in range(messages):
            self.add_message(name, f"Subject: {name} {n + 1}\r\n\r\nBody {n + 1}\r\n".encode(),
                             flags=(b"\\Seen",) if n % 2 == 0 else ())

    def add_message(self, folder: str, raw: bytes, flags=(), date=None) -> int:
        uid = self.next_uid
        self.next_uid += 1
        self.folders[folder].append({
            "uid": uid,
            "raw": raw,
            "flags": tuple(flags),
            "date": date or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc),
        })
        return uid

    def raws(self, folder: str) -> List[bytes]:
        return [m["raw"] for m in self.folders.get(folder, [])]

    def client_factory(self, host, port=None, ssl=True):
        if self.fail_connect:
            raise ConnectionRefusedError(111, "Connection refused")
        return FakeIMAPClient(self)


class FakeIMAPClient:
    """The subset of imapclient.IMAPClient used by IMAPEndpoint."""

    def __init__(self, store: FakeMailStore):
        self.store = store
        self.selected = None

    def login(self, username, password):
        if self.store.fail_login:
            raise imap_exceptions.LoginError("[AUTHENTICATIONFAILED] Invalid credentials")
        self.store.logins += 1
        return b"LOGIN completed"

    def capabilities(self):
        if self.store.namespace_prefix is None:
            return (b"IMAP4REV1", b"UIDPLUS")
        return (b"IMAP4REV1", b"UIDPLUS", b"NAMESPACE")

    def namespace(self):
        return (((self.store.namespace_prefix, self.store.delimiter),), None, None)

    def list_folders(self, directory="", pattern="*"):
        if self.store.fail_list:
            raise imap_exceptions.IMAPClientError(b"LIST failed")
        result = []
        for name in self.store.folders:
            flags = (b"\\Noselect",) if name in self.store.noselect else (b"\\HasNoChildren",)
            result.append((flags, self.store.delimiter.encode(), name))
        return result

    def select_folder(self, folder, readonly=False):
        if folder not in self.store.folders or folder in self.store.noselect:
            raise imap_exceptions.IMAPClientError(b"[NONEXISTENT] Unknown Mailbox: " + folder.encode())
        self.selected = folder
        return {b"EXISTS": len(self.store.folders[folder])}

    def create_folder(self, folder):
        if folder in self.store.fail_create:
            raise imap_exceptions.IMAPClientError(b"[ALREADYEXISTS] Mailbox exists with different case")
        if folder in self.store.folders:
            raise imap_exceptions.IMAPClientError(b"[ALREADYEXISTS] Mailbox already exists")
        prefix = self.store.namespace_prefix
        if prefix and folder.upper() != "INBOX" and not folder.startswith(prefix):
            raise imap_exceptions.IMAPClientError(b"[CANNOT] Invalid mailbox name: " + folder.encode())
        self.store.folders[folder] = []
        self.store.created.append(folder)
        return b"CREATE completed"

    def search(self, criteria="ALL"):
        if self.selected in self.store.fail_search:
            raise imap_exceptions.IMAPClientError(b"SEARCH failed")
        return [m["uid"] for m in self.store.folders[self.selected]]

    def fetch(self, messages, data):
        self.store.fetch_calls.append((self.selected, list(messages)))
        if self.selected in self.store.fail_fetch:
            raise imap_exceptions.IMAPClientError(b"FETCH failed")
        by_uid = {m["uid"]: m for m in self.store.folders[self.selected]}
        response = {}
        for seq, uid in enumerate(messages, 1):
            if uid in by_uid:
                m = by_uid[uid]
                response[uid] = {b"SEQ": seq, b"BODY[]": m["raw"], b"FLAGS": m["flags"], b"INTERNALDATE": m["date"]}
        return response

    def append(self, folder, msg, flags=(), msg_time=None):
        count = self.store.append_counts.get(folder, 0) + 1
        self.store.append_counts[folder] = count
        if self.store.fail_append.get(folder) == count:
            raise self.store.append_error or imap_exceptions.IMAPClientError(b"APPEND failed: quota exceeded")
        if folder not in self.store.folders:
            raise imap_exceptions.IMAPClientError(b"[TRYCREATE] No such mailbox")
        self.store.add_message(folder, msg, flags=tuple(flags), date=msg_time)
        return b"APPEND completed"

    def logout(self):
        self.store.logouts += 1
        if self.store.fail_logout:
            raise imap_exceptions.IMAPClientError(b"BYE failed")
        return b"LOGOUT completed"

    def shutdown(self):
        pass


@pytest.fixture
def source_profile():
    return ConnectionProfile(host="imap.source.example", username="alice@source.example", secret="s3cret")


@pytest.fixture
def destination_profile():
    return ConnectionProfile(host="imap.destination.example", username="alice@destination.example",
                             secret="hunter2")


@pytest.fixture
def source_store():
    return FakeMailStore(delimiter="/")


@pytest.fixture
def destination_store():
    return FakeMailStore(delimiter="/")


@pytest.fixture
def make_endpoint():
    """Build and connect an IMAPEndpoint backed by a FakeMailStore."""
    def _make(store, profile=None, name="endpoint", lock_timeout=0.2, connect=True):
        profile = profile or ConnectionProfile(host="imap.example.com", username="user", secret="pw")
        endpoint = IMAPEndpoint(profile, name=name, lock_timeout=lock_timeout, client_factory=store.client_factory)
        if connect:
            endpoint.connect()
        return endpoint
    return _make


@pytest.fixture
def source(make_endpoint, source_store, source_profile):
    return make_endpoint(source_store, source_profile, name="source")


@pytest.fixture
def destination(make_endpoint, destination_store, destination_profile):
    return make_endpoint(destination_store, destination_profile, name="destination")


@pytest.fixture
def endpoint_factory(source_store, destination_store):
    """SessionManager endpoint factory wired to the two fake stores."""
    created = []

    def _factory(profile, name="", lock_timeout=0.2):
        store = source_store if name == "source" else destination_store
        endpoint = IMAPEndpoint(profile, name=name, lock_timeout=lock_timeout, client_factory=store.client_factory)
        created.append(endpoint)
        return endpoint

    _factory.created = created
    return _factory
