#!/usr/bin/env python3
"""
IMAP endpoint for the mailbox migration system.

One IMAPEndpoint is one authenticated session over one mail store. The
underlying imapclient connection is not safe for concurrent use, so every
command goes through a single connection lock. Mailbox locks are a separate,
per-path mechanism that gives one migration task exclusive use of a mailbox.
"""

import time
import logging
import threading
from datetime import datetime
from typing import Callable, Dict, Iterator, List, Optional, Sequence, Tuple

# IMAP imports
import imapclient
from imapclient import exceptions as imap_exceptions

from errors import ErrorKind, FatalError, MailboxError, describe, is_transient, mailbox_error_from
from models import DEFAULT_LOCK_TIMEOUT, ConnectionProfile, MessageHandle

FETCH_ITEMS = [b'BODY.PEEK[]', b'FLAGS', b'INTERNALDATE']
NOSELECT_FLAG = b'\\Noselect'
# Servers refuse \Recent on APPEND
UNSETTABLE_FLAGS = {'\\recent'}


def _decode(value) -> str:
    if isinstance(value, bytes):
        return value.decode('utf-8', errors='replace')
    return str(value)


class MailboxLock:
    """Exclusive use of one mailbox path on one endpoint."""

    def __init__(self, endpoint: 'IMAPEndpoint', path: str, lock: threading.Lock):
        self.endpoint = endpoint
        self.path = path
        self._lock = lock
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        """Release the lock. Safe to call more than once."""
        if self._released:
            return
        self._released = True
        self._lock.release()
        logging.debug(f"🔓 Released lock on '{self.path}' ({self.endpoint.name})")

    def __enter__(self) -> 'MailboxLock':
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()


class IMAPEndpoint:
    """Authenticated IMAP session shared by all mailbox tasks of a job."""

    def __init__(self, profile: ConnectionProfile, name: str = "", lock_timeout: float = DEFAULT_LOCK_TIMEOUT,
                 client_factory: Callable = imapclient.IMAPClient):
        self.profile = profile
        self.name = name or profile.host
        self.lock_timeout = lock_timeout
        self.client_factory = client_factory
        self.client = None
        self.delimiter: Optional[str] = None
        self.namespace_prefix = ""
        self.connection_start_time = None
        self.connection_errors = 0
        self.last_activity = None
        self.total_appends = 0
        self.closed = False

        self._io_lock = threading.RLock()
        self._selected: Optional[Tuple[str, bool]] = None
        self._registry_lock = threading.Lock()
        self._mailbox_locks: Dict[str, threading.Lock] = {}

    def connect(self) -> None:
        """Connect and authenticate. Any failure is fatal for the job."""
        self.connection_start_time = time.time()
        logging.info(f"🔌 [{self.name}] Connecting to {self.profile.host}:{self.profile.port} "
                     f"({'TLS' if self.profile.use_tls else 'plain'})")
        try:
            self.client = self.client_factory(self.profile.host, port=self.profile.port, ssl=self.profile.use_tls)
        except Exception as e:
            logging.error(f"❌ [{self.name}] Failed to connect to {self.profile.host}: {describe(e)}")
            raise FatalError(ErrorKind.CONNECTION, describe(e), endpoint=self.name) from e

        try:
            self.client.login(self.profile.username, self.profile.secret)
        except imap_exceptions.LoginError as e:
            logging.error(f"❌ [{self.name}] Authentication failed for {self.profile.username}")
            self._drop_connection()
            raise FatalError(ErrorKind.AUTH, describe(e), endpoint=self.name) from e
        except Exception as e:
            logging.error(f"❌ [{self.name}] Login to {self.profile.host} failed: {describe(e)}")
            self._drop_connection()
            kind = ErrorKind.CONNECTION if is_transient(e) else ErrorKind.AUTH
            raise FatalError(kind, describe(e), endpoint=self.name) from e

        self.last_activity = time.time()
        logging.info(f"✅ [{self.name}] Connected as {self.profile.username}")
        logging.info(f"🔗 [{self.name}] Connection established in "
                     f"{self.last_activity - self.connection_start_time:.2f}s")
        try:
            capabilities = self.client.capabilities()
            logging.debug(f"[{self.name}] IMAP server capabilities: {[_decode(c) for c in capabilities]}")
        except Exception as e:
            logging.warning(f"[{self.name}] Could not read capabilities: {describe(e)}")
            return

        # Personal namespace prefix, e.g. 'INBOX.' on Courier and Cyrus
        if b'NAMESPACE' in capabilities:
            try:
                namespace = self.client.namespace()
            except Exception as e:
                logging.warning(f"[{self.name}] Could not get namespace info: {describe(e)}")
                return
            if namespace and namespace[0]:
                personal_prefix, personal_delimiter = namespace[0][0]
                self.namespace_prefix = _decode(personal_prefix or "")
                if personal_delimiter and self.delimiter is None:
                    self.delimiter = _decode(personal_delimiter)
            logging.info(f"📁 [{self.name}] Personal namespace prefix: '{self.namespace_prefix}', "
                         f"delimiter: {self.delimiter!r}")
        else:
            logging.debug(f"[{self.name}] Server does not support NAMESPACE, using no prefix")

    def _drop_connection(self) -> None:
        try:
            self.client.shutdown()
        except Exception as e:
            logging.debug(f"[{self.name}] Ignoring error while dropping connection: {describe(e)}")
        self.client = None

    def _require_client(self):
        if self.client is None:
            raise MailboxError(ErrorKind.UNEXPECTED, f"endpoint {self.name} is not connected")
        return self.client

    def _select(self, path: str, readonly: bool = True) -> None:
        """Select a mailbox unless it is already selected. Caller holds the connection lock."""
        if self._selected == (path, readonly):
            return
        self._selected = None
        self._require_client().select_folder(path, readonly=readonly)
        self._selected = (path, readonly)
        self.last_activity = time.time()

    def list_mailboxes(self) -> List[Tuple[str, Tuple[str, ...]]]:
        """Full mailbox hierarchy as (path, flags) in server order."""
        with self._io_lock:
            folders = self._require_client().list_folders()
            self.last_activity = time.time()
        mailboxes = []
        for flags, delimiter, name in folders:
            if delimiter and self.delimiter is None:
                self.delimiter = _decode(delimiter)
            mailboxes.append((_decode(name), tuple(_decode(flag) for flag in flags)))
        logging.info(f"📂 [{self.name}] Found {len(mailboxes)} mailboxes (delimiter: {self.delimiter!r})")
        return mailboxes

    @staticmethod
    def is_selectable(flags: Sequence[str]) -> bool:
        return _decode(NOSELECT_FLAG).lower() not in {flag.lower() for flag in flags}

    def open_mailbox(self, path: str) -> None:
        """Open a mailbox read-only to prove it exists."""
        with self._io_lock:
            try:
                self._select(path, readonly=True)
            except Exception as e:
                raise mailbox_error_from(ErrorKind.OPEN, e, path) from e

    def create_mailbox(self, path: str) -> None:
        """Create a mailbox."""
        with self._io_lock:
            try:
                self._require_client().create_folder(path)
                self.last_activity = time.time()
            except Exception as e:
                self.connection_errors += 1
                raise mailbox_error_from(ErrorKind.CREATE, e, path) from e
        logging.info(f"📁 [{self.name}] Created mailbox '{path}'")

    def lock_mailbox(self, path: str) -> MailboxLock:
        """Acquire exclusive use of a mailbox and check it can be opened."""
        with self._registry_lock:
            lock = self._mailbox_locks.setdefault(path, threading.Lock())

        if not lock.acquire(timeout=self.lock_timeout):
            raise MailboxError(ErrorKind.LOCK, f"timed out after {self.lock_timeout}s waiting for '{path}' "
                                               f"on {self.name}", path=path)
        mailbox_lock = MailboxLock(self, path, lock)
        try:
            self.open_mailbox(path)
        except MailboxError as e:
            mailbox_lock.release()
            raise MailboxError(ErrorKind.LOCK, f"cannot open '{path}' on {self.name}: {e.detail}", path=path) from e
        logging.debug(f"🔒 Locked '{path}' ({self.name})")
        return mailbox_lock

    def search_all(self, path: str) -> List[int]:
        """All message ids in a mailbox, in server order."""
        with self._io_lock:
            try:
                self._select(path, readonly=True)
                ids = self._require_client().search('ALL')
                self.last_activity = time.time()
            except Exception as e:
                self.connection_errors += 1
                raise mailbox_error_from(ErrorKind.SEARCH, e, path) from e
        return list(ids)

    def fetch(self, path: str, ids: Sequence[int]) -> Iterator[MessageHandle]:
        """Yield full content, flags and internal date for ids, in the order given."""
        if not ids:
            return
        with self._io_lock:
            try:
                self._select(path, readonly=True)
                response = self._require_client().fetch(list(ids), FETCH_ITEMS)
                self.last_activity = time.time()
            except Exception as e:
                self.connection_errors += 1
                raise mailbox_error_from(ErrorKind.FETCH, e, path) from e

        for message_id in ids:
            data = response.get(message_id)
            if data is None or b'BODY[]' not in data:
                raise MailboxError(ErrorKind.FETCH, f"message {message_id} missing from fetch response", path=path)
            yield MessageHandle(
                message_id=message_id,
                raw=data[b'BODY[]'],
                flags=tuple(_decode(flag) for flag in data.get(b'FLAGS', ())),
                internal_date=data.get(b'INTERNALDATE'),
            )

    def append(self, path: str, raw: bytes, flags: Sequence[str] = (), msg_time: Optional[datetime] = None) -> None:
        """Append one message to a mailbox."""
        flags = [flag for flag in flags if flag.lower() not in UNSETTABLE_FLAGS]
        with self._io_lock:
            start_time = time.time()
            try:
                self._require_client().append(path, raw, flags, msg_time)
            except Exception as e:
                self.connection_errors += 1
                self._log_connection_diagnostics()
                raise mailbox_error_from(ErrorKind.APPEND, e, path) from e
            self.last_activity = time.time()
            self.total_appends += 1

        append_time = self.last_activity - start_time
        if append_time > 5.0:
            logging.warning(f"⚠️ [{self.name}] Slow append: {append_time:.2f}s for message to '{path}'")

    def _log_connection_diagnostics(self) -> None:
        """Log connection age and error counters."""
        if self.connection_start_time:
            connection_duration = time.time() - self.connection_start_time
            logging.info(f"🔗 [{self.name}] Connection duration: {connection_duration:.1f}s, "
                         f"errors: {self.connection_errors}")
            if self.last_activity:
                logging.info(f"⏱️ [{self.name}] Time since last activity: {time.time() - self.last_activity:.1f}s")

    def close(self) -> None:
        """Log out. Best effort; never raises and only acts once."""
        if self.closed:
            return
        self.closed = True
        if self.client is None:
            return
        with self._io_lock:
            try:
                self.client.logout()
                if self.connection_start_time:
                    total_duration = time.time() - self.connection_start_time
                    logging.info(f"✅ [{self.name}] Disconnected (duration: {total_duration:.1f}s, "
                                 f"appends: {self.total_appends}, errors: {self.connection_errors})")
            except Exception as e:
                logging.warning(f"❌ [{self.name}] Error disconnecting: {describe(e)}")
                self._log_connection_diagnostics()
            finally:
                self.client = None
                self._selected = None
