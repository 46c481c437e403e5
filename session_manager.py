#!/usr/bin/env python3
"""
Session lifecycle for a migration job.

Opens the source and destination endpoints, hands them to the job body and
closes both on every exit path.
"""

import time
import logging
from typing import Callable, List, Optional

from errors import ErrorKind, FatalError, describe, is_transient
from imap_client import IMAPEndpoint
from models import DEFAULT_LOCK_TIMEOUT, ConnectionProfile, MigrationResult

JobBody = Callable[[IMAPEndpoint, IMAPEndpoint], MigrationResult]


class SessionManager:
    """Owns the two endpoints of a job."""

    def __init__(self, endpoint_factory: Optional[Callable[..., IMAPEndpoint]] = None,
                 lock_timeout: float = DEFAULT_LOCK_TIMEOUT):
        self.endpoint_factory = endpoint_factory or IMAPEndpoint
        self.lock_timeout = lock_timeout

    def _open(self, profile: ConnectionProfile, name: str, created: List[IMAPEndpoint]) -> IMAPEndpoint:
        endpoint = self.endpoint_factory(profile, name=name, lock_timeout=self.lock_timeout)
        created.append(endpoint)
        endpoint.connect()
        return endpoint

    def run_job(self, source_profile: ConnectionProfile, destination_profile: ConnectionProfile,
                body: JobBody) -> MigrationResult:
        """Run body against freshly opened endpoints and always close them."""
        created: List[IMAPEndpoint] = []
        start_time = time.time()
        try:
            source = self._open(source_profile, "source", created)
            destination = self._open(destination_profile, "destination", created)
            logging.info("🚀 Both endpoints authenticated, starting job")
            try:
                return body(source, destination)
            except FatalError:
                raise
            except Exception as e:
                logging.error(f"❌ Job aborted outside any mailbox: {describe(e)}")
                kind = ErrorKind.CONNECTION if is_transient(e) else ErrorKind.UNEXPECTED
                raise FatalError(kind, describe(e)) from e
        except FatalError as e:
            logging.error(f"🛑 Fatal error: {e}")
            raise
        finally:
            for endpoint in created:
                self._close_quietly(endpoint)
            logging.info(f"⏱️ Job finished in {time.time() - start_time:.1f}s")

    @staticmethod
    def _close_quietly(endpoint: IMAPEndpoint) -> None:
        """Closing is cleanup, never the reported outcome."""
        try:
            endpoint.close()
        except Exception as e:
            logging.warning(f"⚠️ Failed to close endpoint {getattr(endpoint, 'name', endpoint)}: {describe(e)}")
