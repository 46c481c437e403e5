#!/usr/bin/env python3
"""
Job invocation surface: JSON-shaped request in, (status code, body) out.

This is what an HTTP handler calls. Request keys follow the connection form:
sourceServer, sourcePort, sourceUsername, sourcePassword, sourceSecure and the
same for destination, plus optional batchSize, maxConcurrency and pacingDelay.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Tuple

from errors import FatalError
from mailbox_mirror import MailboxMirror
from migration_coordinator import MigrationCoordinator
from models import (DEFAULT_BATCH_SIZE, DEFAULT_MAX_CONCURRENCY, DEFAULT_PACING_DELAY, DEFAULT_PORT,
                    ConnectionProfile, MigrationResult, MigrationStatus)
from progress_manager import ProgressTracker
from session_manager import SessionManager


@dataclass(frozen=True)
class MigrationRequest:
    source: ConnectionProfile
    destination: ConnectionProfile
    batch_size: int = DEFAULT_BATCH_SIZE
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY
    pacing_delay: float = DEFAULT_PACING_DELAY


def _profile(payload: Mapping[str, Any], prefix: str) -> ConnectionProfile:
    missing = [key for key in ('Server', 'Username', 'Password') if not payload.get(prefix + key)]
    if missing:
        raise ValueError(f"Missing {', '.join(prefix + key for key in missing)}")
    try:
        port = int(payload.get(prefix + 'Port', DEFAULT_PORT))
    except (TypeError, ValueError):
        raise ValueError(f"Invalid {prefix}Port: {payload.get(prefix + 'Port')!r}")
    return ConnectionProfile(
        host=str(payload[prefix + 'Server']).strip(),
        port=port,
        username=str(payload[prefix + 'Username']),
        secret=str(payload[prefix + 'Password']),
        use_tls=_flag(payload, prefix + 'Secure', True),
    )


def _flag(payload: Mapping[str, Any], key: str, default: bool) -> bool:
    """Booleans arrive as JSON true/false or as form strings."""
    value = payload.get(key)
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ('true', 'false'):
        return value.strip().lower() == 'true'
    raise ValueError(f"Invalid {key}: {value!r}")


def _positive(payload: Mapping[str, Any], key: str, default, cast, minimum):
    value = payload.get(key)
    if value is None:
        return default
    if isinstance(value, bool):
        raise ValueError(f"Invalid {key}: {value!r}")
    try:
        value = cast(value)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid {key}: {value!r}")
    if value < minimum:
        raise ValueError(f"{key} must be >= {minimum}")
    return value


def parse_request(payload: Mapping[str, Any]) -> MigrationRequest:
    """Validate a request body. Raises ValueError before any network activity."""
    if not isinstance(payload, Mapping):
        raise ValueError("Request body must be a JSON object")
    return MigrationRequest(
        source=_profile(payload, 'source'),
        destination=_profile(payload, 'destination'),
        batch_size=_positive(payload, 'batchSize', DEFAULT_BATCH_SIZE, int, 1),
        max_concurrency=_positive(payload, 'maxConcurrency', DEFAULT_MAX_CONCURRENCY, int, 1),
        pacing_delay=_positive(payload, 'pacingDelay', DEFAULT_PACING_DELAY, float, 0),
    )


def run_migration(request: MigrationRequest, session_manager: Optional[SessionManager] = None,
                  stop_event: Optional[threading.Event] = None,
                  progress: Optional[ProgressTracker] = None) -> MigrationResult:
    """Reconcile folders and copy every mailbox. Raises FatalError on session failure."""
    session_manager = session_manager or SessionManager()
    coordinator = MigrationCoordinator(pacing_delay=request.pacing_delay, stop_event=stop_event, progress=progress)

    def body(source, destination) -> MigrationResult:
        mailboxes = MailboxMirror().reconcile(source, destination)
        return coordinator.migrate_all(source, destination, mailboxes, batch_size=request.batch_size,
                                       max_concurrency=request.max_concurrency)

    return session_manager.run_job(request.source, request.destination, body)


def handle_migration_request(payload: Mapping[str, Any],
                             session_manager: Optional[SessionManager] = None) -> Tuple[int, Dict[str, Any]]:
    """Map a request to an HTTP-style status code and JSON body."""
    try:
        request = parse_request(payload)
    except ValueError as e:
        logging.warning(f"Rejected migration request: {e}")
        return 400, {'status': 'invalid', 'error': {'kind': 'validation', 'detail': str(e)}}

    try:
        result = run_migration(request, session_manager=session_manager, progress=ProgressTracker(show_bar=False))
    except FatalError as e:
        return 500, {'status': MigrationStatus.FATAL.value, 'error': e.to_dict()}
    return 200, result.to_dict()
