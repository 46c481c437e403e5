#!/usr/bin/env python3
"""
Copy every mailbox and message from one IMAP account to another.

Usage:
    imap-migrate --config config.yaml [--batch-size 25] [--max-concurrency 4]
                 [--pacing-delay 2.0] [--dry-run] [--json] [--verbose]
"""

import sys
import json
import signal
import logging
import argparse
import threading
from typing import Any, Dict, List, Optional

from config_manager import ConfigManager
from errors import FatalError
from imap_client import IMAPEndpoint
from migration_api import MigrationRequest, run_migration
from models import MigrationStatus
from progress_manager import ProgressTracker
from session_manager import SessionManager
from utils import folder_key, translate_path

EXIT_COMPLETE = 0
EXIT_PARTIAL = 1
EXIT_FATAL = 2
EXIT_CONFIG = 3
EXIT_INTERRUPTED = 130


def setup_logging(log_file: Optional[str], verbose: bool = False) -> None:
    """Log to the console and, if configured, to a file."""
    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        handlers.insert(0, logging.FileHandler(log_file))
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s - %(levelname)s - %(threadName)s - %(message)s',
        handlers=handlers,
        force=True,
    )


def install_signal_handlers(stop_event: threading.Event) -> None:
    """SIGINT/SIGTERM stop the job after the current batch instead of killing it."""
    def signal_handler(signum, frame):
        logging.info(f"🛑 Received signal {signum}, initiating graceful shutdown...")
        stop_event.set()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)


def plan_migration(source: IMAPEndpoint, destination: IMAPEndpoint) -> List[Dict[str, Any]]:
    """Describe what a migration would do without changing anything."""
    source_mailboxes = source.list_mailboxes()
    existing = {folder_key(path) for path, _ in destination.list_mailboxes()}
    plan = []
    for path, flags in source_mailboxes:
        destination_path = translate_path(path, source.delimiter, destination.delimiter,
                                          source.namespace_prefix, destination.namespace_prefix)
        messages = len(source.search_all(path)) if source.is_selectable(flags) else 0
        exists = folder_key(destination_path) in existing
        plan.append({'path': path, 'destinationPath': destination_path, 'messages': messages, 'exists': exists})
        logging.info(f"Mailbox '{path}' -> '{destination_path}': {messages} messages"
                     f"{'' if exists else ' (will be created)'}")
    return plan


def build_request(config_manager: ConfigManager, args: argparse.Namespace) -> MigrationRequest:
    settings = config_manager.settings
    return MigrationRequest(
        source=config_manager.profile('source'),
        destination=config_manager.profile('destination'),
        batch_size=args.batch_size or settings['batch_size'],
        max_concurrency=args.max_concurrency or settings['max_concurrency'],
        pacing_delay=args.pacing_delay if args.pacing_delay is not None else settings['pacing_delay'],
    )


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description='Copy all mailboxes from one IMAP account to another')
    parser.add_argument('--config', default='config.yaml', help='Configuration file path')
    parser.add_argument('--batch-size', type=int, help='Messages fetched per batch')
    parser.add_argument('--max-concurrency', type=int, help='Mailboxes copied at the same time')
    parser.add_argument('--pacing-delay', type=float, help='Seconds to wait between appends')
    parser.add_argument('--dry-run', action='store_true', help='Show what would be copied without doing it')
    parser.add_argument('--json', action='store_true', help='Print the result as JSON')
    parser.add_argument('--verbose', '-v', action='store_true', help='Verbose logging')
    args = parser.parse_args(argv)
    for name in ('batch_size', 'max_concurrency'):
        value = getattr(args, name)
        if value is not None and value < 1:
            parser.error(f"--{name.replace('_', '-')} must be >= 1")
    if args.pacing_delay is not None and args.pacing_delay < 0:
        parser.error("--pacing-delay must be >= 0")
    return args


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    try:
        config_manager = ConfigManager(args.config)
        request = build_request(config_manager, args)
    except (FileNotFoundError, ValueError) as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIG

    setup_logging(config_manager.settings.get('log_file'), args.verbose)
    session_manager = SessionManager(lock_timeout=config_manager.settings['lock_timeout'])

    try:
        if args.dry_run:
            logging.info("=== DRY RUN MODE ===")
            plan = session_manager.run_job(request.source, request.destination, plan_migration)
            if args.json:
                print(json.dumps({'plan': plan}, indent=2))
            logging.info("=== DRY RUN COMPLETE ===")
            return EXIT_COMPLETE

        stop_event = threading.Event()
        install_signal_handlers(stop_event)
        result = run_migration(request, session_manager=session_manager, stop_event=stop_event,
                               progress=ProgressTracker())
    except FatalError as e:
        logging.error(f"Migration failed: {e}")
        if args.json:
            print(json.dumps({'status': MigrationStatus.FATAL.value, 'error': e.to_dict()}, indent=2))
        return EXIT_FATAL
    except KeyboardInterrupt:
        logging.info("Migration interrupted by user")
        return EXIT_INTERRUPTED

    if args.json:
        print(json.dumps(result.to_dict(), indent=2))
    if result.cancelled:
        return EXIT_INTERRUPTED
    return EXIT_COMPLETE if result.status == MigrationStatus.COMPLETE else EXIT_PARTIAL


if __name__ == "__main__":
    sys.exit(main())
