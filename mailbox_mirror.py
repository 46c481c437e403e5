#!/usr/bin/env python3
"""
Brings the destination folder set in line with the source.
"""

import logging
from typing import List

from errors import ErrorKind, MailboxError
from imap_client import IMAPEndpoint
from models import MailboxDescriptor
from utils import folder_key, translate_path


class MailboxMirror:
    """Creates every source mailbox that is missing on the destination.

    Nothing on the destination is ever deleted, renamed or emptied. A mailbox
    that cannot be created is returned with its error set and is left out of
    replication.
    """

    def reconcile(self, source: IMAPEndpoint, destination: IMAPEndpoint) -> List[MailboxDescriptor]:
        """Return one descriptor per source mailbox, in source order."""
        source_mailboxes = source.list_mailboxes()
        existing = {folder_key(path) for path, _ in destination.list_mailboxes()}

        logging.info(f"Mirroring {len(source_mailboxes)} source mailboxes onto the destination:")
        descriptors = []
        created = 0
        for path, flags in source_mailboxes:
            destination_path = translate_path(path, source.delimiter, destination.delimiter,
                                              source.namespace_prefix, destination.namespace_prefix)
            selectable = source.is_selectable(flags)
            if folder_key(destination_path) in existing:
                logging.info(f"✓ '{path}' already exists on destination as '{destination_path}'")
                descriptor = MailboxDescriptor(path, destination_path, exists_on_destination=True,
                                               selectable=selectable)
            else:
                descriptor = self._create(destination, path, destination_path, selectable)
                if descriptor.error is None:
                    existing.add(folder_key(destination_path))
                    created += 1
            descriptors.append(descriptor)

        failed = sum(1 for d in descriptors if d.error is not None)
        logging.info("Mailbox mirroring completed:")
        logging.info(f"- Mailboxes processed: {len(descriptors)}")
        logging.info(f"- Created on destination: {created}")
        logging.info(f"- Creation failures: {failed}")
        return descriptors

    def _create(self, destination: IMAPEndpoint, path: str, destination_path: str,
                selectable: bool) -> MailboxDescriptor:
        try:
            destination.create_mailbox(destination_path)
            # A \Noselect folder can never be opened, so only selectable ones are verified
            if selectable:
                destination.open_mailbox(destination_path)
        except MailboxError as e:
            logging.error(f"✗ Failed to create '{destination_path}' for source mailbox '{path}': {e.detail}")
            error = MailboxError(ErrorKind.CREATE, e.detail, path=path)
            return MailboxDescriptor(path, destination_path, exists_on_destination=False,
                                     selectable=selectable, error=error)

        logging.info(f"✓ Created '{destination_path}' for source mailbox '{path}'")
        return MailboxDescriptor(path, destination_path, exists_on_destination=False, selectable=selectable)
