"""Capability interfaces the tool layer consumes from a mail store.

Nothing in the search, compose, or dispatch code touches a concrete store;
they all go through these protocols so they can run against a fixture tree in
tests and against ``LocalMailStore`` in production.
"""

from collections.abc import Iterable
from typing import Protocol, runtime_checkable

from mailbridge.store.models import (
    Account,
    AddressBook,
    Calendar,
    ComposeFields,
    Identity,
    MessageHeader,
    ParsedMessage,
)


class MailStoreError(Exception):
    """Raised by a store when an operation on it cannot complete."""


class FolderNotFoundError(MailStoreError):
    """No folder is registered under the requested URI."""


class MessageNotFoundError(MailStoreError):
    """The folder exists but holds no message with the requested Message-ID."""


class CapabilityUnavailable(MailStoreError):
    """The store does not provide this capability at all (e.g. no calendars)."""


@runtime_checkable
class Folder(Protocol):
    """An opaque folder handle. Only ``uri`` is guaranteed to be stable."""

    @property
    def uri(self) -> str: ...

    @property
    def name(self) -> str: ...


@runtime_checkable
class FolderTree(Protocol):
    """The three operations the folder search walks a hierarchy with."""

    def list_children(self, folder: Folder) -> list[Folder]:
        """Return the direct subfolders of ``folder`` in display order."""
        ...

    def refresh(self, folder: Folder) -> None:
        """Ask the store to resync ``folder``'s index. Advisory; may raise."""
        ...

    def scan_messages(self, folder: Folder) -> Iterable[MessageHeader]:
        """Yield every header in ``folder``'s index. May raise on a bad folder."""
        ...


@runtime_checkable
class MailStore(FolderTree, Protocol):
    """Everything the tool dispatcher needs from the desktop mail store."""

    def accounts(self) -> list[Account]: ...

    def default_account(self) -> Account | None: ...

    def root_folder(self, account: Account) -> Folder: ...

    def find_folder(self, uri: str) -> Folder | None: ...

    def account_for_folder(self, folder: Folder) -> Account | None: ...

    def load_message(self, folder: Folder, header: MessageHeader) -> ParsedMessage | None:
        """Parse the full message behind ``header``; ``None`` if unparseable."""
        ...

    def mark_read(self, folder: Folder, header: MessageHeader, read: bool) -> None: ...

    def open_compose(self, fields: ComposeFields) -> None:
        """Stage ``fields`` as a draft for the user to review. Never sends."""
        ...

    def list_calendars(self) -> list[Calendar]:
        """Raise ``CapabilityUnavailable`` when the store has no calendar support."""
        ...

    def address_books(self) -> list[AddressBook]: ...


def find_identity(store: MailStore, email_or_key: str | None) -> Identity | None:
    """Look an identity up by key or (case-insensitive) email address."""
    if not email_or_key:
        return None
    lowered = email_or_key.lower()
    for account in store.accounts():
        for identity in account.identities:
            if identity.key == email_or_key or (identity.email or "").lower() == lowered:
                return identity
    return None


def find_message(store: MailStore, folder: Folder, message_id: str) -> MessageHeader | None:
    """Linear scan of ``folder``'s index for the first header with ``message_id``."""
    for header in store.scan_messages(folder):
        if header.message_id == message_id:
            return header
    return None


def locate_message(
    store: MailStore, message_id: str, folder_path: str
) -> tuple[Folder, MessageHeader]:
    """Resolve a ``(messageId, folderPath)`` reference or raise a not-found error.

    Message-IDs are not unique across folders; the pair is the only reliable key.
    """
    folder = store.find_folder(folder_path)
    if folder is None:
        raise FolderNotFoundError(f"Folder not found: {folder_path}")
    header = find_message(store, folder, message_id)
    if header is None:
        raise MessageNotFoundError(f"Message not found: {message_id}")
    return folder, header
