"""Shared pytest fixtures — an in-memory mail store standing in for a real one."""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone

import pytest

from mailbridge.store.models import (
    Account,
    AddressBook,
    AttachmentRef,
    Calendar,
    ComposeFields,
    Identity,
    MessageHeader,
    MimePart,
    ParsedMessage,
)
from mailbridge.store.protocol import CapabilityUnavailable


def us(year: int, month: int, day: int, hour: int = 0, minute: int = 0) -> int:
    """Microseconds since the epoch for a UTC wall-clock time."""
    moment = datetime(year, month, day, hour, minute, tzinfo=timezone.utc)
    return int(moment.timestamp()) * 1_000_000


@dataclass(frozen=True)
class FakeFolder:
    uri: str
    name: str


@dataclass
class FakeStore:
    """Dict-backed ``MailStore``. Tests poke the dicts directly."""

    account_list: list[Account] = field(default_factory=list)
    roots: dict[str, FakeFolder] = field(default_factory=dict)
    folders: dict[str, FakeFolder] = field(default_factory=dict)
    children: dict[str, list[FakeFolder]] = field(default_factory=dict)
    messages: dict[str, list[MessageHeader]] = field(default_factory=dict)
    parsed: dict[str, ParsedMessage] = field(default_factory=dict)
    folder_accounts: dict[str, Account] = field(default_factory=dict)
    composed: list[ComposeFields] = field(default_factory=list)
    read_marks: list[tuple[str, str, bool]] = field(default_factory=list)
    calendars: list[Calendar] | None = None
    books: list[AddressBook] = field(default_factory=list)
    broken: set[str] = field(default_factory=set)
    refreshed: list[str] = field(default_factory=list)

    # ── Builders ───────────────────────────────────────────────────────────────

    def add_account(self, account: Account) -> FakeFolder:
        root = FakeFolder(f"fake://{account.key}/", "Inbox")
        self.account_list.append(account)
        self.roots[account.key] = root
        self._register(root, account)
        return root

    def add_folder(self, parent: FakeFolder, name: str) -> FakeFolder:
        folder = FakeFolder(f"{parent.uri.rstrip('/')}/{name}", name)
        self.children.setdefault(parent.uri, []).append(folder)
        self._register(folder, self.folder_accounts[parent.uri])
        return folder

    def add_message(
        self, folder: FakeFolder, header: MessageHeader, parsed: ParsedMessage | None = None
    ) -> MessageHeader:
        self.messages[folder.uri].append(header)
        if parsed is not None:
            self.parsed[header.key] = parsed
        return header

    def _register(self, folder: FakeFolder, account: Account) -> None:
        self.folders[folder.uri] = folder
        self.messages[folder.uri] = []
        self.folder_accounts[folder.uri] = account

    # ── MailStore ──────────────────────────────────────────────────────────────

    def accounts(self) -> list[Account]:
        return list(self.account_list)

    def default_account(self) -> Account | None:
        return self.account_list[0] if self.account_list else None

    def root_folder(self, account: Account) -> FakeFolder:
        return self.roots[account.key]

    def find_folder(self, uri: str) -> FakeFolder | None:
        return self.folders.get(uri)

    def account_for_folder(self, folder: FakeFolder) -> Account | None:
        return self.folder_accounts.get(folder.uri)

    def list_children(self, folder: FakeFolder) -> list[FakeFolder]:
        return list(self.children.get(folder.uri, []))

    def refresh(self, folder: FakeFolder) -> None:
        self.refreshed.append(folder.uri)

    def scan_messages(self, folder: FakeFolder) -> list[MessageHeader]:
        if folder.uri in self.broken:
            raise OSError(f"cannot open {folder.uri}")
        return list(self.messages[folder.uri])

    def load_message(self, folder: FakeFolder, header: MessageHeader) -> ParsedMessage | None:
        return self.parsed.get(header.key)

    def mark_read(self, folder: FakeFolder, header: MessageHeader, read: bool) -> None:
        self.read_marks.append((folder.uri, header.message_id, read))
        headers = self.messages[folder.uri]
        headers[headers.index(header)] = replace(header, is_read=read)

    def open_compose(self, fields: ComposeFields) -> None:
        self.composed.append(fields)

    def list_calendars(self) -> list[Calendar]:
        if self.calendars is None:
            raise CapabilityUnavailable("Calendar not available")
        return list(self.calendars)

    def address_books(self) -> list[AddressBook]:
        return list(self.books)


# ── Fixtures ───────────────────────────────────────────────────────────────────


ME = Identity(key="id1", email="me@example.com", full_name="Me Myself")
ALT = Identity(key="id2", email="alt@example.com", full_name="Alt Me")
WORK = Account(key="work", name="Work", type="fake", identities=[ME, ALT], default_identity=ME)


@pytest.fixture
def fake_store() -> FakeStore:
    """An empty store."""
    return FakeStore()


@pytest.fixture
def mail_store() -> FakeStore:
    """One account, an Inbox with one threaded message, and an empty Archive."""
    store = FakeStore()
    inbox = store.add_account(WORK)
    store.add_folder(inbox, "Archive")
    store.add_message(
        inbox,
        MessageHeader(
            key="1",
            message_id="abc@example.com",
            subject="Quarterly report",
            author="Alice <alice@example.com>",
            recipients="me@example.com, Bob <bob@example.com>",
            cc_list="Carol <carol@example.com>",
            date_us=us(2024, 1, 5, 12),
        ),
        ParsedMessage(
            plaintext="Numbers attached.\nSee page 2.",
            root=MimePart("multipart/mixed", parts=[
                MimePart("text/plain", "Numbers attached.\nSee page 2."),
                MimePart("application/pdf"),
            ]),
            attachments=[AttachmentRef("fake://work/#1/0", "report.pdf", "application/pdf")],
        ),
    )
    return store
