"""LocalMailStore — the capability surface over local Maildir trees.

Each account is one Maildir directory; its own ``cur``/``new`` hold the
inbox and nested ``.Name`` directories are subfolders (Python ``mailbox``
nesting). Folder URIs look like ``maildir://<account>/<sub>/<subsub>``.

Drafts are written to the account's ``Drafts`` folder with the ``D`` flag for
the user to review and send from their own client. Nothing here sends mail.
"""

import dataclasses
import email
import email.errors
import email.policy
import json
import logging
import mailbox
import os
import re
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from email.header import decode_header, make_header
from email.message import EmailMessage, Message
from email.utils import formataddr, formatdate, make_msgid, parsedate_to_datetime
from pathlib import Path
from typing import Any
from urllib.parse import quote, unquote, urlparse
from urllib.request import url2pathname

import icalendar

from mailbridge.store.models import (
    Account,
    AddressBook,
    AttachmentRef,
    Calendar,
    ComposeFields,
    Contact,
    Identity,
    MessageHeader,
    MimePart,
    ParsedMessage,
)
from mailbridge.store.protocol import CapabilityUnavailable, Folder, MailStoreError

logger = logging.getLogger(__name__)

URI_SCHEME = "maildir://"
DRAFTS_FOLDER = "Drafts"
ROOT_FOLDER_NAME = "Inbox"

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass(frozen=True)
class MaildirFolder:
    """Folder handle: account key plus the folder names below the account root."""

    account_key: str
    parts: tuple[str, ...]
    path: Path

    @property
    def uri(self) -> str:
        return URI_SCHEME + self.account_key + "/" + "/".join(quote(p, safe="") for p in self.parts)

    @property
    def name(self) -> str:
        return self.parts[-1] if self.parts else ROOT_FOLDER_NAME


# ── Header helpers ─────────────────────────────────────────────────────────────


# RFC 5322 folding: a line break followed by whitespace continues the header.
_FOLDING = re.compile(r"\r?\n[ \t]+")


def _raw_header(msg: Message, name: str) -> str:
    """Header value as stored, unfolded onto one line."""
    value = msg.get(name)
    if value is None:
        return ""
    return _FOLDING.sub(" ", str(value)).strip("\r\n")


def _decoded(value: str) -> str:
    """RFC 2047 decode; the raw value is kept when it cannot be decoded."""
    if not value:
        return ""
    try:
        return str(make_header(decode_header(value)))
    except (email.errors.HeaderParseError, LookupError, UnicodeError):
        return value


def _date_us(value: str) -> int:
    if not value:
        return 0
    try:
        moment = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        return 0
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return (moment - _EPOCH) // timedelta(microseconds=1)


def header_from_message(key: str, msg: mailbox.MaildirMessage) -> MessageHeader:
    subject = _raw_header(msg, "Subject")
    author = _raw_header(msg, "From")
    recipients = _raw_header(msg, "To")
    message_id = _raw_header(msg, "Message-ID").strip().strip("<>")
    flags = msg.get_flags()
    return MessageHeader(
        key=key,
        message_id=message_id or f"{key}@mailbridge.invalid",
        subject=subject,
        author=author,
        recipients=recipients,
        cc_list=_raw_header(msg, "Cc"),
        decoded_subject=_decoded(subject),
        decoded_author=_decoded(author),
        decoded_recipients=_decoded(recipients),
        date_us=_date_us(_raw_header(msg, "Date")),
        is_read="S" in flags,
        is_flagged="F" in flags,
    )


def _mime_tree(part: EmailMessage) -> MimePart:
    if part.is_multipart():
        return MimePart(
            content_type=part.get_content_type(),
            parts=[_mime_tree(sub) for sub in part.iter_parts()],
        )
    body = None
    if part.get_content_maintype() == "text" and not part.is_attachment():
        try:
            body = part.get_content()
        except (LookupError, UnicodeError) as exc:
            logger.debug("Undecodable %s part: %s", part.get_content_type(), exc)
    return MimePart(content_type=part.get_content_type(), body=body)


def _plaintext(msg: EmailMessage) -> str | None:
    part = msg.get_body(preferencelist=("plain",))
    if part is None:
        return None
    try:
        return part.get_content()
    except (LookupError, UnicodeError):
        return None


def _user_attachments(msg: EmailMessage) -> list[EmailMessage]:
    return [part for part in msg.walk() if part.is_attachment()]


# ── Store ──────────────────────────────────────────────────────────────────────


class LocalMailStore:
    """``MailStore`` over one Maildir tree per account.

    Each folder has a header index that ``refresh`` brings up to date with the
    files on disk: new keys are parsed, vanished keys dropped. Flag changes made
    by other programs to messages already indexed are not picked up until the
    store is recreated.

    Usage::

        store = LocalMailStore.from_file(Path("mailbridge.json"))
        inbox = store.root_folder(store.accounts()[0])
    """

    def __init__(
        self,
        accounts: list[tuple[Account, Path]],
        default_account: str | None = None,
        address_book_files: Iterable[Path] = (),
        calendar_dir: Path | None = None,
    ) -> None:
        self._accounts = [account for account, _ in accounts]
        self._roots = {account.key: path for account, path in accounts}
        self._default_key = default_account
        self._address_book_files = list(address_book_files)
        self._calendar_dir = calendar_dir
        self._index: dict[str, dict[str, MessageHeader]] = {}

    @classmethod
    def from_file(cls, path: Path) -> "LocalMailStore":
        """Load the accounts configuration JSON file.

        Example::

            {"accounts": [{"key": "work", "name": "Work", "path": "~/Mail/work",
                           "identities": [{"key": "me", "email": "me@example.com",
                                           "name": "Me"}]}],
             "defaultAccount": "work",
             "addressBooks": ["~/contacts.json"],
             "calendarDir": "~/calendars"}
        """
        try:
            config = json.loads(Path(path).read_text(encoding="utf-8"))
        except FileNotFoundError:
            raise MailStoreError(f"Accounts file not found: {path}") from None
        except ValueError as exc:
            raise MailStoreError(f"Accounts file {path} is not valid JSON: {exc}") from exc

        accounts = [_account_from_config(entry) for entry in config.get("accounts", [])]
        calendar_dir = config.get("calendarDir")
        return cls(
            accounts,
            default_account=config.get("defaultAccount"),
            address_book_files=[Path(p).expanduser() for p in config.get("addressBooks", [])],
            calendar_dir=Path(calendar_dir).expanduser() if calendar_dir else None,
        )

    # ── Accounts ───────────────────────────────────────────────────────────────

    def accounts(self) -> list[Account]:
        return list(self._accounts)

    def default_account(self) -> Account | None:
        for account in self._accounts:
            if account.key == self._default_key:
                return account
        return self._accounts[0] if self._accounts else None

    def account_for_folder(self, folder: Folder) -> Account | None:
        key = getattr(folder, "account_key", None)
        return next((a for a in self._accounts if a.key == key), None)

    # ── Folder tree ────────────────────────────────────────────────────────────

    def root_folder(self, account: Account) -> MaildirFolder:
        return MaildirFolder(account.key, (), self._roots[account.key])

    def find_folder(self, uri: str) -> MaildirFolder | None:
        if not uri or not uri.startswith(URI_SCHEME):
            return None
        account_key, _, tail = uri[len(URI_SCHEME):].partition("/")
        root = self._roots.get(account_key)
        if root is None:
            return None
        parts = tuple(unquote(p) for p in tail.split("/") if p)
        path = root
        for part in parts:
            path = path / f".{part}"
        if not (path / "cur").is_dir():
            return None
        return MaildirFolder(account_key, parts, path)

    def list_children(self, folder: Folder) -> list[MaildirFolder]:
        parent = self._as_maildir_folder(folder)
        names = sorted(self._open(parent).list_folders())
        return [
            MaildirFolder(parent.account_key, parent.parts + (name,), parent.path / f".{name}")
            for name in names
        ]

    def refresh(self, folder: Folder) -> None:
        target = self._as_maildir_folder(folder)
        box = self._open(target)
        known = self._index.get(target.uri, {})
        current: dict[str, MessageHeader] = {}
        for key in box.iterkeys():
            header = known.get(key)
            if header is None:
                try:
                    header = header_from_message(key, box.get_message(key))
                except (OSError, KeyError) as exc:
                    logger.debug("Skipping unreadable message %s in %s: %s", key, target.uri, exc)
                    continue
            current[key] = header
        self._index[target.uri] = current

    def scan_messages(self, folder: Folder) -> list[MessageHeader]:
        if folder.uri not in self._index:
            self.refresh(folder)
        return list(self._index[folder.uri].values())

    # ── Messages ───────────────────────────────────────────────────────────────

    def load_message(self, folder: Folder, header: MessageHeader) -> ParsedMessage | None:
        msg = self._parse(self._as_maildir_folder(folder), header.key)
        if msg is None:
            return None
        attachments = [
            AttachmentRef(
                url=f"{folder.uri}#{header.key}/{index}",
                name=part.get_filename() or f"attachment-{index + 1}",
                content_type=part.get_content_type(),
            )
            for index, part in enumerate(_user_attachments(msg))
        ]
        return ParsedMessage(plaintext=_plaintext(msg), root=_mime_tree(msg), attachments=attachments)

    def mark_read(self, folder: Folder, header: MessageHeader, read: bool) -> None:
        target = self._as_maildir_folder(folder)
        box = self._open(target)
        msg = box[header.key]
        if read:
            msg.add_flag("S")
        else:
            msg.remove_flag("S")
        msg.set_subdir("cur")
        box[header.key] = msg
        index = self._index.get(target.uri)
        if index is not None and header.key in index:
            index[header.key] = dataclasses.replace(index[header.key], is_read=read)

    def open_compose(self, fields: ComposeFields) -> None:
        account = self._account_for_identity(fields.identity) or self.default_account()
        if account is None:
            raise MailStoreError("No account configured to stage the draft in")

        msg = EmailMessage()
        if fields.identity is not None:
            msg["From"] = formataddr((fields.identity.full_name, fields.identity.email))
        for name, value in (("To", fields.to), ("Cc", fields.cc), ("Bcc", fields.bcc)):
            if value:
                msg[name] = value
        msg["Subject"] = fields.subject
        msg["Date"] = formatdate(localtime=True)
        msg["Message-ID"] = make_msgid()
        for name, value in fields.headers.items():
            msg[name] = value
        msg.set_content(fields.body, subtype="html")

        for ref in fields.attachments:
            data = self._attachment_bytes(ref)
            if data is None:
                logger.warning("Attachment %s could not be read; leaving it out", ref.name)
                continue
            maintype, _, subtype = ref.content_type.partition("/")
            msg.add_attachment(
                data,
                maintype=maintype or "application",
                subtype=subtype or "octet-stream",
                filename=ref.name,
            )

        drafts = self._drafts(account)
        draft = mailbox.MaildirMessage(msg)
        draft.set_subdir("cur")
        draft.set_flags("DS")
        key = drafts.add(draft)
        logger.info("Staged draft %s in %s/%s", key, account.key, DRAFTS_FOLDER)

    # ── Calendars & contacts ───────────────────────────────────────────────────

    def list_calendars(self) -> list[Calendar]:
        if self._calendar_dir is None or not self._calendar_dir.is_dir():
            raise CapabilityUnavailable("Calendar not available")
        return [
            Calendar(
                id=path.stem,
                name=_calendar_name(path),
                type="ics",
                read_only=not os.access(path, os.W_OK),
            )
            for path in sorted(self._calendar_dir.glob("*.ics"))
        ]

    def address_books(self) -> list[AddressBook]:
        books: list[AddressBook] = []
        for path in self._address_book_files:
            try:
                data = json.loads(path.read_text(encoding="utf-8"))
            except (OSError, ValueError) as exc:
                logger.warning("Skipping address book %s: %s", path, exc)
                continue
            if isinstance(data, dict):
                name, cards = data.get("name") or path.stem, data.get("cards", [])
            else:
                name, cards = path.stem, data
            books.append(AddressBook(
                name=name,
                cards=[_contact_from_config(c) for c in cards if isinstance(c, dict)],
            ))
        return books

    # ── Internal ───────────────────────────────────────────────────────────────

    @staticmethod
    def _as_maildir_folder(folder: Folder) -> MaildirFolder:
        if not isinstance(folder, MaildirFolder):
            raise MailStoreError(f"Not a Maildir folder: {folder.uri}")
        return folder

    @staticmethod
    def _open(folder: MaildirFolder) -> mailbox.Maildir:
        return mailbox.Maildir(folder.path, factory=None, create=False)

    def _parse(self, folder: MaildirFolder, key: str) -> EmailMessage | None:
        try:
            with self._open(folder).get_file(key) as handle:
                return email.message_from_binary_file(handle, policy=email.policy.default)
        except (OSError, KeyError) as exc:
            logger.warning("Could not load message %s from %s: %s", key, folder.uri, exc)
            return None

    def _account_for_identity(self, identity: Identity | None) -> Account | None:
        if identity is None:
            return None
        return next((a for a in self._accounts if identity in a.identities), None)

    def _drafts(self, account: Account) -> mailbox.Maildir:
        root = mailbox.Maildir(self._roots[account.key], factory=None, create=False)
        if DRAFTS_FOLDER in root.list_folders():
            return root.get_folder(DRAFTS_FOLDER)
        return root.add_folder(DRAFTS_FOLDER)

    def _attachment_bytes(self, ref: AttachmentRef) -> bytes | None:
        try:
            if ref.url.startswith("file:"):
                return Path(url2pathname(urlparse(ref.url).path)).read_bytes()
            folder_uri, _, locator = ref.url.rpartition("#")
            key, _, index = locator.rpartition("/")
            folder = self.find_folder(folder_uri)
            msg = self._parse(folder, key) if folder is not None else None
            if msg is None:
                return None
            return _user_attachments(msg)[int(index)].get_payload(decode=True)
        except (OSError, ValueError, IndexError) as exc:
            logger.debug("Attachment %s unreadable: %s", ref.url, exc)
            return None


# ── Configuration parsing ──────────────────────────────────────────────────────


def _account_from_config(entry: dict[str, Any]) -> tuple[Account, Path]:
    identities = [
        Identity(key=str(i["key"]), email=str(i.get("email", "")), full_name=str(i.get("name", "")))
        for i in entry.get("identities", [])
    ]
    default_key = entry.get("defaultIdentity")
    default = next((i for i in identities if i.key == default_key), None)
    if default is None and identities:
        default = identities[0]
    account = Account(
        key=str(entry["key"]),
        name=str(entry.get("name") or entry["key"]),
        type="maildir",
        identities=identities,
        default_identity=default,
    )
    return account, Path(entry["path"]).expanduser()


def _contact_from_config(card: dict[str, Any]) -> Contact:
    return Contact(
        id=str(card.get("id") or card.get("uid") or card.get("email", "")),
        display_name=card.get("displayName", ""),
        email=card.get("email", ""),
        first_name=card.get("firstName", ""),
        last_name=card.get("lastName", ""),
        is_mail_list=bool(card.get("isMailList", False)),
    )


def _calendar_name(path: Path) -> str:
    """``X-WR-CALNAME`` from the calendar file, else the file stem."""
    try:
        calendar = icalendar.Calendar.from_ical(path.read_bytes())
    except (OSError, ValueError) as exc:
        logger.warning("Could not read calendar %s: %s", path, exc)
        return path.stem
    name = calendar.get("X-WR-CALNAME")
    return str(name) if name else path.stem
