"""Typed records exchanged between the mail store and the tool layer."""

from dataclasses import dataclass, field


# ── Accounts ───────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Identity:
    """A sending identity (From address) that belongs to one account."""

    key: str
    email: str
    full_name: str = ""


@dataclass(frozen=True)
class Account:
    """A configured mail account and its identities.

    ``default_identity`` is the first identity unless the configuration says
    otherwise; accounts without identities have none.
    """

    key: str
    name: str
    type: str
    identities: list[Identity] = field(default_factory=list)
    default_identity: Identity | None = None


# ── Messages ───────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class MessageHeader:
    """One entry of a folder's message index.

    The raw fields keep the header exactly as stored (RFC 2047 encoded words
    included); the decoded fields are what a user would read. Search matches
    against the decoded variants.
    """

    key: str                  # store-local key, stable while the message exists
    message_id: str           # Message-ID without angle brackets
    subject: str = ""
    author: str = ""
    recipients: str = ""
    cc_list: str = ""
    decoded_subject: str = ""
    decoded_author: str = ""
    decoded_recipients: str = ""
    date_us: int = 0          # microseconds since the epoch, 0 when unknown
    is_read: bool = False
    is_flagged: bool = False


@dataclass(frozen=True)
class AttachmentRef:
    """An attachment referenced by URL rather than by content."""

    url: str
    name: str
    content_type: str = "application/octet-stream"


@dataclass(frozen=True)
class MimePart:
    """A node of a parsed MIME tree. ``body`` is set for decoded text leaves."""

    content_type: str
    body: str | None = None
    parts: list["MimePart"] = field(default_factory=list)


@dataclass(frozen=True)
class ParsedMessage:
    """A fully loaded message: preferred plaintext, MIME tree, user attachments."""

    plaintext: str | None
    root: MimePart
    attachments: list[AttachmentRef] = field(default_factory=list)


# ── Compose ────────────────────────────────────────────────────────────────────


@dataclass
class ComposeFields:
    """Field set for one outgoing draft. Built per call, never persisted."""

    to: str = ""
    cc: str = ""
    bcc: str = ""
    subject: str = ""
    body: str = ""                                     # full HTML document
    attachments: list[AttachmentRef] = field(default_factory=list)
    headers: dict[str, str] = field(default_factory=dict)
    identity: Identity | None = None


@dataclass
class AttachmentResult:
    """Partial-success record for attachment staging."""

    added: int = 0
    failed: list[str] = field(default_factory=list)


# ── Calendars & contacts ───────────────────────────────────────────────────────


@dataclass(frozen=True)
class Calendar:
    id: str
    name: str
    type: str
    read_only: bool


@dataclass(frozen=True)
class Contact:
    id: str
    display_name: str = ""
    email: str = ""
    first_name: str = ""
    last_name: str = ""
    is_mail_list: bool = False


@dataclass(frozen=True)
class AddressBook:
    name: str
    cards: list[Contact] = field(default_factory=list)
