"""Tests for LocalMailStore against real Maildir trees under tmp_path."""

import json
import mailbox
from email.message import EmailMessage
from pathlib import Path

import pytest

from mailbridge.search.engine import iso_date
from mailbridge.store.maildir import LocalMailStore, MaildirFolder
from mailbridge.store.models import AttachmentRef, ComposeFields, MessageHeader
from mailbridge.store.protocol import CapabilityUnavailable, MailStore, MailStoreError
from mailbridge.tools.dispatcher import ToolDispatcher


# ── Helpers ────────────────────────────────────────────────────────────────────


def _message(
    subject: str,
    msgid: str,
    body: str = "Hello there.\nSecond line.",
    date: str = "Fri, 05 Jan 2024 12:00:00 +0000",
    html: str | None = None,
    attachment: tuple[str, bytes] | None = None,
) -> EmailMessage:
    msg = EmailMessage()
    msg["From"] = "Alice <alice@example.com>"
    msg["To"] = "me@example.com, Bob <bob@example.com>"
    msg["Cc"] = "carol@example.com"
    msg["Subject"] = subject
    msg["Date"] = date
    msg["Message-ID"] = f"<{msgid}>"
    if html is not None:
        msg.set_content(html, subtype="html")
    else:
        msg.set_content(body)
    if attachment is not None:
        name, data = attachment
        msg.add_attachment(data, maintype="application", subtype="pdf", filename=name)
    return msg


def _add(box: mailbox.Maildir, msg: EmailMessage, flags: str = "") -> str:
    stored = mailbox.MaildirMessage(msg)
    if flags:
        stored.set_subdir("cur")
        stored.set_flags(flags)
    return box.add(stored)


@pytest.fixture
def maildir_root(tmp_path: Path) -> Path:
    """work/ with three Inbox messages and one in Archive."""
    root = tmp_path / "work"
    box = mailbox.Maildir(root, create=True)
    _add(box, _message("Café plans", "cafe@example.com"), flags="S")
    _add(box, _message("Quarterly report", "report@example.com",
                       attachment=("report.pdf", b"%PDF-1.4 fake")), flags="F")
    _add(box, _message("Newsletter", "news@example.com", html="<p>Big <b>news</b></p>",
                       date="Sat, 06 Jan 2024 08:00:00 +0000"))
    archive = box.add_folder("Archive")
    _add(archive, _message("Old invoice", "old@example.com", date="Mon, 01 Jan 2023 09:00:00 +0000"))
    return root


@pytest.fixture
def accounts_file(tmp_path: Path, maildir_root: Path) -> Path:
    contacts = tmp_path / "contacts.json"
    contacts.write_text(json.dumps([
        {"id": "c1", "displayName": "Jane Doe", "email": "jane@x.com",
         "firstName": "Jane", "lastName": "Doe"},
        {"id": "c2", "displayName": "Team", "email": "team@x.com", "isMailList": True},
    ]))
    config = tmp_path / "mailbridge.json"
    config.write_text(json.dumps({
        "accounts": [{
            "key": "work",
            "name": "Work Mail",
            "path": str(maildir_root),
            "identities": [
                {"key": "me", "email": "me@example.com", "name": "Me"},
                {"key": "alt", "email": "alt@example.com", "name": "Alt"},
            ],
        }],
        "addressBooks": [str(contacts), str(tmp_path / "missing.json")],
    }))
    return config


@pytest.fixture
def store(accounts_file: Path) -> LocalMailStore:
    return LocalMailStore.from_file(accounts_file)


def _calendar(*lines: bytes) -> bytes:
    body = [b"BEGIN:VCALENDAR", b"VERSION:2.0", b"PRODID:-//mailbridge tests//EN", *lines,
            b"END:VCALENDAR"]
    return b"\r\n".join(body) + b"\r\n"


def _header(store: LocalMailStore, folder: MaildirFolder, message_id: str) -> MessageHeader:
    return next(h for h in store.scan_messages(folder) if h.message_id == message_id)


# ── Configuration ──────────────────────────────────────────────────────────────


class TestFromFile:
    def test_satisfies_protocol(self, store) -> None:
        assert isinstance(store, MailStore)

    def test_accounts_and_identities(self, store) -> None:
        [account] = store.accounts()
        assert (account.key, account.name, account.type) == ("work", "Work Mail", "maildir")
        assert [i.email for i in account.identities] == ["me@example.com", "alt@example.com"]
        assert account.default_identity.key == "me"
        assert store.default_account() == account

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(MailStoreError, match="Accounts file not found"):
            LocalMailStore.from_file(tmp_path / "nope.json")

    def test_invalid_json(self, tmp_path: Path) -> None:
        bad = tmp_path / "bad.json"
        bad.write_text("{oops")
        with pytest.raises(MailStoreError, match="not valid JSON"):
            LocalMailStore.from_file(bad)


# ── Folders ────────────────────────────────────────────────────────────────────


class TestFolders:
    def test_root_folder(self, store) -> None:
        root = store.root_folder(store.accounts()[0])
        assert root.uri == "maildir://work/"
        assert root.name == "Inbox"

    def test_children_and_lookup(self, store) -> None:
        root = store.root_folder(store.accounts()[0])
        [archive] = store.list_children(root)
        assert archive.uri == "maildir://work/Archive"
        assert archive.name == "Archive"
        assert store.find_folder("maildir://work/Archive") == archive
        assert store.find_folder("maildir://work/") == root
        assert store.account_for_folder(archive).key == "work"

    @pytest.mark.parametrize(
        "uri", ["", "maildir://work/Nope", "maildir://other/", "imap://work/"]
    )
    def test_unknown_folders(self, store, uri: str) -> None:
        assert store.find_folder(uri) is None


# ── Index ──────────────────────────────────────────────────────────────────────


class TestIndex:
    def test_headers_are_decoded(self, store) -> None:
        root = store.root_folder(store.accounts()[0])
        header = _header(store, root, "cafe@example.com")

        assert header.decoded_subject == "Café plans"
        assert header.subject != "Café plans"  # still RFC 2047 encoded
        assert header.decoded_author == "Alice <alice@example.com>"
        assert header.cc_list == "carol@example.com"
        assert iso_date(header.date_us) == "2024-01-05T12:00:00.000Z"

    def test_flags(self, store) -> None:
        root = store.root_folder(store.accounts()[0])
        cafe = _header(store, root, "cafe@example.com")
        report = _header(store, root, "report@example.com")
        news = _header(store, root, "news@example.com")
        assert (cafe.is_read, cafe.is_flagged) == (True, False)
        assert (report.is_read, report.is_flagged) == (False, True)
        assert (news.is_read, news.is_flagged) == (False, False)

    def test_refresh_picks_up_new_mail(self, store, maildir_root: Path) -> None:
        root = store.root_folder(store.accounts()[0])
        assert len(list(store.scan_messages(root))) == 3

        _add(mailbox.Maildir(maildir_root), _message("Late arrival", "late@example.com"))
        assert len(list(store.scan_messages(root))) == 3
        store.refresh(root)

        assert {h.message_id for h in store.scan_messages(root)} >= {"late@example.com"}

    def test_missing_date_is_zero(self, store, maildir_root: Path) -> None:
        msg = _message("Undated", "undated@example.com")
        del msg["Date"]
        _add(mailbox.Maildir(maildir_root), msg)
        root = store.root_folder(store.accounts()[0])
        assert _header(store, root, "undated@example.com").date_us == 0


# ── Messages ───────────────────────────────────────────────────────────────────


class TestLoadMessage:
    def test_plaintext_and_attachments(self, store) -> None:
        root = store.root_folder(store.accounts()[0])
        header = _header(store, root, "report@example.com")

        parsed = store.load_message(root, header)

        assert parsed.plaintext.startswith("Hello there.\nSecond line.")
        assert parsed.root.content_type == "multipart/mixed"
        [attachment] = parsed.attachments
        assert attachment.name == "report.pdf"
        assert attachment.content_type == "application/pdf"
        assert attachment.url == f"maildir://work/#{header.key}/0"

    def test_html_only_message(self, store) -> None:
        root = store.root_folder(store.accounts()[0])
        parsed = store.load_message(root, _header(store, root, "news@example.com"))
        assert parsed.plaintext is None
        assert parsed.root.content_type == "text/html"
        assert "<b>news</b>" in parsed.root.body

    def test_mark_read_persists_flag(self, store, maildir_root: Path) -> None:
        root = store.root_folder(store.accounts()[0])
        header = _header(store, root, "news@example.com")

        store.mark_read(root, header, True)

        assert _header(store, root, "news@example.com").is_read is True
        on_disk = mailbox.Maildir(maildir_root)[header.key]
        assert "S" in on_disk.get_flags()
        assert on_disk.get_subdir() == "cur"

        store.mark_read(root, header, False)
        assert "S" not in mailbox.Maildir(maildir_root)[header.key].get_flags()


# ── Drafts ─────────────────────────────────────────────────────────────────────


class TestOpenCompose:
    def _drafts(self, maildir_root: Path) -> list[mailbox.MaildirMessage]:
        return list(mailbox.Maildir(maildir_root).get_folder("Drafts"))

    def test_draft_written_to_drafts_folder(self, store, maildir_root: Path) -> None:
        account = store.accounts()[0]
        store.open_compose(ComposeFields(
            to="bob@x.com",
            cc="carol@x.com",
            subject="Re: Plans",
            body="<html><body>Hi</body></html>",
            headers={"In-Reply-To": "<cafe@example.com>"},
            identity=account.identities[1],
        ))

        [draft] = self._drafts(maildir_root)
        assert draft["To"] == "bob@x.com"
        assert draft["Cc"] == "carol@x.com"
        assert draft["Subject"] == "Re: Plans"
        assert draft["From"] == "Alt <alt@example.com>"
        assert draft["In-Reply-To"] == "<cafe@example.com>"
        assert "D" in draft.get_flags()
        assert "Hi" in draft.get_payload(decode=True).decode()

    def test_drafts_folder_reused(self, store, maildir_root: Path) -> None:
        store.open_compose(ComposeFields(to="a@x.com", subject="one", body="x"))
        store.open_compose(ComposeFields(to="b@x.com", subject="two", body="y"))
        assert sorted(d["Subject"] for d in self._drafts(maildir_root)) == ["one", "two"]

    def test_file_and_message_attachments(self, store, maildir_root: Path, tmp_path: Path) -> None:
        notes = tmp_path / "notes.txt"
        notes.write_bytes(b"some notes")
        root = store.root_folder(store.accounts()[0])
        report = _header(store, root, "report@example.com")
        [original] = store.load_message(root, report).attachments

        store.open_compose(ComposeFields(
            to="d@x.com",
            subject="Fwd: Quarterly report",
            body="x",
            attachments=[original, AttachmentRef(notes.as_uri(), "notes.txt", "text/plain")],
        ))

        [draft] = self._drafts(maildir_root)
        parts = {p.get_filename(): p.get_payload(decode=True) for p in draft.walk() if p.get_filename()}
        assert parts == {"report.pdf": b"%PDF-1.4 fake", "notes.txt": b"some notes"}

    def test_unreadable_attachment_is_left_out(self, store, maildir_root: Path, tmp_path: Path) -> None:
        gone = AttachmentRef((tmp_path / "gone.bin").as_uri(), "gone.bin")
        store.open_compose(ComposeFields(to="d@x.com", subject="s", body="x", attachments=[gone]))
        [draft] = self._drafts(maildir_root)
        assert not draft.is_multipart()


# ── Calendars & contacts ───────────────────────────────────────────────────────


class TestCalendarsAndContacts:
    def test_no_calendar_dir_is_unavailable(self, store) -> None:
        with pytest.raises(CapabilityUnavailable):
            store.list_calendars()

    def test_ics_files_become_calendars(self, tmp_path: Path, maildir_root: Path) -> None:
        calendars = tmp_path / "calendars"
        calendars.mkdir()
        (calendars / "home.ics").write_bytes(_calendar(b"X-WR-CALNAME:Family"))
        (calendars / "work.ics").write_bytes(_calendar())

        store = LocalMailStore([], calendar_dir=calendars)

        assert [(c.id, c.name, c.type) for c in store.list_calendars()] == [
            ("home", "Family", "ics"),
            ("work", "work", "ics"),
        ]

    def test_folded_and_escaped_calendar_name(self, tmp_path: Path) -> None:
        calendars = tmp_path / "calendars"
        calendars.mkdir()
        (calendars / "team.ics").write_bytes(
            _calendar(b"X-WR-CALNAME:Work\\, Team Calendar for the\r\n  whole department")
        )

        [calendar] = LocalMailStore([], calendar_dir=calendars).list_calendars()

        assert calendar.name == "Work, Team Calendar for the whole department"

    def test_unparseable_calendar_falls_back_to_stem(self, tmp_path: Path) -> None:
        calendars = tmp_path / "calendars"
        calendars.mkdir()
        (calendars / "broken.ics").write_bytes(b"not a calendar")

        [calendar] = LocalMailStore([], calendar_dir=calendars).list_calendars()

        assert calendar.name == "broken"

    def test_address_books(self, store) -> None:
        [book] = store.address_books()
        assert book.name == "contacts"
        assert [c.display_name for c in book.cards] == ["Jane Doe", "Team"]
        assert book.cards[1].is_mail_list is True

    def test_named_address_book(self, tmp_path: Path) -> None:
        path = tmp_path / "book.json"
        path.write_text(json.dumps({"name": "Clients", "cards": [{"email": "x@y.com"}]}))
        [book] = LocalMailStore([], address_book_files=[path]).address_books()
        assert book.name == "Clients"
        assert book.cards[0].id == "x@y.com"


# ── Through the dispatcher ─────────────────────────────────────────────────────


class TestDispatcherOverMaildir:
    def test_search_then_read(self, store) -> None:
        dispatcher = ToolDispatcher(store)

        results = dispatcher.call("searchMessages", {"query": "", "maxResults": 10})

        subjects = [r["subject"] for r in results]
        assert subjects[0] == "Newsletter"
        assert subjects[-1] == "Old invoice"
        assert set(subjects[1:3]) == {"Café plans", "Quarterly report"}
        old = results[-1]
        assert old["folder"] == "Archive"
        assert old["folderPath"] == "maildir://work/Archive"

        message = dispatcher.call(
            "getMessage", {"messageId": old["id"], "folderPath": old["folderPath"]}
        )
        assert message["body"].startswith("Hello there.")
        assert message["bodyIsHtml"] is False

    def test_html_body_flagged(self, store) -> None:
        message = ToolDispatcher(store).call(
            "getMessage", {"messageId": "news@example.com", "folderPath": "maildir://work/"}
        )
        assert message["bodyIsHtml"] is True

    def test_forward_stages_original_attachment(self, store, maildir_root: Path) -> None:
        result = ToolDispatcher(store).call("forwardMessage", {
            "messageId": "report@example.com",
            "folderPath": "maildir://work/",
            "to": "dave@x.com",
        })

        assert result == {"success": True, "message": "Forward window opened with 1 attachment(s)"}
        [draft] = mailbox.Maildir(maildir_root).get_folder("Drafts")
        assert draft["Subject"] == "Fwd: Quarterly report"
        assert draft["From"] == "Me <me@example.com>"

    def test_folded_subject_survives_reply_and_forward(
        self, accounts_file: Path, maildir_root: Path
    ) -> None:
        raw = (
            b"From: Alice <alice@example.com>\r\n"
            b"To: me@example.com\r\n"
            b"Subject: A fairly long subject line that a real mail client has folded\r\n"
            b" onto a continuation line\r\n"
            b"Date: Sun, 07 Jan 2024 10:00:00 +0000\r\n"
            b"Message-ID: <folded@example.com>\r\n"
            b"\r\n"
            b"Body.\r\n"
        )
        mailbox.Maildir(maildir_root).add(raw)
        dispatcher = ToolDispatcher(LocalMailStore.from_file(accounts_file))
        subject = (
            "A fairly long subject line that a real mail client has folded "
            "onto a continuation line"
        )

        [found] = dispatcher.call("searchMessages", {"query": "continuation"})
        assert found["subject"] == subject

        location = {"messageId": "folded@example.com", "folderPath": found["folderPath"]}
        reply = dispatcher.call("replyToMessage", {**location, "body": "Thanks"})
        forward = dispatcher.call("forwardMessage", {**location, "to": "dave@x.com"})

        assert reply == {"success": True, "message": "Reply window opened"}
        assert forward["success"] is True
        drafts = mailbox.Maildir(maildir_root).get_folder("Drafts")
        draft_subjects = sorted(" ".join(str(d["Subject"]).split()) for d in drafts)
        assert draft_subjects == [f"Fwd: {subject}", f"Re: {subject}"]
