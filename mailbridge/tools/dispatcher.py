"""ToolDispatcher — maps tool names to handlers over a ``MailStore``."""

import logging
from collections.abc import Callable, Mapping
from enum import Enum
from types import MappingProxyType
from typing import Any

from mailbridge.compose.builder import ComposeBuilder
from mailbridge.sanitize import strip_control_chars
from mailbridge.search.engine import FolderSearchEngine, SearchQuery, iso_date
from mailbridge.store.models import MimePart, ParsedMessage
from mailbridge.store.protocol import (
    CapabilityUnavailable,
    MailStore,
    MailStoreError,
    find_message,
    locate_message,
)
from mailbridge.tools.descriptors import TOOLS, descriptor_payload

logger = logging.getLogger(__name__)

MAX_CONTACT_RESULTS = 50
NO_BODY_TEXT = "(Could not extract body text)"

Handler = Callable[[dict[str, Any]], Any]


class ToolName(str, Enum):
    """The closed set of tools a client may call."""

    LIST_ACCOUNTS = "listAccounts"
    SEARCH_MESSAGES = "searchMessages"
    GET_MESSAGE = "getMessage"
    SEND_MAIL = "sendMail"
    REPLY_TO_MESSAGE = "replyToMessage"
    FORWARD_MESSAGE = "forwardMessage"
    MARK_AS_READ = "markAsRead"
    LIST_CALENDARS = "listCalendars"
    SEARCH_CONTACTS = "searchContacts"


class UnknownToolError(Exception):
    """Raised for a tool name outside ``ToolName``; a protocol-level failure."""


_REQUIRED: dict[str, tuple[str, ...]] = {
    tool.name: tuple(tool.inputSchema.get("required", [])) for tool in TOOLS
}


def extract_body(parsed: ParsedMessage) -> tuple[str, bool]:
    """Plaintext if the store produced any, else the first text leaf of the MIME tree."""
    plaintext = strip_control_chars(parsed.plaintext)
    if plaintext:
        return plaintext, False
    found = _find_text_part(parsed.root)
    if found is None:
        return NO_BODY_TEXT, False
    text, is_html = found
    return strip_control_chars(text) or "", is_html


def _find_text_part(part: MimePart) -> tuple[str, bool] | None:
    # Children are searched before the part itself.
    for sub in part.parts:
        found = _find_text_part(sub)
        if found is not None:
            return found
    if part.content_type == "text/html" and part.body:
        return part.body, True
    if part.content_type == "text/plain" and part.body:
        return part.body, False
    return None


class ToolDispatcher:
    """Fixed registry from ``ToolName`` to handler, built once per store.

    Handler failures are application errors: they come back as ordinary
    payloads carrying an ``error`` field. Only an unknown tool name raises.

    Usage::

        dispatcher = ToolDispatcher(store)
        payload = dispatcher.call("searchMessages", {"query": "invoice"})
    """

    def __init__(
        self,
        store: MailStore,
        search_engine: FolderSearchEngine | None = None,
        composer: ComposeBuilder | None = None,
    ) -> None:
        self._store = store
        self._search = search_engine or FolderSearchEngine(store)
        self._compose = composer or ComposeBuilder(store)
        self._handlers: Mapping[ToolName, Handler] = MappingProxyType({
            ToolName.LIST_ACCOUNTS: self._list_accounts,
            ToolName.SEARCH_MESSAGES: self._search_messages,
            ToolName.GET_MESSAGE: self._get_message,
            ToolName.SEND_MAIL: self._send_mail,
            ToolName.REPLY_TO_MESSAGE: self._reply_to_message,
            ToolName.FORWARD_MESSAGE: self._forward_message,
            ToolName.MARK_AS_READ: self._mark_as_read,
            ToolName.LIST_CALENDARS: self._list_calendars,
            ToolName.SEARCH_CONTACTS: self._search_contacts,
        })

    @property
    def handlers(self) -> Mapping[ToolName, Handler]:
        return self._handlers

    @staticmethod
    def descriptors() -> list[dict[str, Any]]:
        return descriptor_payload()

    def call(self, name: str, arguments: dict[str, Any] | None = None) -> Any:
        """Run one tool and return its JSON-serialisable payload."""
        try:
            tool = ToolName(name)
        except ValueError:
            raise UnknownToolError(f"Unknown tool: {name}") from None

        args = dict(arguments) if isinstance(arguments, dict) else {}
        if tool is ToolName.MARK_AS_READ:
            args = self._normalise_mark_args(args)
        missing = [key for key in _REQUIRED[tool.value] if args.get(key) is None]
        if missing:
            return {"error": f"Missing required argument(s): {', '.join(missing)}"}

        logger.debug("Tool call %s %s", tool.value, sorted(args))
        try:
            return self._handlers[tool](args)
        except MailStoreError as exc:
            return {"error": str(exc)}
        except Exception as exc:  # noqa: BLE001
            logger.error("Tool %s failed: %s", tool.value, exc, exc_info=True)
            return {"error": str(exc)}

    # ── Handlers ───────────────────────────────────────────────────────────────

    def _list_accounts(self, args: dict[str, Any]) -> list[dict[str, Any]]:
        return [
            {
                "id": account.key,
                "name": account.name,
                "type": account.type,
                "identities": [
                    {
                        "id": identity.key,
                        "email": identity.email,
                        "name": identity.full_name,
                        "isDefault": identity == account.default_identity,
                    }
                    for identity in account.identities
                ],
            }
            for account in self._store.accounts()
        ]

    def _search_messages(self, args: dict[str, Any]) -> list[dict[str, Any]]:
        query = SearchQuery.from_arguments(
            query=args.get("query") or "",
            start_date=args.get("startDate"),
            end_date=args.get("endDate"),
            max_results=args.get("maxResults"),
            sort_order=args.get("sortOrder"),
        )
        roots = [self._store.root_folder(account) for account in self._store.accounts()]
        return self._search.search(roots, query)

    def _get_message(self, args: dict[str, Any]) -> dict[str, Any]:
        folder, header = locate_message(self._store, args["messageId"], args["folderPath"])
        parsed = self._store.load_message(folder, header)
        if parsed is None:
            return {"error": "Could not parse message"}
        body, body_is_html = extract_body(parsed)
        return {
            "id": header.message_id,
            "subject": strip_control_chars(header.decoded_subject or header.subject),
            "author": strip_control_chars(header.decoded_author or header.author),
            "recipients": strip_control_chars(header.decoded_recipients or header.recipients),
            "ccList": strip_control_chars(header.cc_list),
            "date": iso_date(header.date_us),
            "body": body,
            "bodyIsHtml": body_is_html,
        }

    def _send_mail(self, args: dict[str, Any]) -> dict[str, Any]:
        return self._compose.compose_new(
            to=args["to"],
            subject=args["subject"],
            body=args["body"],
            cc=args.get("cc"),
            bcc=args.get("bcc"),
            is_html=bool(args.get("isHtml", False)),
            from_=args.get("from"),
            attachments=args.get("attachments"),
        )

    def _reply_to_message(self, args: dict[str, Any]) -> dict[str, Any]:
        return self._compose.reply(
            message_id=args["messageId"],
            folder_path=args["folderPath"],
            body=args["body"],
            reply_all=bool(args.get("replyAll", False)),
            is_html=bool(args.get("isHtml", False)),
            to=args.get("to"),
            cc=args.get("cc"),
            bcc=args.get("bcc"),
            from_=args.get("from"),
            attachments=args.get("attachments"),
        )

    def _forward_message(self, args: dict[str, Any]) -> dict[str, Any]:
        return self._compose.forward(
            message_id=args["messageId"],
            folder_path=args["folderPath"],
            to=args["to"],
            body=args.get("body"),
            is_html=bool(args.get("isHtml", False)),
            cc=args.get("cc"),
            bcc=args.get("bcc"),
            from_=args.get("from"),
            attachments=args.get("attachments"),
        )

    @staticmethod
    def _normalise_mark_args(args: dict[str, Any]) -> dict[str, Any]:
        """Accept one ``{messageId, folderPath}`` in place of a list."""
        messages = args.get("messages")
        if isinstance(messages, dict):
            args["messages"] = [messages]
        elif messages is None and "messageId" in args:
            args["messages"] = [
                {"messageId": args.get("messageId"), "folderPath": args.get("folderPath")}
            ]
        return args

    def _mark_as_read(self, args: dict[str, Any]) -> list[dict[str, Any]]:
        read = args.get("read") is not False
        results: list[dict[str, Any]] = []
        for item in args["messages"]:
            item = item if isinstance(item, dict) else {}
            message_id = item.get("messageId")
            folder_path = item.get("folderPath")
            outcome: dict[str, Any] = {"messageId": message_id, "folderPath": folder_path}
            try:
                folder = self._store.find_folder(folder_path) if folder_path else None
                if folder is None:
                    outcome["error"] = "Folder not found"
                else:
                    header = find_message(self._store, folder, message_id)
                    if header is None:
                        outcome["error"] = "Message not found"
                    else:
                        self._store.mark_read(folder, header, read)
                        outcome.update(success=True, read=read)
            except Exception as exc:  # noqa: BLE001
                logger.warning("markAsRead failed for %s: %s", message_id, exc)
                outcome["error"] = str(exc)
            results.append(outcome)
        return results

    def _list_calendars(self, args: dict[str, Any]) -> Any:
        try:
            calendars = self._store.list_calendars()
        except CapabilityUnavailable:
            return {"error": "Calendar not available"}
        return [
            {"id": c.id, "name": c.name, "type": c.type, "readOnly": c.read_only}
            for c in calendars
        ]

    def _search_contacts(self, args: dict[str, Any]) -> list[dict[str, Any]]:
        needle = str(args.get("query") or "").lower()
        results: list[dict[str, Any]] = []
        for book in self._store.address_books():
            for card in book.cards:
                if card.is_mail_list:
                    continue
                haystack = (card.email, card.display_name, card.first_name, card.last_name)
                if any(needle in (value or "").lower() for value in haystack):
                    results.append({
                        "id": card.id,
                        "displayName": card.display_name,
                        "email": card.email,
                        "firstName": card.first_name,
                        "lastName": card.last_name,
                        "addressBook": book.name,
                    })
                if len(results) >= MAX_CONTACT_RESULTS:
                    return results
        return results
