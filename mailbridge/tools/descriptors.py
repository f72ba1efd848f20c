"""Static tool descriptors — the argument contract for every exposed tool."""

from mcp.types import Tool

_MESSAGE_ID = {"type": "string", "description": "The message ID (from searchMessages results)"}
_FOLDER_PATH = {"type": "string", "description": "The folder URI path (from searchMessages results)"}
_IS_HTML = {"type": "boolean", "description": "Set to true if body contains HTML markup (default: false)"}
_CC = {"type": "string", "description": "CC recipients (comma-separated)"}
_BCC = {"type": "string", "description": "BCC recipients (comma-separated)"}
_FROM = {"type": "string", "description": "Sender identity (email address or identity ID from listAccounts)"}
_ATTACHMENTS = {"type": "array", "items": {"type": "string"}, "description": "Array of file paths to attach"}


def _schema(properties: dict | None = None, required: list[str] | None = None) -> dict:
    return {"type": "object", "properties": properties or {}, "required": required or []}


TOOLS: tuple[Tool, ...] = (
    Tool(
        name="listAccounts",
        title="List Accounts",
        description="List all email accounts and their identities",
        inputSchema=_schema(),
    ),
    Tool(
        name="searchMessages",
        title="Search Mail",
        description=(
            "Search message headers and return IDs/folder paths you can use "
            "with getMessage to read full email content"
        ),
        inputSchema=_schema(
            {
                "query": {"type": "string", "description": "Text to search in subject, author, or recipients (use empty string to match all)"},
                "startDate": {"type": "string", "description": "Filter messages on or after this ISO 8601 date"},
                "endDate": {"type": "string", "description": "Filter messages on or before this ISO 8601 date"},
                "maxResults": {"type": "number", "description": "Maximum number of results to return (default 50, max 200)"},
                "sortOrder": {"type": "string", "description": "Date sort order: asc (oldest first) or desc (newest first, default)"},
            },
            ["query"],
        ),
    ),
    Tool(
        name="getMessage",
        title="Get Message",
        description="Read the full content of an email message by its ID",
        inputSchema=_schema(
            {"messageId": _MESSAGE_ID, "folderPath": _FOLDER_PATH},
            ["messageId", "folderPath"],
        ),
    ),
    Tool(
        name="sendMail",
        title="Compose Mail",
        description=(
            "Open a compose window with pre-filled recipient, subject, and body "
            "for user review before sending"
        ),
        inputSchema=_schema(
            {
                "to": {"type": "string", "description": "Recipient email address"},
                "subject": {"type": "string", "description": "Email subject line"},
                "body": {"type": "string", "description": "Email body text"},
                "cc": _CC,
                "bcc": _BCC,
                "isHtml": _IS_HTML,
                "from": _FROM,
                "attachments": _ATTACHMENTS,
            },
            ["to", "subject", "body"],
        ),
    ),
    Tool(
        name="listCalendars",
        title="List Calendars",
        description="Return the user's calendars",
        inputSchema=_schema(),
    ),
    Tool(
        name="searchContacts",
        title="Search Contacts",
        description="Find contacts the user interacted with",
        inputSchema=_schema(
            {"query": {"type": "string", "description": "Email address or name to search for"}},
            ["query"],
        ),
    ),
    Tool(
        name="replyToMessage",
        title="Reply to Message",
        description="Open a reply compose window for a specific message with proper threading",
        inputSchema=_schema(
            {
                "messageId": {"type": "string", "description": "The message ID to reply to (from searchMessages results)"},
                "folderPath": _FOLDER_PATH,
                "body": {"type": "string", "description": "Reply body text"},
                "replyAll": {"type": "boolean", "description": "Reply to all recipients (default: false)"},
                "isHtml": _IS_HTML,
                "to": {"type": "string", "description": "Override recipient email (default: original sender)"},
                "cc": _CC,
                "bcc": _BCC,
                "from": _FROM,
                "attachments": _ATTACHMENTS,
            },
            ["messageId", "folderPath", "body"],
        ),
    ),
    Tool(
        name="forwardMessage",
        title="Forward Message",
        description="Open a forward compose window for a message with attachments preserved",
        inputSchema=_schema(
            {
                "messageId": {"type": "string", "description": "The message ID to forward (from searchMessages results)"},
                "folderPath": _FOLDER_PATH,
                "to": {"type": "string", "description": "Recipient email address"},
                "body": {"type": "string", "description": "Additional text to prepend (optional)"},
                "isHtml": _IS_HTML,
                "cc": _CC,
                "bcc": _BCC,
                "from": _FROM,
                "attachments": {"type": "array", "items": {"type": "string"}, "description": "Array of additional file paths to attach"},
            },
            ["messageId", "folderPath", "to"],
        ),
    ),
    Tool(
        name="markAsRead",
        title="Mark As Read",
        description=(
            "Mark one or more messages as read (or unread). "
            "Accepts a single message or an array of messages."
        ),
        inputSchema=_schema(
            {
                "messages": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {"messageId": _MESSAGE_ID, "folderPath": _FOLDER_PATH},
                        "required": ["messageId", "folderPath"],
                    },
                    "description": "Array of {messageId, folderPath} objects to mark",
                },
                "read": {"type": "boolean", "description": "Set to true to mark as read, false to mark as unread (default: true)"},
            },
            ["messages"],
        ),
    ),
)


def descriptor_payload() -> list[dict]:
    """The ``tools/list`` payload: every descriptor in wire (camelCase) form."""
    return [tool.model_dump(by_alias=True, exclude_none=True) for tool in TOOLS]
