"""ComposeBuilder — new message, threaded reply, and forward drafts.

All three variants describe their draft as a ``DraftSpec`` and share one
``_open`` step. The draft is always staged as a *new* message: a native
reply/forward compose type would have the compose surface overwrite the body
we built, so threading headers and the quote/forward block are added by hand.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

from mailbridge.compose.addresses import reply_all_cc, split_addresses
from mailbridge.compose.attachments import stage_attachments
from mailbridge.compose.html import (
    format_body_html,
    forward_block,
    quote_block,
    wrap_document,
)
from mailbridge.store.models import Account, AttachmentRef, ComposeFields, Identity
from mailbridge.store.protocol import MailStore, find_identity, locate_message

logger = logging.getLogger(__name__)


@dataclass
class DraftSpec:
    """What differs between the three compose variants."""

    to: str
    subject: str
    body_html: str
    opened_message: str
    cc: str = ""
    bcc: str = ""
    headers: dict[str, str] = field(default_factory=dict)
    attachments: list[AttachmentRef] = field(default_factory=list)
    attachment_paths: Any = None
    identity_hint: str | None = None
    fallback_account: Account | None = None


def _prefixed(subject: str, prefix: str) -> str:
    if subject.lower().startswith(prefix.lower()):
        return subject
    return f"{prefix} {subject}"


class ComposeBuilder:
    """Builds compose field sets and hands them to the store's compose operation.

    Usage::

        builder = ComposeBuilder(store)
        result = builder.reply("abc@example.com", folder_uri, "Thanks!", reply_all=True)
    """

    def __init__(self, store: MailStore) -> None:
        self._store = store

    # ── Variants ───────────────────────────────────────────────────────────────

    def compose_new(
        self,
        to: str,
        subject: str,
        body: str,
        cc: str | None = None,
        bcc: str | None = None,
        is_html: bool = False,
        from_: str | None = None,
        attachments: Any = None,
    ) -> dict[str, Any]:
        formatted = format_body_html(body, is_html)
        # A complete HTML document from the caller is used as-is.
        body_html = formatted if is_html and "<html" in formatted else wrap_document(formatted)
        return self._open(DraftSpec(
            to=to or "",
            cc=cc or "",
            bcc=bcc or "",
            subject=subject or "",
            body_html=body_html,
            attachment_paths=attachments,
            identity_hint=from_,
            opened_message="Compose window opened",
        ))

    def reply(
        self,
        message_id: str,
        folder_path: str,
        body: str,
        reply_all: bool = False,
        is_html: bool = False,
        to: str | None = None,
        cc: str | None = None,
        bcc: str | None = None,
        from_: str | None = None,
        attachments: Any = None,
    ) -> dict[str, Any]:
        folder, header = locate_message(self._store, message_id, folder_path)
        parsed = self._store.load_message(folder, header)
        original_body = (parsed.plaintext or "") if parsed else ""
        account = self._store.account_for_folder(folder)

        reply_to = to or header.author
        if cc:
            reply_cc = cc
        elif reply_all:
            own = account.default_identity.email if account and account.default_identity else ""
            reply_cc = ", ".join(reply_all_cc(
                header.recipients, header.cc_list, own, exclude=split_addresses(reply_to)
            ))
        else:
            reply_cc = ""

        author = header.decoded_author or header.author
        body_html = wrap_document(
            format_body_html(body, is_html) + quote_block(original_body, author, header.date_us)
        )
        thread_ref = f"<{message_id}>"
        return self._open(DraftSpec(
            to=reply_to,
            cc=reply_cc,
            bcc=bcc or "",
            subject=_prefixed(header.decoded_subject or header.subject, "Re:"),
            body_html=body_html,
            headers={"References": thread_ref, "In-Reply-To": thread_ref},
            attachment_paths=attachments,
            identity_hint=from_,
            fallback_account=account,
            opened_message="Reply window opened",
        ))

    def forward(
        self,
        message_id: str,
        folder_path: str,
        to: str,
        body: str | None = None,
        is_html: bool = False,
        cc: str | None = None,
        bcc: str | None = None,
        from_: str | None = None,
        attachments: Any = None,
    ) -> dict[str, Any]:
        folder, header = locate_message(self._store, message_id, folder_path)
        parsed = self._store.load_message(folder, header)
        original_body = (parsed.plaintext or "") if parsed else ""

        intro = format_body_html(body, is_html) + "<br><br>" if body else ""
        block = forward_block(
            original_body,
            subject=header.decoded_subject or header.subject,
            author=header.decoded_author or header.author,
            recipients=header.decoded_recipients or header.recipients,
            date_us=header.date_us,
        )
        return self._open(DraftSpec(
            to=to,
            cc=cc or "",
            bcc=bcc or "",
            subject=_prefixed(header.decoded_subject or header.subject, "Fwd:"),
            body_html=wrap_document(intro + block),
            attachments=list(parsed.attachments) if parsed else [],
            attachment_paths=attachments,
            identity_hint=from_,
            fallback_account=self._store.account_for_folder(folder),
            opened_message="Forward window opened with {count} attachment(s)",
        ))

    # ── Shared assembly ────────────────────────────────────────────────────────

    def _open(self, spec: DraftSpec) -> dict[str, Any]:
        staged, result = stage_attachments(spec.attachment_paths)
        identity, warning = self._resolve_identity(spec.identity_hint, spec.fallback_account)

        fields = ComposeFields(
            to=spec.to,
            cc=spec.cc,
            bcc=spec.bcc,
            subject=spec.subject,
            body=spec.body_html,
            attachments=spec.attachments + staged,
            headers=dict(spec.headers),
            identity=identity,
        )
        self._store.open_compose(fields)
        logger.info("Draft staged: %r to %s (%d attachment(s))",
                    fields.subject, fields.to, len(fields.attachments))

        message = spec.opened_message.format(count=len(spec.attachments) + result.added)
        if warning:
            message += f" ({warning})"
        if result.failed:
            message += f" (failed to attach: {', '.join(result.failed)})"
        return {"success": True, "message": message}

    def _resolve_identity(
        self, hint: str | None, fallback_account: Account | None
    ) -> tuple[Identity | None, str]:
        """Explicit identity, else the account's default, else the global default."""
        identity = find_identity(self._store, hint)
        if identity is not None:
            return identity, ""
        account = fallback_account or self._store.default_account()
        default = account.default_identity if account else None
        return default, (f"unknown identity: {hint}, using default" if hint else "")
