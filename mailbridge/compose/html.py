"""HTML body construction for compose drafts.

Two quirks of the compose surface shape everything here:

1. The renderer turns each raw ``\\n`` in an HTML body into its own line
   break, so HTML input must have its newlines removed.
2. Charset handling in the compose surface is unreliable for raw Unicode, so
   non-ASCII in HTML input is spelled out as numeric character references.
"""

import html
from datetime import datetime, timezone

_DOCUMENT = '<html><head><meta charset="UTF-8"></head><body>{}</body></html>'


def escape_html(text: str) -> str:
    """Escape ``&``, ``<`` and ``>`` (quotes are left alone)."""
    return html.escape(text, quote=False)


def encode_non_ascii(text: str) -> str:
    return "".join(c if ord(c) <= 0x7F else f"&#{ord(c)};" for c in text)


def format_body_html(body: str | None, is_html: bool = False) -> str:
    """Turn caller-supplied body text into an HTML fragment."""
    if is_html:
        return encode_non_ascii((body or "").replace("\n", ""))
    return escape_html(body or "").replace("\n", "<br>")


def wrap_document(fragment: str) -> str:
    return _DOCUMENT.format(fragment)


def display_date(date_us: int) -> str:
    """Local-time rendering of a header timestamp for attribution lines."""
    if not date_us:
        return ""
    moment = datetime.fromtimestamp(date_us / 1_000_000, tz=timezone.utc).astimezone()
    return moment.strftime("%a, %d %b %Y %H:%M")


def quote_block(original_body: str, author: str, date_us: int) -> str:
    """``On <date>, <author> wrote:`` followed by the ``> ``-quoted original."""
    quoted = "<br>".join(
        f"&gt; {escape_html(line)}" for line in (original_body or "").split("\n")
    )
    return (
        f"<br><br>On {display_date(date_us)}, {escape_html(author)} wrote:<br>"
        f"{quoted}"
    )


def forward_block(
    original_body: str,
    subject: str,
    author: str,
    recipients: str,
    date_us: int,
) -> str:
    """The ``-------- Forwarded Message --------`` header plus original body."""
    return (
        "-------- Forwarded Message --------<br>"
        f"Subject: {escape_html(subject)}<br>"
        f"Date: {display_date(date_us)}<br>"
        f"From: {escape_html(author)}<br>"
        f"To: {escape_html(recipients)}<br><br>"
        + escape_html(original_body or "").replace("\n", "<br>")
    )
