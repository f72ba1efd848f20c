"""Address-list helpers for reply-all recipient computation."""

import re
from collections.abc import Iterable

# A run of characters that are either not a comma/quote, or a whole quoted
# string, so "Last, First" <a@b> stays one address.
_ADDRESS = re.compile(r'(?:[^,"]|"[^"]*")+')
_ANGLE_ADDR = re.compile(r"<([^>]+)>")


def split_addresses(value: str | None) -> list[str]:
    """Split a header value on commas that are not inside quoted display names."""
    return [m.strip() for m in _ADDRESS.findall(value or "") if m.strip()]


def extract_address(entry: str) -> str:
    """Bare lower-cased address of ``Name <addr>`` or of a plain address."""
    match = _ANGLE_ADDR.search(entry)
    return (match.group(1) if match else entry).strip().lower()


def reply_all_cc(
    recipients: str | None,
    cc_list: str | None,
    own_email: str | None,
    exclude: Iterable[str] = (),
) -> list[str]:
    """CC entries for a reply-all.

    Union of the original To and Cc lists, without the sender's own address
    and without anything in ``exclude`` (the addresses the reply already goes
    to). De-duplicated by bare address; the first spelling seen wins and the
    original order is kept.
    """
    seen = {extract_address(e) for e in exclude if e}
    if own_email:
        seen.add(own_email.lower())

    unique: list[str] = []
    for entry in split_addresses(recipients) + split_addresses(cc_list):
        address = extract_address(entry)
        if address in seen:
            continue
        seen.add(address)
        unique.append(entry)
    return unique
