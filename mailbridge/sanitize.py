"""Text transforms for the two transport boundaries.

The line-protocol side (bridge) and the HTTP side (transport server) disagree
on encoding, so each gets its own transform:

- ``sanitize_json_line`` repairs a JSON document whose string payloads carry
  raw control characters copied out of message bodies.
- ``encode_for_transport`` pre-encodes text for a writer that emits each code
  unit as one raw byte instead of UTF-8 encoding the string itself.
"""

import re

# Everything below 0x20 except \t \n \r, plus DEL.
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")

_RAW_CR = re.compile(r"(?<!\\)\r")
_RAW_LF = re.compile(r"(?<!\\)\n")
_RAW_TAB = re.compile(r"(?<!\\)\t")


def strip_control_chars(text: str | None) -> str | None:
    """Drop disallowed control characters; ``None`` and ``""`` pass through."""
    if not text:
        return text
    return _CONTROL_CHARS.sub("", text)


def sanitize_json_line(data: str) -> str:
    """Make a JSON document with raw control characters parseable.

    Strips the disallowed controls, then escapes any raw CR/LF/TAB that is not
    already preceded by a backslash.
    """
    sanitized = _CONTROL_CHARS.sub("", data)
    sanitized = _RAW_CR.sub(r"\\r", sanitized)
    sanitized = _RAW_LF.sub(r"\\n", sanitized)
    sanitized = _RAW_TAB.sub(r"\\t", sanitized)
    return sanitized


def encode_for_transport(text: str | None) -> str | None:
    """Spell out every non-ASCII code point as its UTF-8 bytes, one char per byte.

    The returned string only contains code units below 0x100, so
    ``result.encode("latin-1")`` equals ``stripped_text.encode("utf-8")``.
    """
    if not text:
        return text

    out: list[str] = []
    for char in text:
        code = ord(char)
        if code <= 0x7F:
            if _CONTROL_CHARS.match(char) is None:
                out.append(char)
            continue

        if code <= 0x7FF:
            units = (
                0xC0 | (code >> 6),
                0x80 | (code & 0x3F),
            )
        elif code <= 0xFFFF:
            units = (
                0xE0 | (code >> 12),
                0x80 | ((code >> 6) & 0x3F),
                0x80 | (code & 0x3F),
            )
        else:
            units = (
                0xF0 | (code >> 18),
                0x80 | ((code >> 12) & 0x3F),
                0x80 | ((code >> 6) & 0x3F),
                0x80 | (code & 0x3F),
            )
        out.extend(chr(unit) for unit in units)
    return "".join(out)
