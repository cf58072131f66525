# mailbridge/imap/mailbox.py
"""
Mailbox name handling: RFC 3501 modified UTF-7, quoting for command
arguments, and parsing of LIST response lines.
"""
from __future__ import annotations

import base64
import re
from typing import List, Optional, Set, Tuple, Union

_LIST_RE = re.compile(
    rb'^\((?P<flags>[^)]*)\)\s+(?P<delim>"(?:\\.|[^"\\])*"|NIL)\s+(?P<name>.*)$',
    re.IGNORECASE,
)


def _b64_utf16(chunk: List[str]) -> str:
    raw = "".join(chunk).encode("utf-16-be")
    return base64.b64encode(raw).decode("ascii").rstrip("=").replace("/", ",")


def encode_mailbox(name: str) -> str:
    out: List[str] = []
    pending: List[str] = []

    for ch in name:
        if 0x20 <= ord(ch) <= 0x7E:
            if pending:
                out.append("&" + _b64_utf16(pending) + "-")
                pending = []
            out.append("&-" if ch == "&" else ch)
        else:
            pending.append(ch)

    if pending:
        out.append("&" + _b64_utf16(pending) + "-")
    return "".join(out)


def decode_mailbox(raw: Union[bytes, str]) -> str:
    s = raw.decode("ascii", errors="replace") if isinstance(raw, bytes) else raw
    out: List[str] = []
    i = 0
    while i < len(s):
        ch = s[i]
        if ch != "&":
            out.append(ch)
            i += 1
            continue

        end = s.find("-", i + 1)
        if end == -1:
            # unterminated shift sequence: keep verbatim
            out.append(s[i:])
            break

        chunk = s[i + 1 : end]
        if not chunk:
            out.append("&")
        else:
            b64 = chunk.replace(",", "/")
            b64 += "=" * (-len(b64) % 4)
            try:
                out.append(base64.b64decode(b64).decode("utf-16-be"))
            except (ValueError, UnicodeDecodeError):
                out.append(s[i : end + 1])
        i = end + 1

    return "".join(out)


def quote_mailbox(name: str) -> str:
    if name.upper() == "INBOX":
        return "INBOX"
    encoded = encode_mailbox(name).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{encoded}"'


def _unquote(raw: bytes) -> bytes:
    raw = raw.strip()
    if len(raw) >= 2 and raw.startswith(b'"') and raw.endswith(b'"'):
        inner = raw[1:-1]
        return re.sub(rb"\\(.)", rb"\1", inner)
    return raw


def parse_list_line(item) -> Optional[Tuple[Set[str], Optional[str], str]]:
    """
    Parse one entry of an imaplib LIST response into (flags, delimiter, name).

    imaplib hands back either a bytes line or, when the server sends the name
    as a literal, a (prefix, literal) tuple.
    """
    literal: Optional[bytes] = None
    if isinstance(item, tuple):
        line, literal = item[0], item[1]
    else:
        line = item
    if not isinstance(line, bytes):
        return None

    m = _LIST_RE.match(line.strip())
    if not m:
        return None

    flags = {f.upper() for f in m.group("flags").decode("ascii", errors="ignore").split()}

    delim_raw = m.group("delim")
    delimiter = None if delim_raw.upper() == b"NIL" else _unquote(delim_raw).decode("ascii", errors="replace")

    name_raw = literal if literal is not None else _unquote(m.group("name"))
    return flags, delimiter, decode_mailbox(name_raw)
