# mailbridge/imap/fetch_response.py
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Iterable, Iterator, List, Optional, Set

_MSG_START_RE = re.compile(rb"^\d+\s+\(")
_UID_RE = re.compile(rb"(?<![\w.\[-])UID\s+(\d+)", re.IGNORECASE)
_FLAGS_RE = re.compile(rb"(?<![\w.\[-])FLAGS\s+\(([^)]*)\)", re.IGNORECASE)
_HEADER_SECTION_RE = re.compile(rb"BODY\[HEADER[^\]]*\]", re.IGNORECASE)
_FULL_SECTION_RE = re.compile(rb"(BODY\[\]|RFC822(?![.\w]))", re.IGNORECASE)


@dataclass
class FetchPiece:
    meta: bytes
    payload: Optional[bytes] = None


@dataclass
class FetchedItem:
    """Everything one FETCH response line carried for a single message."""
    uid: Optional[int] = None
    flags: Set[str] = field(default_factory=set)
    headers: Optional[bytes] = None
    body: Optional[bytes] = None


def iter_fetch_pieces(data: Iterable) -> Iterator[FetchPiece]:
    """
    imaplib returns FETCH data as a flat list mixing (meta, literal) tuples
    and bare bytes (either a whole response or the tail after a literal).
    """
    for item in data:
        if item is None:
            continue
        if isinstance(item, tuple):
            meta = item[0] if isinstance(item[0], bytes) else b""
            payload = item[1] if len(item) > 1 and isinstance(item[1], bytes) else None
            yield FetchPiece(meta=meta, payload=payload)
        elif isinstance(item, bytes):
            yield FetchPiece(meta=item)


def parse_uid(meta: bytes) -> Optional[int]:
    m = _UID_RE.search(meta)
    return int(m.group(1)) if m else None


def parse_flags(meta: bytes) -> Optional[Set[str]]:
    m = _FLAGS_RE.search(meta)
    if not m:
        return None
    raw = m.group(1).decode("utf-8", errors="replace")
    return {f for f in raw.split() if f}


def group_fetch_response(data: Iterable) -> List[FetchedItem]:
    """
    Fold an imaplib FETCH response into one FetchedItem per message.
    Items without a UID (unsolicited FLAGS updates and the like) are dropped.
    """
    items: List[FetchedItem] = []
    current: Optional[FetchedItem] = None

    for piece in iter_fetch_pieces(data):
        if _MSG_START_RE.match(piece.meta):
            current = FetchedItem()
            items.append(current)
        if current is None:
            continue

        uid = parse_uid(piece.meta)
        if uid is not None:
            current.uid = uid

        flags = parse_flags(piece.meta)
        if flags is not None:
            current.flags = flags

        if piece.payload is None:
            continue
        if _HEADER_SECTION_RE.search(piece.meta):
            current.headers = piece.payload
        elif _FULL_SECTION_RE.search(piece.meta):
            current.body = piece.payload

    return [i for i in items if i.uid is not None]
