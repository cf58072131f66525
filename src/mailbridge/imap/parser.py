# mailbridge/imap/parser.py
"""
Turn raw IMAP data (flags, header blocks, RFC 822 literals) into
EmailMessage / Attachment models.

Body extraction is best-effort: a message whose MIME structure cannot be
walked comes back without body content and a warning is logged, instead of
failing the whole fetch.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from email.message import Message as PyMessage
from email.parser import BytesParser
from email.policy import default
from email.header import decode_header, make_header
from email.utils import getaddresses, parsedate_to_datetime
from typing import Iterable, Iterator, List, Optional, Set, Tuple, Union

from loguru import logger

from mailbridge.imap.flags import SEEN
from mailbridge.models import Attachment, AttachmentMeta, EmailMessage

SNIPPET_MAX = 200

_parser = BytesParser(policy=default)


@dataclass
class InlinePart:
    subtype: str  # "plain" | "html"
    part: PyMessage

    def text(self) -> str:
        return decode_text_payload(self.part)


@dataclass
class AttachmentPart:
    filename: str
    content_type: str
    part: PyMessage

    def read(self) -> bytes:
        payload = self.part.get_payload(decode=True)
        return payload if isinstance(payload, bytes) else b""

    def size(self) -> int:
        # decoded length only; the bytes are not kept
        return len(self.read())


MimePart = Union[InlinePart, AttachmentPart]


# -----------------------
# Header helpers
# -----------------------

def decode_header_value(value: Optional[str]) -> str:
    """
    Header objects from the default policy are already decoded; only
    leftover RFC 2047 encoded words still need a pass.
    """
    if value is None:
        return ""
    if "=?" not in str(value):
        return str(value).strip()
    try:
        return str(make_header(decode_header(str(value)))).strip()
    except (ValueError, LookupError, UnicodeError):
        return str(value).strip()


def format_address(name: str, addr: str) -> str:
    name = decode_header_value(name)
    if name:
        return f"{name} <{addr}>"
    return addr


def parse_address_list(values: Iterable[str]) -> List[str]:
    out: List[str] = []
    for value in values:
        if value is None:
            continue
        addresses = getattr(value, "addresses", None)
        if addresses is None:
            pairs = getaddresses([str(value)])
        else:
            pairs = [(a.display_name, a.addr_spec) for a in addresses]
        for name, addr in pairs:
            if addr:
                out.append(format_address(name, addr))
    return out


def parse_date(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return parsedate_to_datetime(str(value))
    except (TypeError, ValueError, IndexError):
        return None


def _header_values(msg: PyMessage, name: str) -> list:
    try:
        return msg.get_all(name, [])
    except Exception as exc:
        # the structured header could not be built; keep the raw text
        logger.warning("Malformed {} header, using raw value: {!r}", name, exc)
        return [v for k, v in msg.raw_items() if k.lower() == name.lower()]


def _header(msg: PyMessage, name: str) -> Optional[str]:
    values = _header_values(msg, name)
    return values[0] if values else None


def _msg_ids(value: str) -> List[str]:
    return [tok for tok in value.split() if tok.startswith("<") and tok.endswith(">")]


def make_snippet(text: str) -> str:
    if len(text) > SNIPPET_MAX:
        return text[: SNIPPET_MAX - 3] + "..."
    return text


def is_unread(flags: Set[str]) -> bool:
    return SEEN.lower() not in {f.lower() for f in flags}


# -----------------------
# MIME walk
# -----------------------

def decode_text_payload(part: PyMessage) -> str:
    payload = part.get_payload(decode=True)
    if not isinstance(payload, bytes):
        return ""
    charset = part.get_content_charset() or "utf-8"
    try:
        return payload.decode(charset, errors="replace")
    except LookupError:
        return payload.decode("utf-8", errors="replace")


def iter_parts(msg: PyMessage) -> Iterator[MimePart]:
    """
    Yield every leaf of the MIME tree that is either an inline text body or
    an attachment (any part carrying a filename). Other leaves are skipped.
    """
    for part in msg.walk():
        if part.is_multipart():
            continue

        filename = part.get_filename()
        if filename:
            yield AttachmentPart(
                filename=decode_header_value(filename),
                content_type=part.get_content_type(),
                part=part,
            )
            continue

        ctype = part.get_content_type()
        if ctype == "text/plain":
            yield InlinePart("plain", part)
        elif ctype == "text/html":
            yield InlinePart("html", part)


def extract_bodies(msg: PyMessage) -> Tuple[Optional[str], Optional[str], List[AttachmentMeta]]:
    text: Optional[str] = None
    html: Optional[str] = None
    attachments: List[AttachmentMeta] = []

    for item in iter_parts(msg):
        if isinstance(item, AttachmentPart):
            attachments.append(AttachmentMeta(filename=item.filename, size=item.size()))
        elif item.subtype == "plain":
            text = item.text()
        else:
            html = item.text()

    return text, html, attachments


def find_attachment(msg: PyMessage, filename: str) -> Optional[Attachment]:
    for item in iter_parts(msg):
        if isinstance(item, AttachmentPart) and item.filename == filename:
            data = item.read()
            return Attachment(
                filename=item.filename,
                content_type=item.content_type,
                data=data,
                size=len(data),
            )
    return None


# -----------------------
# Message assembly
# -----------------------

def parse_rfc822_bytes(raw: bytes, *, headersonly: bool = False) -> PyMessage:
    return _parser.parsebytes(raw, headersonly=headersonly)


def _from_headers(uid: int, flags: Set[str], msg: PyMessage) -> dict:
    subject = decode_header_value(_header(msg, "Subject"))
    senders = parse_address_list(_header_values(msg, "From"))

    message_id = (_header(msg, "Message-ID") or "").strip()
    in_reply_to = _msg_ids(str(_header(msg, "In-Reply-To") or ""))
    references = _msg_ids(str(_header(msg, "References") or ""))
    if not references and in_reply_to:
        references = in_reply_to[:1]

    return dict(
        id=str(uid),
        subject=subject,
        from_email=senders[0] if senders else "",
        to=parse_address_list(_header_values(msg, "To")),
        cc=parse_address_list(_header_values(msg, "Cc")),
        bcc=parse_address_list(_header_values(msg, "Bcc")),
        date=parse_date(_header(msg, "Date")),
        unread=is_unread(flags),
        message_id=message_id,
        references=references,
    )


def parse_overview(uid: int, flags: Set[str], header_bytes: bytes) -> EmailMessage:
    """
    Summary view: headers and flags only, snippet taken from the subject.
    """
    msg = parse_rfc822_bytes(header_bytes or b"", headersonly=True)
    fields = _from_headers(uid, flags, msg)
    return EmailMessage(snippet=make_snippet(fields["subject"]), **fields)


def parse_full_message(
    uid: int,
    flags: Set[str],
    header_bytes: bytes,
    raw: Optional[bytes],
) -> EmailMessage:
    """
    Full view. Envelope fields come from the same header block the summary
    view uses; the body literal only feeds text, html and attachments.
    """
    fields = _from_headers(uid, flags, parse_rfc822_bytes(header_bytes or b"", headersonly=True))

    text: Optional[str] = None
    html: Optional[str] = None
    attachments: List[AttachmentMeta] = []
    if raw:
        try:
            text, html, attachments = extract_bodies(parse_rfc822_bytes(raw))
        except Exception as exc:
            logger.warning(
                "Failed to parse body of uid={}; returning message without body: {!r}",
                uid,
                exc,
            )
            text, html, attachments = None, None, []
    else:
        logger.warning("FETCH returned no body literal for uid={}", uid)

    stripped = (text or "").strip()
    snippet = make_snippet(stripped) if stripped else make_snippet(fields["subject"])

    return EmailMessage(
        text=text,
        html=html,
        attachments=attachments,
        snippet=snippet,
        **fields,
    )
