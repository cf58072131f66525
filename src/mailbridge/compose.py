# mailbridge/compose.py
"""
Outbound message construction: drafts, sends and replies.

Drafts keep their Bcc header (the draft is the only place those recipients
live). Messages meant for transmission never carry one; Bcc recipients only
go into the SMTP envelope.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from email.message import EmailMessage as PyEmailMessage
from email.utils import format_datetime, make_msgid
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from mailbridge.models import EmailMessage

_BR_RE = re.compile(r"<br\s*/?\s*>", re.IGNORECASE)
_P_CLOSE_RE = re.compile(r"</p\s*>", re.IGNORECASE)
_DIV_CLOSE_RE = re.compile(r"</div\s*>", re.IGNORECASE)

_PROTECTED_HEADERS = {"bcc", "from", "to", "cc", "subject", "date", "message-id", "content-type",
                      "content-transfer-encoding", "mime-version"}


@dataclass(frozen=True)
class OutgoingMessage:
    message: PyEmailMessage
    sender: str
    recipients: List[str]

    @property
    def message_id(self) -> str:
        return self.message["Message-ID"] or ""


def strip_html(html: str) -> str:
    """
    Rough HTML -> text for the plain alternative. Line-break tags become
    newlines, everything else that looks like a tag is dropped. Entities are
    left as they are.
    """
    text = _BR_RE.sub("\n", html or "")
    text = _P_CLOSE_RE.sub("\n\n", text)
    text = _DIV_CLOSE_RE.sub("\n", text)

    out: List[str] = []
    in_tag = False
    for ch in text:
        if ch == "<":
            in_tag = True
        elif ch == ">":
            in_tag = False
        elif not in_tag:
            out.append(ch)
    return "".join(out).strip()


def new_message_id(account: str) -> str:
    domain = account.rpartition("@")[2] or "localhost"
    return make_msgid(domain=domain)


# -----------------------
# Reply helpers
# -----------------------

def reply_subject(subject: str) -> str:
    if subject.lower().startswith("re:"):
        return subject
    return f"Re: {subject}"


def reply_recipients(
    original: EmailMessage,
    *,
    account: str,
    reply_all: bool = False,
) -> Tuple[List[str], List[str]]:
    """
    (to, cc) for a reply. Reply-all copies the original To and Cc, minus any
    entry that contains our own address.
    """
    to = [original.from_email] if original.from_email else []
    cc: List[str] = []
    if reply_all:
        me = account.lower()
        for addr in [*original.to, *original.cc]:
            if me and me in addr.lower():
                continue
            cc.append(addr)
    return to, cc


def threading_headers(original: EmailMessage) -> Dict[str, str]:
    if not original.message_id:
        return {}
    refs = list(original.references)
    if not refs or refs[-1] != original.message_id:
        refs.append(original.message_id)
    return {
        "In-Reply-To": original.message_id,
        "References": " ".join(refs),
    }


# -----------------------
# Builders
# -----------------------

def _address_headers(msg: PyEmailMessage, *, sender: str, to: Sequence[str], cc: Sequence[str]) -> None:
    msg["From"] = sender
    if to:
        msg["To"] = ", ".join(to)
    if cc:
        msg["Cc"] = ", ".join(cc)


def _finish_headers(msg: PyEmailMessage, *, subject: str, message_id: str, date: Optional[datetime]) -> None:
    msg["Subject"] = subject
    msg["Date"] = format_datetime(date or datetime.now(timezone.utc))
    msg["Message-ID"] = message_id


def _apply_extra_headers(msg: PyEmailMessage, headers: Optional[Mapping[str, str]]) -> None:
    for name, value in (headers or {}).items():
        if name.lower() in _PROTECTED_HEADERS:
            continue
        del msg[name]
        msg[name] = value


def build_draft(
    *,
    sender: str,
    to: Sequence[str],
    subject: str,
    body: str,
    cc: Sequence[str] = (),
    bcc: Sequence[str] = (),
    html: bool = False,
    headers: Optional[Mapping[str, str]] = None,
    date: Optional[datetime] = None,
) -> PyEmailMessage:
    """
    Single-part draft ready for APPEND. Bcc is kept as a header.
    """
    msg = PyEmailMessage()
    _address_headers(msg, sender=sender, to=to, cc=cc)
    if bcc:
        msg["Bcc"] = ", ".join(bcc)
    _apply_extra_headers(msg, headers)
    _finish_headers(msg, subject=subject, message_id=new_message_id(sender), date=date)

    msg.set_content(body, subtype="html" if html else "plain", charset="utf-8")
    return msg


def build_outgoing(
    *,
    sender: str,
    to: Sequence[str],
    subject: str,
    body: str,
    cc: Sequence[str] = (),
    bcc: Sequence[str] = (),
    html: bool = False,
    headers: Optional[Mapping[str, str]] = None,
    date: Optional[datetime] = None,
) -> OutgoingMessage:
    """
    Message for SMTP. HTML bodies go out as multipart/alternative with a
    plain companion derived from the HTML.
    """
    msg = PyEmailMessage()
    _address_headers(msg, sender=sender, to=to, cc=cc)
    _apply_extra_headers(msg, headers)
    _finish_headers(msg, subject=subject, message_id=new_message_id(sender), date=date)

    if html:
        msg.set_content(strip_html(body), subtype="plain", charset="utf-8")
        msg.add_alternative(body, subtype="html", charset="utf-8")
    else:
        msg.set_content(body, subtype="plain", charset="utf-8")

    recipients = [*to, *cc, *bcc]
    return OutgoingMessage(message=msg, sender=sender, recipients=recipients)
