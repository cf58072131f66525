from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from mailbridge.models.attachment import AttachmentMeta


@dataclass(frozen=True)
class EmailMessage:
    """
    One message as seen at fetch time. `id` is the UID, unique only within
    the folder it was fetched from; any mutation makes the snapshot stale.
    """
    id: str
    subject: str
    from_email: str
    to: List[str] = field(default_factory=list)
    cc: List[str] = field(default_factory=list)
    bcc: List[str] = field(default_factory=list)
    date: Optional[datetime] = None
    text: Optional[str] = None
    html: Optional[str] = None
    snippet: str = ""
    unread: bool = False
    attachments: List[AttachmentMeta] = field(default_factory=list)
    message_id: str = ""
    references: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        d = {
            "id": self.id,
            "from": self.from_email,
            "to": list(self.to),
            "cc": list(self.cc),
            "bcc": list(self.bcc),
            "subject": self.subject,
            "date": self.date.isoformat() if self.date else None,
            "unread": self.unread,
        }
        if self.text:
            d["body_plain"] = self.text
        if self.html:
            d["body_html"] = self.html
        if self.snippet:
            d["snippet"] = self.snippet
        if self.attachments:
            d["attachments"] = [a.to_dict() for a in self.attachments]
        if self.message_id:
            d["message_id"] = self.message_id
        if self.references:
            d["references"] = list(self.references)
        return d
