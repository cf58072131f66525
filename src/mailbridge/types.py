# mailbridge/types.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from mailbridge.models import EmailMessage


@dataclass(frozen=True)
class FilterSpec:
    """
    Search/count filter. `since` wins over `last_days` when both are set.
    `limit=0` means no limit.
    """
    last_days: int = 0
    since: Optional[datetime] = None
    before: Optional[datetime] = None
    unread_only: bool = False
    limit: int = 0
    offset: int = 0


@dataclass(frozen=True)
class DraftOptions:
    cc: List[str] = field(default_factory=list)
    bcc: List[str] = field(default_factory=list)
    html: bool = False
    reply_to_id: Optional[str] = None
    folder: Optional[str] = None  # folder holding the reply target


@dataclass(frozen=True)
class SendOptions:
    cc: List[str] = field(default_factory=list)
    bcc: List[str] = field(default_factory=list)
    html: bool = False
    headers: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class SearchPage:
    messages: List[EmailMessage]
    total: int

    def to_dict(self) -> dict:
        return {
            "count": len(self.messages),
            "total": self.total,
            "emails": [m.to_dict() for m in self.messages],
        }


@dataclass(frozen=True)
class MoveResult:
    destination: str
    fallback: bool = False


@dataclass(frozen=True)
class DeleteResult:
    permanent: bool
    trash_folder: Optional[str] = None


@dataclass(frozen=True)
class FolderDeletion:
    """
    Outcome of delete_folder. `deleted=False` means the folder was left alone
    because it still holds `count` messages and force was not given.
    """
    deleted: bool
    was_empty: bool
    count: int


@dataclass(frozen=True)
class SendResult:
    message_id: str
    recipients: List[str]

    def to_dict(self) -> dict:
        return {"message_id": self.message_id, "recipients": list(self.recipients)}
