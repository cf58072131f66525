# mailbridge/webapp/model.py
from __future__ import annotations

from datetime import datetime
from typing import List, Optional, Union

from pydantic import BaseModel

AddressField = Optional[Union[str, List[str]]]


class SearchRequest(BaseModel):
    folder: str = "INBOX"
    query: Optional[str] = None
    last_days: int = 30
    limit: int = 50
    offset: int = 0
    unread_only: bool = False
    since: Optional[datetime] = None
    before: Optional[datetime] = None


class CountRequest(BaseModel):
    folder: str = "INBOX"
    last_days: int = 0
    unread_only: bool = False


class EmailRequest(BaseModel):
    email_id: str
    folder: str = "INBOX"


class AttachmentRequest(BaseModel):
    email_id: str
    filename: str
    folder: str = "INBOX"
    save_path: Optional[str] = None


class SendRequest(BaseModel):
    to: AddressField = None
    subject: str
    body: str
    cc: AddressField = None
    bcc: AddressField = None
    html: bool = False


class ReplyRequest(BaseModel):
    email_id: str
    body: str
    folder: str = "INBOX"
    reply_all: bool = False
    html: bool = False


class DraftRequest(BaseModel):
    to: AddressField = None
    subject: str
    body: str
    cc: AddressField = None
    bcc: AddressField = None
    html: bool = False
    reply_to_id: Optional[str] = None
    # folder holding the message named by reply_to_id
    folder: Optional[str] = None


class MarkReadRequest(BaseModel):
    email_id: str
    folder: str = "INBOX"
    read: bool = True


class MoveRequest(BaseModel):
    email_id: str
    to_folder: str
    from_folder: str = "INBOX"


class DeleteRequest(BaseModel):
    email_id: str
    folder: str = "INBOX"
    permanent: bool = False


class FlagRequest(BaseModel):
    email_id: str
    flag: str
    color: Optional[str] = None
    folder: str = "INBOX"


class CreateFolderRequest(BaseModel):
    name: str
    parent: Optional[str] = None


class DeleteFolderRequest(BaseModel):
    name: str
    force: bool = False
