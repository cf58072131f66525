# mailbridge/__init__.py
from .config import IMAPConfig, MailConfig, SMTPConfig
from .imap import IMAPSession
from .smtp import SMTPClient
from .types import DeleteResult, DraftOptions, FilterSpec, FolderDeletion, MoveResult, SearchPage, SendOptions

__all__ = [
    "IMAPSession",
    "SMTPClient",
    "MailConfig",
    "IMAPConfig",
    "SMTPConfig",
    "FilterSpec",
    "DraftOptions",
    "SendOptions",
    "SearchPage",
    "MoveResult",
    "DeleteResult",
    "FolderDeletion",
]
