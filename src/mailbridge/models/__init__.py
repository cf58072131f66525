from mailbridge.models.attachment import AttachmentMeta, Attachment
from mailbridge.models.message import EmailMessage

__all__ = [
    "EmailMessage",
    "AttachmentMeta",
    "Attachment",
]
