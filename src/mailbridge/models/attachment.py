from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class AttachmentMeta:
    filename: str
    size: int

    def to_dict(self) -> dict:
        return {"filename": self.filename, "size": self.size}


@dataclass(frozen=True)
class Attachment:
    filename: str
    content_type: str
    data: bytes
    size: int

    def __repr__(self) -> str:
        return (
            f"Attachment("
            f"filename={self.filename!r}, "
            f"content_type={self.content_type!r}, "
            f"size={self.size} bytes)"
        )

    def to_dict(self) -> dict:
        return {
            "filename": self.filename,
            "mime_type": self.content_type,
            "size": self.size,
        }
