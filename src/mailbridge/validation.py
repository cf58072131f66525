# mailbridge/validation.py
from __future__ import annotations

import os
from email.utils import parseaddr
from typing import List, Optional, Sequence, Union

from mailbridge.errors import ValidationError

MAX_UID = 2**32 - 1
MAX_BODY_SIZE = 10 * 1024 * 1024
MAX_SUBJECT_SIZE = 998  # RFC 5322 line length limit


def parse_uid(email_id: str) -> int:
    """
    Turn a caller-supplied email id into a UID.
    Must be a non-empty decimal string within the unsigned 32-bit range.
    """
    if email_id is None or not str(email_id).strip():
        raise ValidationError("email_id is required")
    s = str(email_id).strip()
    if not s.isascii() or not s.isdigit():
        raise ValidationError(f"invalid email ID format: {email_id!r}")
    uid = int(s)
    if uid < 1 or uid > MAX_UID:
        raise ValidationError(f"email ID out of range: {email_id!r}")
    return uid


def _has_control_chars(s: str) -> bool:
    return any(ord(ch) < 0x20 or ord(ch) == 0x7F for ch in s)


def validate_folder_name(name: str) -> str:
    if not name:
        raise ValidationError("folder name must not be empty")
    if "\x00" in name:
        raise ValidationError("folder name must not contain null bytes")
    if ".." in name:
        raise ValidationError("folder name must not contain '..'")
    if "*" in name or "%" in name:
        raise ValidationError("folder name must not contain wildcards (* or %)")
    if _has_control_chars(name):
        raise ValidationError("folder name must not contain control characters")
    return name


def validate_filename(name: str) -> str:
    if not name:
        raise ValidationError("filename is required")
    if "\x00" in name:
        raise ValidationError("filename must not contain null bytes")
    if "/" in name or "\\" in name:
        raise ValidationError("filename must not contain path separators")
    if ".." in name:
        raise ValidationError("filename must not contain '..'")
    return name


def validate_save_path(path: str) -> str:
    if not path:
        return path
    if "\x00" in path:
        raise ValidationError("save_path must not contain null bytes")
    if ".." in path:
        raise ValidationError("save_path must not contain path traversal (..)")
    if not os.path.isabs(os.path.normpath(path)):
        raise ValidationError("save_path must be an absolute path")
    return path


def validate_body_size(body: str) -> str:
    if len(body.encode("utf-8")) > MAX_BODY_SIZE:
        raise ValidationError(f"body exceeds maximum size of {MAX_BODY_SIZE} bytes")
    return body


def validate_subject_size(subject: str) -> str:
    if len(subject) > MAX_SUBJECT_SIZE:
        raise ValidationError(f"subject exceeds maximum length of {MAX_SUBJECT_SIZE} characters")
    return subject


def validate_address(addr: str, *, key: str = "address") -> str:
    _name, email_addr = parseaddr(addr)
    if not email_addr or "@" not in email_addr or _has_control_chars(addr):
        raise ValidationError(f"invalid {key} email address {addr!r}")
    local, _, domain = email_addr.rpartition("@")
    if not local or not domain or " " in email_addr:
        raise ValidationError(f"invalid {key} email address {addr!r}")
    return addr


def parse_address_list(
    value: Optional[Union[str, Sequence[str]]],
    *,
    key: str,
    required: bool = False,
) -> List[str]:
    """
    Accept a single address or a list of addresses; drop empty entries and
    validate the rest.
    """
    if value is None:
        raw: List[str] = []
    elif isinstance(value, str):
        raw = [value] if value.strip() else []
    else:
        raw = []
        for item in value:
            if not isinstance(item, str):
                raise ValidationError(f"{key} must be a string or array of strings")
            if item.strip():
                raw.append(item)

    for addr in raw:
        validate_address(addr, key=key)

    if required and not raw:
        raise ValidationError(f"{key} is required")
    return raw
