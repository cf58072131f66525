# mailbridge/imap/query.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import List, Optional, Union

from mailbridge.errors import ValidationError
from mailbridge.types import FilterSpec

_MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")

DateLike = Union[date, datetime, str]


def _imap_date(value: DateLike) -> str:
    """
    IMAP SEARCH dates are day-granular: 15-Jan-2024. Built by hand so the
    result does not depend on the process locale.
    """
    if isinstance(value, str):
        value = datetime.strptime(value, "%Y-%m-%d").date()
    elif isinstance(value, datetime):
        value = value.date()
    return f"{value.day:02d}-{_MONTHS[value.month - 1]}-{value.year:04d}"


def _quotable(s: str) -> bool:
    # a quoted string holds 7-bit text without CR or LF
    return s.isascii() and "\r" not in s and "\n" not in s


def _q(s: str) -> str:
    """
    Quote/escape a string for IMAP SEARCH.
    IMAP uses double quotes for string literals; backslash can escape quotes.
    """
    s = s.replace("\\", "\\\\").replace('"', r"\"")
    return f'"{s}"'


@dataclass
class IMAPQuery:
    parts: List[str] = field(default_factory=list)
    # TEXT search term that cannot be quoted, sent as a literal after the criteria
    literal: Optional[bytes] = None

    @classmethod
    def from_filters(
        cls,
        filters: FilterSpec,
        *,
        text: Optional[str] = None,
        today: Optional[date] = None,
    ) -> "IMAPQuery":
        q = cls()
        if filters.since is not None:
            q.since(filters.since)
        elif filters.last_days > 0:
            today = today or date.today()
            q.since(today - timedelta(days=filters.last_days))

        if filters.before is not None:
            q.before(filters.before)

        if filters.unread_only:
            q.unseen()

        if text:
            q.text(text)
        return q

    def text(self, s: str) -> "IMAPQuery":
        """
        Match in headers OR body text. Anything a quoted string cannot carry
        (8-bit text, line breaks) is sent as a UTF-8 literal instead.
        """
        if "\0" in s:
            raise ValidationError("search text must not contain NUL characters")
        if _quotable(s):
            self.parts += ["TEXT", _q(s)]
        else:
            self.literal = s.encode("utf-8")
        return self

    # --- date filters ---
    def since(self, when: DateLike) -> "IMAPQuery":
        self.parts += ["SINCE", _imap_date(when)]
        return self

    def before(self, when: DateLike) -> "IMAPQuery":
        self.parts += ["BEFORE", _imap_date(when)]
        return self

    # --- flags/status ---
    def unseen(self) -> "IMAPQuery":
        self.parts += ["UNSEEN"]
        return self

    @property
    def charset(self) -> Optional[str]:
        return "UTF-8" if self.literal is not None else None

    def build(self) -> str:
        parts = list(self.parts)
        if self.literal is not None:
            # imaplib sends conn.literal right after the last argument
            parts.append("TEXT")
        return " ".join(parts) if parts else "ALL"
