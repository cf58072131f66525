# mailbridge/imap/flags.py
from __future__ import annotations

from typing import List, Optional

from mailbridge.errors import ValidationError

# RFC 3501 IMAP system flags
SEEN = r"\Seen"
FLAGGED = r"\Flagged"
DELETED = r"\Deleted"
DRAFT = r"\Draft"

FLAG_NONE = "none"

FLAG_TYPE_KEYWORDS = {
    "follow-up": "$FollowUp",
    "important": "$Important",
    "deadline": "$Deadline",
}

COLOR_KEYWORDS = {
    "red": "$FlagRed",
    "orange": "$FlagOrange",
    "yellow": "$FlagYellow",
    "green": "$FlagGreen",
    "blue": "$FlagBlue",
    "purple": "$FlagPurple",
}

# everything "none" tries to clear
ALL_FLAG_MARKERS: List[str] = [FLAGGED, *FLAG_TYPE_KEYWORDS.values(), *COLOR_KEYWORDS.values()]


def flags_for(flag_type: str, color: Optional[str] = None) -> List[str]:
    """
    Flags to add for a flag type (+ optional color). Raises ValidationError on
    an unknown type or color. "none" yields an empty list: nothing to add.
    """
    color_kw = None
    if color:
        color_kw = COLOR_KEYWORDS.get(color)
        if color_kw is None:
            raise ValidationError(f"invalid color: {color!r}")

    if flag_type == FLAG_NONE:
        return []

    keyword = FLAG_TYPE_KEYWORDS.get(flag_type)
    if keyword is None:
        raise ValidationError(f"invalid flag type: {flag_type!r}")

    out = [FLAGGED, keyword]
    if color_kw:
        out.append(color_kw)
    return out
