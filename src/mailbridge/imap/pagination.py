# mailbridge/imap/pagination.py
from __future__ import annotations

from typing import List, Sequence


def window_uids(uids_asc: Sequence[int], *, limit: int = 0, offset: int = 0) -> List[int]:
    """
    Pick one page out of an ascending UID list, walking backwards from the
    newest match: drop the `offset` newest, then keep up to `limit` of what
    remains (0 = no limit). Returned newest-first.
    """
    total = len(uids_asc)
    offset = max(0, offset)
    if offset >= total:
        return []

    end = total - offset
    start = max(0, end - limit) if limit > 0 else 0
    return list(reversed(uids_asc[start:end]))
