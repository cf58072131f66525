# mailbridge/imap/client.py
from __future__ import annotations

import imaplib
import re
import threading
import time
from dataclasses import dataclass, field
from email.message import EmailMessage as PyEmailMessage
from typing import Callable, Dict, List, Optional, Sequence, TypeVar

from loguru import logger

from mailbridge.auth import AuthContext
from mailbridge.compose import build_draft, reply_subject, threading_headers
from mailbridge.config import IMAPConfig
from mailbridge.errors import ConfigError, IMAPConnectionError, IMAPError, NotFoundError
from mailbridge.imap.fetch_response import FetchedItem, group_fetch_response
from mailbridge.imap.flags import ALL_FLAG_MARKERS, DELETED, DRAFT, SEEN, flags_for
from mailbridge.imap.mailbox import parse_list_line, quote_mailbox
from mailbridge.imap.pagination import window_uids
from mailbridge.imap.parser import find_attachment, parse_full_message, parse_overview, parse_rfc822_bytes
from mailbridge.imap.query import IMAPQuery
from mailbridge.models import Attachment, EmailMessage
from mailbridge.types import DeleteResult, DraftOptions, FilterSpec, FolderDeletion, MoveResult, SearchPage
from mailbridge.validation import parse_uid

T = TypeVar("T")

DEFAULT_FOLDER = "INBOX"
TRASH_FOLDERS = ("Deleted Messages", "Trash")
DRAFT_FOLDERS = ("Drafts", "INBOX.Drafts", "[Gmail]/Drafts")
DEFAULT_DELIMITER = "/"

_ENVELOPE_FIELDS = "FROM TO CC BCC SUBJECT DATE MESSAGE-ID IN-REPLY-TO REFERENCES"
SUMMARY_ATTRS = f"(UID FLAGS BODY.PEEK[HEADER.FIELDS ({_ENVELOPE_FIELDS})])"
FULL_ATTRS = f"(UID FLAGS BODY.PEEK[HEADER.FIELDS ({_ENVELOPE_FIELDS})] BODY.PEEK[])"
RAW_ATTRS = "(UID BODY.PEEK[])"

_APPENDUID_RE = re.compile(rb"APPENDUID\s+\d+\s+(\d+)", re.IGNORECASE)

ConnectionFactory = Callable[[IMAPConfig], imaplib.IMAP4]


def _default_connect(cfg: IMAPConfig) -> imaplib.IMAP4:
    if cfg.use_ssl:
        return imaplib.IMAP4_SSL(cfg.host, cfg.port, timeout=cfg.timeout)
    return imaplib.IMAP4(cfg.host, cfg.port, timeout=cfg.timeout)


def _describe(data) -> str:
    parts: List[str] = []
    for d in data or []:
        if isinstance(d, bytes):
            parts.append(d.decode("utf-8", errors="replace"))
        elif d is not None:
            parts.append(str(d))
    return " ".join(parts) or "no response text"


def _safe_logout(conn: imaplib.IMAP4) -> None:
    try:
        conn.logout()
    except (imaplib.IMAP4.error, OSError) as e:
        logger.debug("IMAP logout failed: {}", e)


@dataclass
class IMAPSession:
    """
    One IMAP connection shared by every caller.

    IMAP is strictly sequential per connection, so each public operation
    runs its whole select/command/fetch sequence under `_lock` via `_run`.
    Methods that take a `conn` argument are the lock-free building blocks;
    they must only be called from inside an op passed to `_run`.
    """

    config: IMAPConfig
    connect: ConnectionFactory = _default_connect

    _conn: Optional[imaplib.IMAP4] = field(default=None, init=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)
    _delimiter: Optional[str] = field(default=None, init=False, repr=False)

    @classmethod
    def open(cls, config: IMAPConfig, *, connect: Optional[ConnectionFactory] = None) -> "IMAPSession":
        if not config.host:
            raise ConfigError("IMAP host required")
        if config.auth is None:
            raise ConfigError("IMAPConfig.auth is required")

        session = cls(config) if connect is None else cls(config, connect=connect)
        session._open()
        return session

    # -----------------------
    # Connection management
    # -----------------------

    def _open(self) -> None:
        cfg = self.config
        try:
            conn = self.connect(cfg)
        except (imaplib.IMAP4.error, OSError) as e:
            raise IMAPConnectionError(f"failed to connect to IMAP server {cfg.host}:{cfg.port}: {e}") from e

        try:
            cfg.auth.apply_imap(conn, AuthContext(host=cfg.host, port=cfg.port))
            typ, data = conn.select(DEFAULT_FOLDER)
            if typ != "OK":
                raise IMAPConnectionError(f"failed to select {DEFAULT_FOLDER}: {_describe(data)}")
        except IMAPConnectionError:
            _safe_logout(conn)
            raise
        except (imaplib.IMAP4.error, OSError) as e:
            _safe_logout(conn)
            raise IMAPConnectionError(f"IMAP session setup failed: {e}") from e

        self._conn = conn
        logger.info("IMAP session open: {}@{}:{}", cfg.username, cfg.host, cfg.port)

    def close(self) -> None:
        with self._lock:
            conn, self._conn = self._conn, None
        if conn is None:
            return
        _safe_logout(conn)
        logger.info("IMAP session closed")

    def __enter__(self) -> "IMAPSession":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def username(self) -> str:
        return self.config.username

    def _run(self, op: Callable[[imaplib.IMAP4], T]) -> T:
        with self._lock:
            conn = self._conn
            if conn is None:
                raise IMAPError("IMAP session is not open")
            try:
                return op(conn)
            except imaplib.IMAP4.abort as e:
                raise IMAPError(f"IMAP connection lost: {e}") from e
            except imaplib.IMAP4.error as e:
                raise IMAPError(f"IMAP operation failed: {e}") from e
            except OSError as e:
                raise IMAPError(f"IMAP network error: {e}") from e

    # -----------------------
    # Lock-free building blocks
    # -----------------------

    def _select(self, conn: imaplib.IMAP4, folder: str, *, readonly: bool) -> None:
        typ, data = conn.select(quote_mailbox(folder), readonly=readonly)
        if typ != "OK":
            raise IMAPError(f"failed to select folder {folder!r}: {_describe(data)}")

    def _uid_search(self, conn: imaplib.IMAP4, query: IMAPQuery) -> List[int]:
        criteria = query.build()
        if query.literal is not None:
            conn.literal = query.literal
            typ, data = conn.uid("SEARCH", "CHARSET", query.charset, criteria)
        else:
            typ, data = conn.uid("SEARCH", None, criteria)
        if typ != "OK":
            raise IMAPError(f"failed to search emails: {_describe(data)}")

        raw = (data[0] if data else None) or b""
        return sorted({int(x) for x in raw.split() if x.isdigit()})

    def _fetch(self, conn: imaplib.IMAP4, uids: Sequence[int], attrs: str) -> Dict[int, FetchedItem]:
        uid_set = ",".join(str(u) for u in uids)
        typ, data = conn.uid("FETCH", uid_set, attrs)
        if typ != "OK":
            raise IMAPError(f"failed to fetch messages: {_describe(data)}")

        wanted = set(uids)
        return {item.uid: item for item in group_fetch_response(data or []) if item.uid in wanted}

    def _store(self, conn: imaplib.IMAP4, uid: int, mode: str, flags: Sequence[str]) -> None:
        typ, data = conn.uid("STORE", str(uid), mode, "(" + " ".join(flags) + ")")
        if typ != "OK":
            raise IMAPError(f"STORE {mode} {' '.join(flags)} failed for email {uid}: {_describe(data)}")

    def _expunge(self, conn: imaplib.IMAP4, uid: int) -> None:
        # UID EXPUNGE only touches our message; plain EXPUNGE clears every \Deleted one
        if "UIDPLUS" in getattr(conn, "capabilities", ()):
            typ, data = conn.uid("EXPUNGE", str(uid))
        else:
            typ, data = conn.expunge()
        if typ != "OK":
            raise IMAPError(f"failed to expunge: {_describe(data)}")

    def _count(self, conn: imaplib.IMAP4, folder: str, filters: FilterSpec) -> int:
        self._select(conn, folder, readonly=True)
        return len(self._uid_search(conn, IMAPQuery.from_filters(filters)))

    def _get_message(self, conn: imaplib.IMAP4, folder: str, uid: int) -> EmailMessage:
        self._select(conn, folder, readonly=True)
        item = self._fetch(conn, [uid], FULL_ATTRS).get(uid)
        if item is None:
            raise NotFoundError(f"email {uid} not found in {folder!r}")
        return parse_full_message(uid, item.flags, item.headers or b"", item.body)

    def _list_folders(self, conn: imaplib.IMAP4) -> List[str]:
        typ, data = conn.list()
        if typ != "OK":
            raise IMAPError(f"failed to list folders: {_describe(data)}")

        folders: List[str] = []
        for raw in data or []:
            if not raw:
                continue
            parsed = parse_list_line(raw)
            if parsed is None:
                continue
            flags, delimiter, name = parsed
            if delimiter and self._delimiter is None:
                self._delimiter = delimiter
            if r"\NOSELECT" in flags or r"\NONEXISTENT" in flags:
                continue
            folders.append(name)
        return folders

    def _hierarchy_delimiter(self, conn: imaplib.IMAP4) -> str:
        if self._delimiter is None:
            typ, data = conn.list('""', '""')
            if typ == "OK":
                for raw in data or []:
                    parsed = parse_list_line(raw) if raw else None
                    if parsed and parsed[1]:
                        self._delimiter = parsed[1]
                        break
        return self._delimiter or DEFAULT_DELIMITER

    def _move(self, conn: imaplib.IMAP4, src: str, dst: str, uid: int) -> MoveResult:
        """
        Native UID MOVE, else COPY + STORE \\Deleted + EXPUNGE.
        A failure after COPY leaves the copy in `dst`; it is reported, not undone.
        """
        self._select(conn, src, readonly=False)
        uid_str = str(uid)
        dst_arg = quote_mailbox(dst)

        try:
            typ, data = conn.uid("MOVE", uid_str, dst_arg)
        except imaplib.IMAP4.abort:
            raise
        except imaplib.IMAP4.error as e:
            typ, data = "NO", [str(e)]
        if typ == "OK":
            return MoveResult(destination=dst)

        logger.info(
            "UID MOVE {} {!r} -> {!r} refused ({}); falling back to COPY/STORE/EXPUNGE",
            uid, src, dst, _describe(data),
        )

        typ, data = conn.uid("COPY", uid_str, dst_arg)
        if typ != "OK":
            raise IMAPError(f"failed to copy email {uid} to {dst!r}: {_describe(data)}")

        try:
            self._store(conn, uid, "+FLAGS.SILENT", [DELETED])
            self._expunge(conn, uid)
        except imaplib.IMAP4.abort:
            raise
        except (IMAPError, imaplib.IMAP4.error) as e:
            raise IMAPError(
                f"email {uid} was copied to {dst!r} but could not be removed from {src!r}; "
                f"it now exists in both folders: {e}"
            ) from e

        return MoveResult(destination=dst, fallback=True)

    def _append(self, conn: imaplib.IMAP4, folder: str, msg: PyEmailMessage, *, flags: Sequence[str]) -> str:
        flags_arg = "(" + " ".join(flags) + ")" if flags else None
        date_time = imaplib.Time2Internaldate(time.time())

        typ, data = conn.append(quote_mailbox(folder), flags_arg, date_time, msg.as_bytes())
        if typ != "OK":
            raise IMAPError(f"failed to append to {folder!r}: {_describe(data)}")

        uid: Optional[int] = None
        for resp in data or []:
            if isinstance(resp, bytes):
                m = _APPENDUID_RE.search(resp)
                if m:
                    uid = int(m.group(1))
                    break

        if uid is None:
            # no UIDPLUS: the newest UID in the folder is ours
            self._select(conn, folder, readonly=True)
            uids = self._uid_search(conn, IMAPQuery())
            uid = uids[-1] if uids else None

        if uid is None:
            raise IMAPError(f"APPEND to {folder!r} succeeded but could not determine UID")
        return str(uid)

    # -----------------------
    # Read operations
    # -----------------------

    def list_folders(self) -> List[str]:
        return self._run(self._list_folders)

    def search(
        self,
        folder: str = DEFAULT_FOLDER,
        query: Optional[str] = None,
        filters: Optional[FilterSpec] = None,
    ) -> SearchPage:
        """
        Search `folder` and return one page, newest first, plus the total
        number of matches before paging.
        """
        filters = filters or FilterSpec()
        q = IMAPQuery.from_filters(filters, text=query)

        def _impl(conn: imaplib.IMAP4) -> SearchPage:
            self._select(conn, folder, readonly=True)
            uids = self._uid_search(conn, q)
            total = len(uids)

            page = window_uids(uids, limit=filters.limit, offset=filters.offset)
            if not page:
                return SearchPage(messages=[], total=total)

            fetched = self._fetch(conn, page, SUMMARY_ATTRS)
            messages: List[EmailMessage] = []
            for uid in page:
                item = fetched.get(uid)
                if item is None:
                    continue
                messages.append(parse_overview(uid, item.flags, item.headers or b""))
            return SearchPage(messages=messages, total=total)

        return self._run(_impl)

    def count(self, folder: str = DEFAULT_FOLDER, filters: Optional[FilterSpec] = None) -> int:
        filters = filters or FilterSpec()
        return self._run(lambda conn: self._count(conn, folder, filters))

    def get_message(self, folder: str, email_id: str) -> EmailMessage:
        uid = parse_uid(email_id)
        return self._run(lambda conn: self._get_message(conn, folder, uid))

    def get_attachment(self, folder: str, email_id: str, filename: str) -> Attachment:
        uid = parse_uid(email_id)

        def _impl(conn: imaplib.IMAP4) -> Attachment:
            self._select(conn, folder, readonly=True)
            item = self._fetch(conn, [uid], RAW_ATTRS).get(uid)
            if item is None or not item.body:
                raise NotFoundError(f"email {uid} not found in {folder!r}")

            try:
                attachment = find_attachment(parse_rfc822_bytes(item.body), filename)
            except (ValueError, LookupError, TypeError) as e:
                raise IMAPError(f"failed to parse email {uid}: {e}") from e

            if attachment is None:
                raise NotFoundError(f"attachment {filename!r} not found in email {uid}")
            return attachment

        return self._run(_impl)

    # -----------------------
    # Mutations
    # -----------------------

    def mark_read(self, folder: str, email_id: str, read: bool = True) -> None:
        uid = parse_uid(email_id)
        mode = "+FLAGS.SILENT" if read else "-FLAGS.SILENT"

        def _impl(conn: imaplib.IMAP4) -> None:
            self._select(conn, folder, readonly=False)
            self._store(conn, uid, mode, [SEEN])

        self._run(_impl)

    def move(self, from_folder: str, to_folder: str, email_id: str) -> MoveResult:
        uid = parse_uid(email_id)
        return self._run(lambda conn: self._move(conn, from_folder, to_folder, uid))

    def delete(self, folder: str, email_id: str, permanent: bool = False) -> DeleteResult:
        uid = parse_uid(email_id)

        def _impl(conn: imaplib.IMAP4) -> DeleteResult:
            if permanent:
                self._select(conn, folder, readonly=False)
                self._store(conn, uid, "+FLAGS.SILENT", [DELETED])
                self._expunge(conn, uid)
                return DeleteResult(permanent=True)

            failures: List[str] = []
            for trash in TRASH_FOLDERS:
                try:
                    self._move(conn, folder, trash, uid)
                except imaplib.IMAP4.abort:
                    raise
                except (IMAPError, imaplib.IMAP4.error) as e:
                    logger.info("Moving email {} to {!r} failed: {}", uid, trash, e)
                    failures.append(f"{trash}: {e}")
                    continue
                return DeleteResult(permanent=False, trash_folder=trash)

            raise IMAPError("failed to move to trash (" + "; ".join(failures) + ")")

        return self._run(_impl)

    def flag(self, folder: str, email_id: str, flag_type: str, color: Optional[str] = None) -> None:
        uid = parse_uid(email_id)
        to_add = flags_for(flag_type, color)

        def _impl(conn: imaplib.IMAP4) -> None:
            self._select(conn, folder, readonly=False)
            if to_add:
                self._store(conn, uid, "+FLAGS.SILENT", to_add)
                return

            self._clear_flag_markers(conn, uid)

        self._run(_impl)

    def _clear_flag_markers(self, conn: imaplib.IMAP4, uid: int) -> None:
        # keyword support differs per provider: try all at once, then one by one
        markers = list(ALL_FLAG_MARKERS)
        batches = [markers] + [[m] for m in markers]
        for batch in batches:
            try:
                self._store(conn, uid, "-FLAGS.SILENT", batch)
            except imaplib.IMAP4.abort:
                raise
            except (IMAPError, imaplib.IMAP4.error) as e:
                logger.debug("Could not clear {} on email {}: {}", " ".join(batch), uid, e)
                continue
            if batch is markers:
                return

    def create_folder(self, name: str, parent: Optional[str] = None) -> str:
        def _impl(conn: imaplib.IMAP4) -> str:
            path = name
            if parent:
                path = f"{parent}{self._hierarchy_delimiter(conn)}{name}"
            typ, data = conn.create(quote_mailbox(path))
            if typ != "OK":
                raise IMAPError(f"failed to create folder {path!r}: {_describe(data)}")
            return path

        return self._run(_impl)

    def delete_folder(self, name: str, force: bool = False) -> FolderDeletion:
        """
        Select first (proves the folder exists), then count. A non-empty folder is
        only deleted with force=True; otherwise the count is reported back.
        """

        def _impl(conn: imaplib.IMAP4) -> FolderDeletion:
            try:
                self._select(conn, name, readonly=True)
            except IMAPError as e:
                raise NotFoundError(f"failed to access folder {name!r}: {e}") from e
            count = len(self._uid_search(conn, IMAPQuery.from_filters(FilterSpec())))

            if count > 0 and not force:
                return FolderDeletion(deleted=False, was_empty=False, count=count)

            # deselect first; some servers refuse to delete the selected mailbox
            conn.close()
            typ, data = conn.delete(quote_mailbox(name))
            if typ != "OK":
                raise IMAPError(f"failed to delete folder {name!r}: {_describe(data)}")
            return FolderDeletion(deleted=True, was_empty=count == 0, count=count)

        return self._run(_impl)

    def save_draft(
        self,
        from_email: str,
        to: Sequence[str],
        subject: str,
        body: str,
        options: Optional[DraftOptions] = None,
    ) -> str:
        """
        Append a draft to the account's drafts folder and return its UID.
        With options.reply_to_id the draft becomes a reply: subject and
        threading headers come from the original message.
        """
        options = options or DraftOptions()
        reply_uid = parse_uid(options.reply_to_id) if options.reply_to_id else None

        def _impl(conn: imaplib.IMAP4) -> str:
            folders = self._list_folders(conn)
            draft_folder = next((f for f in DRAFT_FOLDERS if f in folders), DRAFT_FOLDERS[0])

            draft_subject = subject
            headers: Dict[str, str] = {}
            if reply_uid is not None:
                original = self._get_message(conn, options.folder or DEFAULT_FOLDER, reply_uid)
                draft_subject = reply_subject(original.subject)
                headers = threading_headers(original)

            msg = build_draft(
                sender=from_email,
                to=to,
                subject=draft_subject,
                body=body,
                cc=options.cc,
                bcc=options.bcc,
                html=options.html,
                headers=headers,
            )
            return self._append(conn, draft_folder, msg, flags=[DRAFT])

        return self._run(_impl)
