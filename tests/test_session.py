# tests/test_session.py
from datetime import datetime, timedelta, timezone

import pytest

from fake_imap_conn import FakeIMAPConn, make_message

from mailbridge.errors import AuthError, ConfigError, IMAPConnectionError, IMAPError, NotFoundError, ValidationError
from mailbridge.config import IMAPConfig
from mailbridge.imap import IMAPSession
from mailbridge.imap.flags import ALL_FLAG_MARKERS
from mailbridge.models import AttachmentMeta
from mailbridge.types import DraftOptions, FilterSpec

ACCOUNT = "me@icloud.com"


def _open(conn: FakeIMAPConn, imap_config: IMAPConfig) -> IMAPSession:
    return IMAPSession.open(imap_config, connect=lambda cfg: conn)


def _seed(conn: FakeIMAPConn, n: int, folder: str = "INBOX", **kwargs) -> list:
    return [conn.add(folder, make_message(subject=f"Message {i}", **kwargs)) for i in range(1, n + 1)]


# -----------------------
# Open / close
# -----------------------

def test_open_logs_in_and_selects_inbox(conn, imap_config):
    s = _open(conn, imap_config)
    assert conn.logged_in
    assert conn.selected == "INBOX"
    assert s.username == ACCOUNT
    s.close()


def test_open_with_rejected_password_raises_auth_error_and_logs_out(imap_config):
    conn = FakeIMAPConn(password="something-else")
    with pytest.raises(AuthError):
        _open(conn, imap_config)
    assert conn.logged_out


def test_open_connect_failure_is_connection_error(imap_config):
    def boom(cfg):
        raise OSError("connection refused")

    with pytest.raises(IMAPConnectionError):
        IMAPSession.open(imap_config, connect=boom)


def test_open_without_auth_is_config_error():
    with pytest.raises(ConfigError):
        IMAPSession.open(IMAPConfig(host="imap.test"), connect=lambda cfg: FakeIMAPConn())


def test_close_is_idempotent_and_later_calls_fail(conn, imap_config):
    s = _open(conn, imap_config)
    s.close()
    s.close()
    assert conn.logged_out
    with pytest.raises(IMAPError):
        s.list_folders()


def test_context_manager_closes(conn, imap_config):
    with _open(conn, imap_config) as s:
        s.list_folders()
    assert conn.logged_out


# -----------------------
# Search / count
# -----------------------

def test_search_windows_newest_first_with_total(conn, session):
    _seed(conn, 10)

    page = session.search("INBOX", filters=FilterSpec(limit=3))
    assert [m.id for m in page.messages] == ["10", "9", "8"]
    assert page.total == 10

    page = session.search("INBOX", filters=FilterSpec(limit=3, offset=3))
    assert [m.id for m in page.messages] == ["7", "6", "5"]
    assert page.total == 10


def test_search_offset_past_end_is_empty_but_keeps_total(conn, session):
    _seed(conn, 4)
    page = session.search("INBOX", filters=FilterSpec(limit=10, offset=4))
    assert page.messages == []
    assert page.total == 4


def test_search_without_limit_returns_everything(conn, session):
    _seed(conn, 5)
    page = session.search("INBOX")
    assert len(page.messages) == 5
    assert page.to_dict()["count"] == 5


def test_search_unread_within_last_days(conn, session):
    now = datetime.now(timezone.utc)
    recent = now - timedelta(days=2)
    old = now - timedelta(days=40)

    for i in range(3):
        conn.add("INBOX", make_message(subject=f"new unread {i}", when=recent))
    for i in range(2):
        conn.add("INBOX", make_message(subject=f"new read {i}", when=recent), flags={r"\Seen"})
    for i in range(5):
        conn.add("INBOX", make_message(subject=f"old unread {i}", when=old))

    page = session.search("INBOX", filters=FilterSpec(last_days=7, unread_only=True))
    assert page.total == 3
    assert all(m.unread for m in page.messages)
    assert sorted(m.subject for m in page.messages) == ["new unread 0", "new unread 1", "new unread 2"]


def test_search_text_query(conn, session):
    conn.add("INBOX", make_message(subject="Invoice 42"))
    conn.add("INBOX", make_message(subject="Lunch plans"))

    page = session.search("INBOX", query="invoice")
    assert [m.subject for m in page.messages] == ["Invoice 42"]


def test_search_non_ascii_text_uses_charset_literal(conn, session):
    conn.add("INBOX", make_message(subject="Gruss", text="Viele Grüße aus Berlin"))
    conn.add("INBOX", make_message(subject="Other", text="nothing here"))

    page = session.search("INBOX", query="Grüße")
    assert [m.subject for m in page.messages] == ["Gruss"]
    assert ("UID SEARCH", "CHARSET", "UTF-8", "TEXT") in conn.commands


def test_search_text_with_line_breaks_stays_one_command(conn, session):
    conn.add("INBOX", make_message(subject="Invoice"))

    page = session.search("INBOX", query='x"\r\nZ1 DELETE Trash\r\nZ2 NOOP "')

    assert page.total == 0
    searches = conn.names("UID SEARCH")
    assert searches[-1] == ("UID SEARCH", "CHARSET", "UTF-8", "TEXT")
    assert not any("\n" in str(arg) or "\r" in str(arg) for cmd in conn.commands for arg in cmd)
    assert conn.names("DELETE") == []
    assert "Deleted Messages" in conn.mailboxes


def test_search_missing_folder_raises(session):
    with pytest.raises(IMAPError):
        session.search("Nope")


def test_fetch_failure_surfaces_as_imap_error(conn, session):
    _seed(conn, 2)
    conn.fail_on.add("FETCH")
    with pytest.raises(IMAPError):
        session.search("INBOX")


def test_count_respects_filters(conn, session):
    _seed(conn, 3)
    conn.add("INBOX", make_message(subject="seen"), flags={r"\Seen"})

    assert session.count("INBOX") == 4
    assert session.count("INBOX", FilterSpec(unread_only=True)) == 3


# -----------------------
# Single message / attachments
# -----------------------

def test_summary_and_full_views_agree(conn, session):
    conn.add(
        "INBOX",
        make_message(
            subject="Quarterly report",
            cc=["Carol <carol@example.com>"],
            message_id="<report@example.com>",
            in_reply_to="<parent@example.com>",
            references="<root@example.com> <parent@example.com>",
        ),
    )

    summary = session.search("INBOX").messages[0]
    full = session.get_message("INBOX", summary.id)

    for attr in ("id", "subject", "from_email", "to", "cc", "bcc", "date", "unread", "message_id", "references"):
        assert getattr(summary, attr) == getattr(full, attr), attr

    assert summary.text is None
    assert full.text.strip() == "Hi there"
    assert full.snippet == "Hi there"
    assert full.references == ["<root@example.com>", "<parent@example.com>"]


def test_get_message_does_not_mark_seen(conn, session):
    uid = conn.add("INBOX", make_message())
    msg = session.get_message("INBOX", str(uid))
    assert msg.unread
    assert r"\Seen" not in conn.flags_of("INBOX", uid)


def test_get_message_missing_uid_is_not_found(conn, session):
    _seed(conn, 1)
    with pytest.raises(NotFoundError):
        session.get_message("INBOX", "999")


def test_malformed_id_is_rejected_before_any_command(conn, session):
    before = len(conn.commands)
    with pytest.raises(ValidationError):
        session.get_message("INBOX", "12abc")
    with pytest.raises(ValidationError):
        session.mark_read("INBOX", "0")
    assert len(conn.commands) == before


def test_get_attachment_and_listing_sizes(conn, session):
    uid = conn.add("INBOX", make_message(attachments=[("report.pdf", b"%PDF-1.4 data")]))

    full = session.get_message("INBOX", str(uid))
    assert full.attachments == [AttachmentMeta(filename="report.pdf", size=len(b"%PDF-1.4 data"))]

    att = session.get_attachment("INBOX", str(uid), "report.pdf")
    assert att.data == b"%PDF-1.4 data"
    assert att.size == len(att.data)
    assert att.content_type == "application/octet-stream"


def test_get_attachment_missing_filename(conn, session):
    uid = conn.add("INBOX", make_message(attachments=[("a.txt", b"a")]))
    with pytest.raises(NotFoundError):
        session.get_attachment("INBOX", str(uid), "b.txt")


# -----------------------
# Mutations
# -----------------------

def test_mark_read_is_idempotent(conn, session):
    uid = conn.add("INBOX", make_message())

    session.mark_read("INBOX", str(uid))
    session.mark_read("INBOX", str(uid))
    assert r"\Seen" in conn.flags_of("INBOX", uid)

    session.mark_read("INBOX", str(uid), read=False)
    assert r"\Seen" not in conn.flags_of("INBOX", uid)


def test_move_uses_native_move(conn, session):
    uid = conn.add("INBOX", make_message(subject="to archive"))

    result = session.move("INBOX", "Archive", str(uid))

    assert result.destination == "Archive"
    assert not result.fallback
    assert conn.mailboxes["INBOX"] == {}
    assert len(conn.mailboxes["Archive"]) == 1


def test_move_falls_back_to_copy_store_expunge(imap_config):
    conn = FakeIMAPConn(capabilities=("IMAP4REV1", "UIDPLUS"))
    s = _open(conn, imap_config)
    uid = conn.add("INBOX", make_message(subject="to archive"))

    result = s.move("INBOX", "Archive", str(uid))

    assert result.fallback
    assert conn.mailboxes["INBOX"] == {}
    assert len(conn.mailboxes["Archive"]) == 1
    verbs = [c[0] for c in conn.commands]
    assert verbs.index("UID COPY") < verbs.index("UID STORE") < verbs.index("UID EXPUNGE")


def test_move_fallback_without_uidplus_uses_plain_expunge(imap_config):
    conn = FakeIMAPConn(capabilities=("IMAP4REV1",))
    s = _open(conn, imap_config)
    uid = conn.add("INBOX", make_message())

    s.move("INBOX", "Archive", str(uid))

    assert ("EXPUNGE",) in conn.commands
    assert conn.names("UID EXPUNGE") == []


def test_move_fallback_store_failure_keeps_both_copies(imap_config):
    conn = FakeIMAPConn(capabilities=("IMAP4REV1", "UIDPLUS"))
    s = _open(conn, imap_config)
    uid = conn.add("INBOX", make_message(subject="to archive"))
    conn.fail_on.add("STORE")

    with pytest.raises(IMAPError, match="both folders"):
        s.move("INBOX", "Archive", str(uid))

    assert uid in conn.mailboxes["INBOX"]
    assert len(conn.mailboxes["Archive"]) == 1
    assert conn.names("UID EXPUNGE") == []


def test_move_to_missing_folder_leaves_source(conn, session):
    uid = conn.add("INBOX", make_message())
    with pytest.raises(IMAPError):
        session.move("INBOX", "Nope", str(uid))
    assert uid in conn.mailboxes["INBOX"]


def test_delete_moves_to_first_trash_folder(conn, session):
    uid = conn.add("INBOX", make_message())

    result = session.delete("INBOX", str(uid))

    assert not result.permanent
    assert result.trash_folder == "Deleted Messages"
    assert len(conn.mailboxes["Deleted Messages"]) == 1


def test_delete_falls_back_to_trash_name(imap_config):
    conn = FakeIMAPConn(folders=("INBOX", "Trash"))
    s = _open(conn, imap_config)
    uid = conn.add("INBOX", make_message())

    result = s.delete("INBOX", str(uid))

    assert result.trash_folder == "Trash"
    assert len(conn.mailboxes["Trash"]) == 1
    assert conn.mailboxes["INBOX"] == {}


def test_delete_without_any_trash_folder_fails(imap_config):
    conn = FakeIMAPConn(folders=("INBOX",))
    s = _open(conn, imap_config)
    uid = conn.add("INBOX", make_message())

    with pytest.raises(IMAPError, match="failed to move to trash"):
        s.delete("INBOX", str(uid))
    assert uid in conn.mailboxes["INBOX"]


def test_permanent_delete_expunges(conn, session):
    uid = conn.add("INBOX", make_message())
    keep = conn.add("INBOX", make_message(subject="keep"))

    result = session.delete("INBOX", str(uid), permanent=True)

    assert result.permanent
    assert list(conn.mailboxes["INBOX"]) == [keep]
    assert conn.mailboxes["Deleted Messages"] == {}


def test_flag_then_unflag(conn, session):
    uid = conn.add("INBOX", make_message())

    session.flag("INBOX", str(uid), "important", "red")
    assert conn.flags_of("INBOX", uid) == {r"\Flagged", "$Important", "$FlagRed"}

    session.flag("INBOX", str(uid), "none")
    assert not conn.flags_of("INBOX", uid) & set(ALL_FLAG_MARKERS)


def test_unflag_tolerates_keyword_rejection(conn, session):
    uid = conn.add("INBOX", make_message(), flags={r"\Flagged", "$Important"})
    conn.reject_keywords = True

    session.flag("INBOX", str(uid), "none")

    assert r"\Flagged" not in conn.flags_of("INBOX", uid)


def test_flag_rejects_unknown_type_and_color(conn, session):
    uid = conn.add("INBOX", make_message())
    with pytest.raises(ValidationError):
        session.flag("INBOX", str(uid), "urgent")
    with pytest.raises(ValidationError):
        session.flag("INBOX", str(uid), "deadline", "pink")


def test_unflag_rejects_unknown_color_before_any_command(conn, session):
    uid = conn.add("INBOX", make_message(), flags={r"\Flagged"})
    before = len(conn.commands)

    with pytest.raises(ValidationError):
        session.flag("INBOX", str(uid), "none", "pink")

    assert len(conn.commands) == before
    assert r"\Flagged" in conn.flags_of("INBOX", uid)


# -----------------------
# Folders
# -----------------------

def test_list_folders_skips_noselect_and_decodes_names(imap_config):
    conn = FakeIMAPConn(folders=("INBOX", "[Gmail]", "Entwürfe"), noselect=("[Gmail]",))
    s = _open(conn, imap_config)
    assert s.list_folders() == ["INBOX", "Entwürfe"]


def test_create_folder_under_parent_uses_server_delimiter(imap_config):
    conn = FakeIMAPConn(delimiter=".")
    s = _open(conn, imap_config)

    assert s.create_folder("Projects") == "Projects"
    assert s.create_folder("2024", parent="Projects") == "Projects.2024"
    assert "Projects.2024" in conn.mailboxes


def test_create_existing_folder_fails(session):
    with pytest.raises(IMAPError):
        session.create_folder("Archive")


def test_delete_non_empty_folder_requires_force(conn, session):
    conn.add("Projects", make_message(subject="a"))
    conn.add("Projects", make_message(subject="b"))

    result = session.delete_folder("Projects")
    assert not result.deleted
    assert result.count == 2
    assert "Projects" in conn.mailboxes

    result = session.delete_folder("Projects", force=True)
    assert result.deleted
    assert not result.was_empty
    assert result.count == 2
    assert "Projects" not in conn.mailboxes


def test_delete_empty_folder(conn, session):
    conn.mailboxes["Empty"] = {}
    result = session.delete_folder("Empty")
    assert result.deleted
    assert result.was_empty


def test_delete_missing_folder_is_not_found(session):
    with pytest.raises(NotFoundError):
        session.delete_folder("Nope")


def test_delete_folder_search_failure_is_not_reported_as_missing(conn, session):
    conn.add("Projects", make_message())
    conn.fail_on.add("SEARCH")

    with pytest.raises(IMAPError, match="failed to search"):
        session.delete_folder("Projects")

    assert "Projects" in conn.mailboxes


# -----------------------
# Drafts
# -----------------------

def test_save_draft_keeps_bcc_and_draft_flag(conn, session):
    draft_id = session.save_draft(
        ACCOUNT,
        ["bob@example.com"],
        "Plan",
        "See you",
        DraftOptions(bcc=["secret@example.com"]),
    )

    assert draft_id == "1"
    stored = conn.mailboxes["Drafts"][1]
    assert b"Bcc: secret@example.com" in stored.raw
    assert stored.flags == {r"\Draft"}


def test_save_draft_without_appenduid_uses_newest_uid(imap_config):
    conn = FakeIMAPConn(capabilities=("IMAP4REV1", "MOVE"))
    s = _open(conn, imap_config)
    conn.add("Drafts", make_message(subject="older draft"))

    assert s.save_draft(ACCOUNT, ["bob@example.com"], "Plan", "Body") == "2"


def test_save_draft_picks_alternate_drafts_folder(imap_config):
    conn = FakeIMAPConn(folders=("INBOX", "INBOX.Drafts"))
    s = _open(conn, imap_config)

    s.save_draft(ACCOUNT, ["bob@example.com"], "Plan", "Body")

    assert len(conn.mailboxes["INBOX.Drafts"]) == 1


def test_reply_draft_threads_to_original(conn, session):
    uid = conn.add("INBOX", make_message(subject="Lunch", message_id="<orig@example.com>"))

    draft_id = session.save_draft(
        ACCOUNT,
        ["alice@example.com"],
        "ignored",
        "Sounds good",
        DraftOptions(reply_to_id=str(uid), folder="INBOX"),
    )

    raw = conn.mailboxes["Drafts"][int(draft_id)].raw
    assert b"Subject: Re: Lunch" in raw
    assert b"In-Reply-To: <orig@example.com>" in raw
    assert b"References: <orig@example.com>" in raw
