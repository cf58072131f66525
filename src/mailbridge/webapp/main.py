import asyncio
import base64
import os
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from loguru import logger

from mailbridge.config import MailConfig
from mailbridge.errors import (
    ConfigError,
    IMAPConnectionError,
    IMAPError,
    MailBridgeError,
    NotFoundError,
    SMTPError,
    ValidationError,
)
from mailbridge.imap import IMAPSession
from mailbridge.imap.flags import FLAG_NONE
from mailbridge.log import configure_logging
from mailbridge.smtp import SMTPClient
from mailbridge.types import DraftOptions, FilterSpec, SendOptions
from mailbridge.validation import (
    parse_address_list,
    validate_body_size,
    validate_filename,
    validate_folder_name,
    validate_save_path,
    validate_subject_size,
)
from mailbridge.webapp.context import MailContext, get_mail, run_blocking
from mailbridge.webapp.model import (
    AttachmentRequest,
    CountRequest,
    CreateFolderRequest,
    DeleteFolderRequest,
    DeleteRequest,
    DraftRequest,
    EmailRequest,
    FlagRequest,
    MarkReadRequest,
    MoveRequest,
    ReplyRequest,
    SearchRequest,
    SendRequest,
)

DEFAULT_LAST_DAYS = 30
DEFAULT_SEARCH_LIMIT = 50
MAX_SEARCH_LIMIT = 200
PREVIEW_MAX = 200

# first match wins, so subclasses go before their bases
_ERROR_STATUS = [
    (ValidationError, 400),
    (NotFoundError, 404),
    (IMAPConnectionError, 503),
    (IMAPError, 502),
    (SMTPError, 502),
    (ConfigError, 500),
]


@asynccontextmanager
async def lifespan(app: FastAPI):
    config = MailConfig.from_env()
    configure_logging(config.log_level)

    session = await run_blocking(IMAPSession.open, config.imap)
    app.state.mail = MailContext(
        email=config.email,
        session=session,
        smtp=SMTPClient(config.smtp, from_email=config.email),
        timeout=config.tool_timeout,
    )
    logger.info("mailbridge ready for {}", config.email)

    try:
        yield
    finally:
        app.state.mail = None
        await run_blocking(session.close)


app = FastAPI(title="mailbridge", lifespan=lifespan)


@app.exception_handler(MailBridgeError)
async def mail_error_handler(request: Request, exc: MailBridgeError):
    status = next((code for cls, code in _ERROR_STATUS if isinstance(exc, cls)), 500)
    logger.warning("{} failed ({}): {}", request.url.path, type(exc).__name__, exc)
    return JSONResponse(status_code=status, content={"success": False, "error": str(exc)})


@app.exception_handler(asyncio.TimeoutError)
async def timeout_handler(request: Request, exc: asyncio.TimeoutError):
    logger.warning("{} timed out", request.url.path)
    return JSONResponse(status_code=504, content={"success": False, "error": "operation timed out"})


def _preview(text: str) -> str:
    if len(text) > PREVIEW_MAX:
        return text[: PREVIEW_MAX - 3] + "..."
    return text


# -----------------------
# Read tools
# -----------------------

@app.post("/tools/search_emails")
async def search_emails(payload: SearchRequest, mail: MailContext = Depends(get_mail)) -> dict:
    validate_folder_name(payload.folder)
    if payload.offset < 0:
        raise ValidationError("offset must be >= 0")

    limit = payload.limit if payload.limit > 0 else DEFAULT_SEARCH_LIMIT
    filters = FilterSpec(
        last_days=payload.last_days if payload.last_days > 0 else DEFAULT_LAST_DAYS,
        since=payload.since,
        before=payload.before,
        unread_only=payload.unread_only,
        limit=min(limit, MAX_SEARCH_LIMIT),
        offset=payload.offset,
    )

    page = await mail.call(mail.session.search, payload.folder, payload.query or None, filters)

    res = page.to_dict()
    res["folder"] = payload.folder
    if payload.query:
        res["query"] = payload.query
    return res


@app.post("/tools/get_email")
async def get_email(payload: EmailRequest, mail: MailContext = Depends(get_mail)) -> dict:
    validate_folder_name(payload.folder)
    message = await mail.call(mail.session.get_message, payload.folder, payload.email_id)
    return message.to_dict()


@app.post("/tools/count_emails")
async def count_emails(payload: CountRequest, mail: MailContext = Depends(get_mail)) -> dict:
    validate_folder_name(payload.folder)
    filters = FilterSpec(last_days=max(payload.last_days, 0), unread_only=payload.unread_only)

    count = await mail.call(mail.session.count, payload.folder, filters)

    res = {"count": count, "folder": payload.folder}
    if filters.last_days > 0:
        res["last_days"] = filters.last_days
    if filters.unread_only:
        res["unread_only"] = True
    return res


@app.post("/tools/list_folders")
async def list_folders(mail: MailContext = Depends(get_mail)) -> dict:
    folders = await mail.call(mail.session.list_folders)
    return {"count": len(folders), "folders": folders}


@app.post("/tools/get_attachment")
async def get_attachment(payload: AttachmentRequest, mail: MailContext = Depends(get_mail)) -> dict:
    validate_folder_name(payload.folder)
    validate_filename(payload.filename)
    save_path = validate_save_path(payload.save_path or "")

    attachment = await mail.call(mail.session.get_attachment, payload.folder, payload.email_id, payload.filename)

    res = {"success": True, **attachment.to_dict()}
    if not save_path:
        res["data"] = base64.b64encode(attachment.data).decode("ascii")
        res["saved"] = False
        return res

    parent = os.path.dirname(save_path)
    if not os.path.isdir(parent):
        raise ValidationError(f"save path directory does not exist: {parent}")
    try:
        await run_blocking(Path(save_path).write_bytes, attachment.data)
    except OSError as e:
        raise HTTPException(status_code=500, detail=f"failed to save attachment: {e}")

    res["path"] = save_path
    res["saved"] = True
    return res


# -----------------------
# Send / draft tools
# -----------------------

@app.post("/tools/send_email")
async def send_email(payload: SendRequest, mail: MailContext = Depends(get_mail)) -> dict:
    to = parse_address_list(payload.to, key="to", required=True)
    options = SendOptions(
        cc=parse_address_list(payload.cc, key="cc"),
        bcc=parse_address_list(payload.bcc, key="bcc"),
        html=payload.html,
    )
    validate_subject_size(payload.subject)
    validate_body_size(payload.body)

    result = await mail.call(mail.smtp.send_email, to, payload.subject, payload.body, options)

    return {
        "success": True,
        "message": f"Email sent successfully to {', '.join(to)}",
        "subject": payload.subject,
        "message_id": result.message_id,
    }


@app.post("/tools/reply_email")
async def reply_email(payload: ReplyRequest, mail: MailContext = Depends(get_mail)) -> dict:
    validate_folder_name(payload.folder)
    validate_body_size(payload.body)

    original = await mail.call(mail.session.get_message, payload.folder, payload.email_id)
    result = await mail.call(
        mail.smtp.reply,
        original,
        payload.body,
        payload.reply_all,
        SendOptions(html=payload.html),
    )

    kind = "Reply All" if payload.reply_all else "Reply"
    return {
        "success": True,
        "message": f"{kind} sent successfully",
        "original_subject": original.subject,
        "message_id": result.message_id,
    }


@app.post("/tools/draft_email")
async def draft_email(payload: DraftRequest, mail: MailContext = Depends(get_mail)) -> dict:
    to = parse_address_list(payload.to, key="to", required=True)
    cc = parse_address_list(payload.cc, key="cc")
    bcc = parse_address_list(payload.bcc, key="bcc")
    validate_subject_size(payload.subject)
    validate_body_size(payload.body)
    if payload.folder:
        validate_folder_name(payload.folder)

    options = DraftOptions(
        cc=cc,
        bcc=bcc,
        html=payload.html,
        reply_to_id=payload.reply_to_id or None,
        folder=payload.folder if payload.reply_to_id else None,
    )
    draft_id = await mail.call(mail.session.save_draft, mail.email, to, payload.subject, payload.body, options)

    preview = f"To: {', '.join(to)}\n"
    if cc:
        preview += f"CC: {', '.join(cc)}\n"
    preview += f"Subject: {payload.subject}\nBody: {payload.body}"

    res = {
        "success": True,
        "draft_id": draft_id,
        "message": "Draft saved successfully",
        "preview": _preview(preview),
    }
    if options.reply_to_id:
        res["reply_to"] = options.reply_to_id
    return res


# -----------------------
# Mutations
# -----------------------

@app.post("/tools/mark_read")
async def mark_read(payload: MarkReadRequest, mail: MailContext = Depends(get_mail)) -> dict:
    validate_folder_name(payload.folder)
    await mail.call(mail.session.mark_read, payload.folder, payload.email_id, payload.read)

    status = "read" if payload.read else "unread"
    return {
        "success": True,
        "email_id": payload.email_id,
        "message": f"Email marked as {status} successfully",
    }


@app.post("/tools/move_email")
async def move_email(payload: MoveRequest, mail: MailContext = Depends(get_mail)) -> dict:
    validate_folder_name(payload.from_folder)
    validate_folder_name(payload.to_folder)

    await mail.call(mail.session.move, payload.from_folder, payload.to_folder, payload.email_id)

    return {
        "success": True,
        "email_id": payload.email_id,
        "from_folder": payload.from_folder,
        "to_folder": payload.to_folder,
        "message": f"Email moved from '{payload.from_folder}' to '{payload.to_folder}' successfully",
    }


@app.post("/tools/delete_email")
async def delete_email(payload: DeleteRequest, mail: MailContext = Depends(get_mail)) -> dict:
    validate_folder_name(payload.folder)
    result = await mail.call(mail.session.delete, payload.folder, payload.email_id, payload.permanent)

    res = {"success": True, "email_id": payload.email_id}
    if result.permanent:
        res["message"] = "Email permanently deleted successfully"
    else:
        res["message"] = f"Email moved to {result.trash_folder} successfully"
        res["trash_folder"] = result.trash_folder
    return res


@app.post("/tools/flag_email")
async def flag_email(payload: FlagRequest, mail: MailContext = Depends(get_mail)) -> dict:
    validate_folder_name(payload.folder)
    color = payload.color or None
    await mail.call(mail.session.flag, payload.folder, payload.email_id, payload.flag, color)

    res = {"success": True, "email_id": payload.email_id, "flag": payload.flag}
    if payload.flag == FLAG_NONE:
        res["message"] = "Flag removed successfully"
        return res
    if color:
        res["color"] = color
        res["message"] = f"Email flagged as {payload.flag} ({color}) successfully"
    else:
        res["message"] = f"Email flagged as {payload.flag} successfully"
    return res


@app.post("/tools/create_folder")
async def create_folder(payload: CreateFolderRequest, mail: MailContext = Depends(get_mail)) -> dict:
    validate_folder_name(payload.name)
    if payload.parent:
        validate_folder_name(payload.parent)

    path = await mail.call(mail.session.create_folder, payload.name, payload.parent or None)

    return {
        "success": True,
        "folder_name": payload.name,
        "path": path,
        "message": f"Folder '{path}' created successfully",
    }


@app.post("/tools/delete_folder")
async def delete_folder(payload: DeleteFolderRequest, mail: MailContext = Depends(get_mail)):
    validate_folder_name(payload.name)
    result = await mail.call(mail.session.delete_folder, payload.name, payload.force)

    if not result.deleted:
        return JSONResponse(
            status_code=409,
            content={
                "success": False,
                "folder_name": payload.name,
                "email_count": result.count,
                "message": (
                    f"Folder '{payload.name}' is not empty (contains {result.count} emails). "
                    "Use force=true to delete anyway."
                ),
            },
        )

    res = {
        "success": True,
        "folder_name": payload.name,
        "was_empty": result.was_empty,
        "message": f"Folder '{payload.name}' deleted successfully",
    }
    if not result.was_empty:
        res["emails_deleted"] = result.count
    return res
