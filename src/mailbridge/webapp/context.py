# mailbridge/webapp/context.py
import asyncio
import os
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Optional

from fastapi import HTTPException, Request

from mailbridge.imap import IMAPSession
from mailbridge.smtp import SMTPClient

MAX_WORKERS = int(os.getenv("THREADPOOL_WORKERS", "8"))

EXECUTOR = ThreadPoolExecutor(max_workers=MAX_WORKERS)


async def run_blocking(fn, *args, **kwargs):
    """
    Run blocking IO in a bounded thread pool so the event loop remains responsive.
    """
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(EXECUTOR, lambda: fn(*args, **kwargs))


@dataclass
class MailContext:
    email: str
    session: IMAPSession
    smtp: SMTPClient
    timeout: Optional[float] = None

    async def call(self, fn, *args, **kwargs):
        """
        run_blocking with the per-tool timeout. On timeout the worker thread
        keeps running (and keeps the session lock) until the server answers.
        """
        return await asyncio.wait_for(run_blocking(fn, *args, **kwargs), self.timeout)


def get_mail(request: Request) -> MailContext:
    mail = getattr(request.app.state, "mail", None)
    if mail is None:
        raise HTTPException(status_code=503, detail="Mail session is not initialised")
    return mail
