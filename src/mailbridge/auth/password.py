from __future__ import annotations

import imaplib
import smtplib
from dataclasses import dataclass, field

from mailbridge.auth.base import AuthContext
from mailbridge.errors import AuthError


@dataclass(frozen=True)
class PasswordAuth:
    """
    Plain LOGIN / AUTH PLAIN with an account password.
    For iCloud this must be an app-specific password.
    """
    username: str
    password: str = field(repr=False)

    def apply_imap(self, conn, ctx: AuthContext) -> None:
        try:
            typ, data = conn.login(self.username, self.password)
        except imaplib.IMAP4.error as e:
            raise AuthError(f"IMAP login to {ctx.host}:{ctx.port} failed: {e}") from e
        if typ != "OK":
            raise AuthError(f"IMAP login to {ctx.host}:{ctx.port} failed: {data}")

    def apply_smtp(self, server, ctx: AuthContext) -> None:
        try:
            server.login(self.username, self.password)
        except smtplib.SMTPException as e:
            raise AuthError(f"SMTP login to {ctx.host}:{ctx.port} failed: {e}") from e
