# mailbridge/smtp/client.py
from __future__ import annotations

import smtplib
import ssl
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Sequence

from loguru import logger

from mailbridge.auth import AuthContext
from mailbridge.compose import (
    OutgoingMessage,
    build_outgoing,
    reply_recipients,
    reply_subject,
    threading_headers,
)
from mailbridge.config import SMTPConfig
from mailbridge.errors import AuthError, SMTPError
from mailbridge.models import EmailMessage
from mailbridge.types import SendOptions, SendResult

SMTPFactory = Callable[[SMTPConfig], smtplib.SMTP]


def _default_smtp(cfg: SMTPConfig) -> smtplib.SMTP:
    return smtplib.SMTP(cfg.host, cfg.port, timeout=cfg.timeout)


@dataclass
class SMTPClient:
    """
    Sends through a short-lived SMTP connection per message:
    EHLO, STARTTLS, login, send to the full envelope, QUIT.
    Holds no connection between sends and never touches the IMAP session.
    """

    config: SMTPConfig
    from_email: str = ""
    smtp_factory: SMTPFactory = _default_smtp

    @property
    def sender(self) -> str:
        return self.from_email or self.config.username

    def send_email(
        self,
        to: Sequence[str],
        subject: str,
        body: str,
        options: Optional[SendOptions] = None,
    ) -> SendResult:
        options = options or SendOptions()
        out = build_outgoing(
            sender=self.sender,
            to=to,
            subject=subject,
            body=body,
            cc=options.cc,
            bcc=options.bcc,
            html=options.html,
            headers=options.headers,
        )
        return self._transmit(out)

    def reply(
        self,
        original: EmailMessage,
        body: str,
        reply_all: bool = False,
        options: Optional[SendOptions] = None,
    ) -> SendResult:
        options = options or SendOptions()
        to, cc = reply_recipients(original, account=self.sender, reply_all=reply_all)
        for addr in options.cc:
            if addr not in cc:
                cc.append(addr)

        headers: Dict[str, str] = dict(options.headers)
        headers.update(threading_headers(original))

        out = build_outgoing(
            sender=self.sender,
            to=to,
            subject=reply_subject(original.subject),
            body=body,
            cc=cc,
            bcc=options.bcc,
            html=options.html,
            headers=headers,
        )
        return self._transmit(out)

    def _transmit(self, out: OutgoingMessage) -> SendResult:
        cfg = self.config
        if not out.recipients:
            raise SMTPError("no recipients")

        try:
            server = self.smtp_factory(cfg)
        except (smtplib.SMTPException, OSError) as e:
            raise SMTPError(f"failed to connect to SMTP server {cfg.host}:{cfg.port}: {e}") from e

        try:
            server.ehlo()
            if cfg.use_starttls:
                server.starttls(context=ssl.create_default_context())
                server.ehlo()
            if cfg.auth is not None:
                cfg.auth.apply_smtp(server, AuthContext(host=cfg.host, port=cfg.port))
            refused = server.send_message(out.message, from_addr=out.sender, to_addrs=out.recipients)
        except AuthError as e:
            raise SMTPError(str(e)) from e
        except (smtplib.SMTPException, OSError) as e:
            raise SMTPError(f"failed to send email: {e}") from e
        finally:
            try:
                server.quit()
            except (smtplib.SMTPException, OSError) as e:
                logger.debug("SMTP QUIT failed: {}", e)

        if refused:
            logger.warning("SMTP server refused some recipients: {}", ", ".join(refused))

        logger.info("Sent {} to {} recipient(s)", out.message_id, len(out.recipients))
        return SendResult(message_id=out.message_id, recipients=list(out.recipients))
