# mailbridge/config.py
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from mailbridge.auth import PasswordAuth
from mailbridge.errors import ConfigError

ICLOUD_IMAP_HOST = "imap.mail.me.com"
ICLOUD_IMAP_PORT = 993
ICLOUD_SMTP_HOST = "smtp.mail.me.com"
ICLOUD_SMTP_PORT = 587

DEFAULT_TIMEOUT = 30.0


@dataclass(frozen=True)
class IMAPConfig:
    host: str = ICLOUD_IMAP_HOST
    port: int = ICLOUD_IMAP_PORT
    use_ssl: bool = True
    timeout: float = DEFAULT_TIMEOUT
    auth: Optional[PasswordAuth] = None

    @property
    def username(self) -> str:
        return self.auth.username if self.auth is not None else ""


@dataclass(frozen=True)
class SMTPConfig:
    host: str = ICLOUD_SMTP_HOST
    port: int = ICLOUD_SMTP_PORT
    use_starttls: bool = True
    timeout: float = DEFAULT_TIMEOUT
    auth: Optional[PasswordAuth] = None

    @property
    def username(self) -> str:
        return self.auth.username if self.auth is not None else ""


@dataclass(frozen=True)
class MailConfig:
    email: str
    imap: IMAPConfig
    smtp: SMTPConfig
    tool_timeout: float = DEFAULT_TIMEOUT
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, *, dotenv: bool = True) -> "MailConfig":
        """
        Build the configuration from environment variables (and a .env file
        in the working directory when present).
        """
        if dotenv:
            load_dotenv()

        email = (os.getenv("ICLOUD_EMAIL") or "").strip()
        password = os.getenv("ICLOUD_PASSWORD") or ""

        if not email:
            raise ConfigError("ICLOUD_EMAIL environment variable is required")
        if not password:
            raise ConfigError(
                "ICLOUD_PASSWORD environment variable is required "
                "(use an app-specific password from appleid.apple.com)"
            )

        auth = PasswordAuth(username=email, password=password)
        timeout = _env_float("MAILBRIDGE_TIMEOUT", DEFAULT_TIMEOUT)

        return cls(
            email=email,
            imap=IMAPConfig(
                host=os.getenv("IMAP_HOST", ICLOUD_IMAP_HOST),
                port=_env_int("IMAP_PORT", ICLOUD_IMAP_PORT),
                timeout=timeout,
                auth=auth,
            ),
            smtp=SMTPConfig(
                host=os.getenv("SMTP_HOST", ICLOUD_SMTP_HOST),
                port=_env_int("SMTP_PORT", ICLOUD_SMTP_PORT),
                timeout=timeout,
                auth=auth,
            ),
            tool_timeout=timeout,
            log_level=os.getenv("MAILBRIDGE_LOG_LEVEL", "INFO").upper(),
        )


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from e


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from e
    if value <= 0:
        raise ConfigError(f"{name} must be positive, got {raw!r}")
    return value
