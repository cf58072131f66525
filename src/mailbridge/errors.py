# mailbridge/errors.py
from __future__ import annotations


class MailBridgeError(Exception):
    """Base class for every error raised by mailbridge."""


class ConfigError(MailBridgeError):
    pass


class IMAPConnectionError(MailBridgeError):
    """
    Opening or authenticating the IMAP session failed.
    Fatal for the session; the core never retries.
    """


class AuthError(IMAPConnectionError):
    pass


class IMAPError(MailBridgeError):
    """A command on an open session failed (SELECT, SEARCH, FETCH, STORE, ...)."""


class ValidationError(MailBridgeError, ValueError):
    """Input rejected before any network traffic."""


class NotFoundError(MailBridgeError):
    pass


class SMTPError(MailBridgeError):
    pass
