# tests/conftest.py
import pytest

from fake_imap_conn import FakeIMAPConn, FakeSMTP

from mailbridge.auth import PasswordAuth
from mailbridge.config import IMAPConfig, SMTPConfig
from mailbridge.imap import IMAPSession
from mailbridge.smtp import SMTPClient

ACCOUNT = "me@icloud.com"


@pytest.fixture
def conn() -> FakeIMAPConn:
    return FakeIMAPConn()


@pytest.fixture
def imap_config() -> IMAPConfig:
    return IMAPConfig(host="imap.test", port=993, auth=PasswordAuth(ACCOUNT, "secret"))


@pytest.fixture
def session(conn, imap_config):
    s = IMAPSession.open(imap_config, connect=lambda cfg: conn)
    yield s
    s.close()


@pytest.fixture
def smtp_server() -> FakeSMTP:
    return FakeSMTP()


@pytest.fixture
def smtp(smtp_server) -> SMTPClient:
    cfg = SMTPConfig(host="smtp.test", port=587, auth=PasswordAuth(ACCOUNT, "secret"))
    return SMTPClient(cfg, from_email=ACCOUNT, smtp_factory=lambda c: smtp_server)
