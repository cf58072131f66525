from mailbridge.auth.base import AuthContext
from mailbridge.auth.password import PasswordAuth

__all__ = [
    "AuthContext",
    "PasswordAuth",
]
