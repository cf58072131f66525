from .client import IMAPSession
from .query import IMAPQuery

__all__ = [
    "IMAPSession",
    "IMAPQuery",
]
