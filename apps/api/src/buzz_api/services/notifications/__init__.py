"""Notification service package."""

from .backend import HttpSMSBackend, InMemorySMSBackend, LoggingSMSBackend, SMSBackend
from .service import NotificationEvent, NotificationService

__all__ = [
    "HttpSMSBackend",
    "InMemorySMSBackend",
    "LoggingSMSBackend",
    "SMSBackend",
    "NotificationEvent",
    "NotificationService",
]
