"""Notification service package."""

from .backend import (
    EmailBackend,
    InMemoryEmailBackend,
    InMemorySMSBackend,
    SendGridEmailBackend,
    SMSBackend,
    TwilioSMSBackend,
)
from .service import NotificationEvent, NotificationService

__all__ = [
    "EmailBackend",
    "SendGridEmailBackend",
    "InMemoryEmailBackend",
    "SMSBackend",
    "TwilioSMSBackend",
    "InMemorySMSBackend",
    "NotificationService",
    "NotificationEvent",
]
