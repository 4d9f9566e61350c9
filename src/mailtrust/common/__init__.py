"""Configuration, exceptions, entity models and the persistence boundary."""

from .config import Settings, get_settings, reload_settings
from .exceptions import MailTrustError
from .storage import MemoryStorage, Storage

__all__ = [
    "MailTrustError",
    "MemoryStorage",
    "Settings",
    "Storage",
    "get_settings",
    "reload_settings",
]
