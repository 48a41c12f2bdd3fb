"""Core utilities for Pocket Chat"""

from pocket_chat.core.config import settings
from pocket_chat.core.logging import configure_logging

__all__ = ["settings", "configure_logging"]
