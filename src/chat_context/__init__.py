"""
chat-context - conversation state and long-term user memory for chat agents.
"""

__version__ = "0.1.0"

from .config import Settings, get_settings
from .errors import ContextMemoryError, DeserializationError, PersistenceError, SessionNotFoundError
from .service import ContextMemoryService

__all__ = [
    "ContextMemoryError",
    "ContextMemoryService",
    "DeserializationError",
    "PersistenceError",
    "SessionNotFoundError",
    "Settings",
    "get_settings",
]
