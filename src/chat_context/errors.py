"""
Exceptions raised by the context memory core.
"""


class ContextMemoryError(Exception):
    """Base class for all context memory errors."""
    pass


class SessionNotFoundError(ContextMemoryError):
    """Operation on a session id that is neither cached nor persisted."""

    def __init__(self, session_id: str):
        super().__init__(f"Session {session_id} not found")
        self.session_id = session_id


class PersistenceError(ContextMemoryError):
    """The persistence store is unreachable or rejected an operation."""
    pass


class DeserializationError(ContextMemoryError):
    """A stored payload could not be turned back into a domain object."""
    pass
