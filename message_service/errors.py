"""
Error vocabulary of the storage and domain layers.

Repository adapters raise RepositoryError subclasses. MessageService turns
them into CoreError subclasses, which the HTTP layer maps to status codes
(see api_errors.py).
"""


# =============================================================================
# Repository errors
# =============================================================================

class RepositoryError(Exception):
    """Any failure talking to the backing store."""


class RecordNotFound(RepositoryError):
    """The targeted record does not exist (zero documents matched)."""


class RepositoryUnavailable(RepositoryError):
    """The backing store could not be reached."""


# =============================================================================
# Domain errors
# =============================================================================

class CoreError(Exception):
    message = "An unknown error occurred"

    def __init__(self, message: str = None):
        super().__init__(message or self.message)


class MessageNotFound(CoreError):
    def __init__(self, message_id):
        self.message_id = message_id
        super().__init__(f"Message with id {message_id} not found")


class InvalidContent(CoreError):
    message = "Message content cannot be empty"


class Unhealthy(CoreError):
    message = "Health check failed"


class ServiceUnavailable(CoreError):
    message = "Service is currently unavailable"


class DatabaseError(CoreError):
    message = "Database error"


class SerializationError(CoreError):
    message = "Serialization error"
