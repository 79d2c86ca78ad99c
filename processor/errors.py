"""Error types raised by the events backend."""
from typing import Dict, Optional


class EventsError(Exception):
    """Base class for application errors."""


class ValidationError(EventsError):
    """
    One or more submitted form fields are invalid.

    Args:
        errors: Mapping of field name to the message shown next to that field
    """

    def __init__(self, errors: Dict[str, str]):
        self.errors = dict(errors)
        message = '; '.join(f"{name}: {text}" for name, text in self.errors.items())
        super().__init__(message)

    @property
    def fields(self):
        return list(self.errors)


class ExternalCallError(EventsError):
    """A call to the event table, image bucket or network failed."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class EventNotFoundError(EventsError):
    """No event exists with the requested identifier."""


class PermissionDeniedError(EventsError):
    """The supplied edit password does not match the stored one."""


# Substring of the underlying error -> message shown to the user
FRIENDLY_MESSAGES = (
    ('InvalidKey', 'Invalid file name. Please rename your file and try again.'),
    ('Permission denied', 'You do not have permission to upload files.'),
    ('AccessDenied', 'You do not have permission to upload files.'),
    ('violates foreign key constraint',
     'Unable to save event due to database constraints.'),
    ('ConditionalCheckFailed',
     'Unable to save event due to database constraints.'),
)


def friendly_error_message(error: BaseException) -> str:
    """
    Convert an exception into a best-effort human readable message.

    Args:
        error: Exception raised by an external call

    Returns:
        Message suitable for an alert
    """
    text = str(error).strip()
    if not text:
        return 'An unknown error occurred'

    for needle, message in FRIENDLY_MESSAGES:
        if needle in text:
            return message

    return text
