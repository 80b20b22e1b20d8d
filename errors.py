"""Domain errors raised by the service layer and mapped to HTTP in main.py"""

from typing import Optional


class DocumentNotFound(LookupError):
    def __init__(self, collection: str, doc_id: str):
        super().__init__(f"{collection}/{doc_id} not found")
        self.collection = collection
        self.doc_id = doc_id


class InvalidStatusTransition(ValueError):
    def __init__(self, current: Optional[str], requested: str):
        super().__init__(f"Cannot move from {current!r} to {requested!r}")
        self.current = current
        self.requested = requested


class ApplicationLocked(ValueError):
    """An approved application cannot be overwritten by a new submission."""


class SubmissionIncomplete(RuntimeError):
    """The application was saved but the applicant profile was not promoted."""

    def __init__(self, app_type: str, user_id: str):
        super().__init__(f"{app_type} application for {user_id} saved but profile not updated")
        self.app_type = app_type
        self.user_id = user_id


class UploadRejected(ValueError):
    pass


class AuthError(Exception):
    """Authentication failure carrying a provider style code, e.g. auth/invalid-credential"""

    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


class DatabaseNotConfigured(RuntimeError):
    def __init__(self):
        super().__init__("Database not configured")


class PreconditionFailed(ValueError):
    """A conditional update found the document but not in the expected state."""

    def __init__(self, collection: str, doc_id: str, expected: dict):
        super().__init__(f"{collection}/{doc_id} does not match {expected}")
        self.collection = collection
        self.doc_id = doc_id
        self.expected = expected


class OrderRejected(ValueError):
    """The order cannot be placed as requested (unknown or unavailable items, closed restaurant)."""
