"""Errors raised by external clinical data collaborators."""


class CollaboratorError(Exception):
    """A clinical data service call failed (transport, HTTP status, bad payload)."""

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.status_code = status_code


class CollaboratorTimeout(CollaboratorError):
    """A clinical data service call exceeded its timeout."""
