"""Error taxonomy shared by the database helpers, services and HTTP layer.

Every error carries the HTTP status it maps to so that ``server.py`` can
render all of them with a single Flask error handler.
"""
from typing import Any, Dict, Optional


class StateError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code = 500

    def __init__(self, message: str, details: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {'error': self.message}
        if self.details:
            body['details'] = self.details
        return body


class NotFound(StateError):
    """No game-state document exists for the requested user id."""

    status_code = 404


class InvalidInput(StateError):
    """The request is missing required fields or they have the wrong shape."""

    status_code = 400


class StorageFailure(StateError):
    """The backing datastore raised an error."""

    status_code = 500
