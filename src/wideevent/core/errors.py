"""Error taxonomy for ingestion and query paths.

Each error carries the HTTP status it maps to and renders a JSON body with an
``error`` field, so adapters can turn any of them into a response directly.
"""

from typing import Any


class WideEventError(Exception):
    """Base class for all wideevent errors."""

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_body(self) -> dict[str, Any]:
        """Return the JSON response body for this error."""
        return {"error": self.message}


class AuthError(WideEventError):
    """Credential missing, unknown, disabled or expired."""

    status_code = 401


class ProjectBindingError(AuthError):
    """Credential is valid but not associated with a project."""

    status_code = 400


class InvalidRequestError(WideEventError):
    """Request body could not be interpreted."""

    status_code = 400


class QuotaExceeded(WideEventError):
    """Account has used its monthly event allowance."""

    status_code = 429

    def __init__(self, current_count: int, limit: int) -> None:
        super().__init__("Monthly event limit reached")
        self.current_count = current_count
        self.limit = limit

    def to_body(self) -> dict[str, Any]:
        return {
            "error": self.message,
            "limitReached": True,
            "currentCount": self.current_count,
            "limit": self.limit,
        }


class PersistenceError(WideEventError):
    """The analytical store rejected or failed an insert."""

    status_code = 500


class StoreError(WideEventError):
    """The analytical store failed a query."""

    status_code = 500


class DependencyError(WideEventError):
    """A collaborator (limits service, credential store, transport) failed."""

    status_code = 502


class ValidationError(WideEventError, ValueError):
    """A field name or value cannot be placed into a query."""

    status_code = 400
