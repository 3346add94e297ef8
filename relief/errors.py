"""
Error taxonomy shared by the services and the HTTP layer.

Each error carries a message that is safe to show to the caller and the
HTTP status the API maps it to.
"""
from typing import Dict, Optional


class ReliefError(Exception):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationFailed(ReliefError):
    status_code = 422

    def __init__(self, errors: Dict[str, str]):
        self.errors = dict(errors)
        summary = "; ".join(f"{field}: {msg}" for field, msg in self.errors.items())
        super().__init__(f"Validation failed ({summary})")


class AuthorizationError(ReliefError):
    status_code = 403


class NotFoundError(ReliefError):
    status_code = 404


class ConflictError(ReliefError):
    status_code = 409


class ConcurrencyError(ReliefError):
    """The row changed since it was read; re-fetch and retry."""
    status_code = 409


class StoreUnavailableError(ReliefError):
    status_code = 503

    def __init__(self, message: str, retry_after: Optional[int] = 2):
        super().__init__(message)
        self.retry_after = retry_after
