"""
Error taxonomy for the ordering and reconciliation engine.

Every failure raised out of an engine entry point is one of these. The
``status_code`` is a hint for whatever transport layer hosts the engine.
"""

from typing import Optional


class EngineError(Exception):
    """Base exception for engine errors"""

    status_code = 500

    def __init__(self, message: str, details: Optional[dict] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        """Convert error to dictionary."""
        payload = {"error": type(self).__name__, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class InvalidArgument(EngineError):
    """Malformed delta, non-permutation reorder target or blank name"""

    status_code = 400


class NotFound(EngineError):
    """Unknown collection, content or referenced entity"""

    status_code = 404


class Conflict(EngineError):
    """Concurrent modification detected, or a uniqueness rule was violated"""

    status_code = 409


class Internal(EngineError):
    """Storage failure"""

    status_code = 500
