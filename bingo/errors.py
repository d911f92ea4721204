"""
Engine Errors

This module defines the error taxonomy shared by the game engine,
the persistence gateway and the protocol dispatcher. Every error
carries a stable machine-readable code that ends up in the ack
payload returned to the client.
"""

from typing import Any, Dict, Optional


class BingoError(Exception):
    """
    Base class for all engine errors.

    Attributes:
        code: Stable error code sent to clients
        message: Human readable reason
        data: Extra fields merged into the failure acknowledgement
    """

    code = "error"
    default_message = "Request failed"

    def __init__(self, message: Optional[str] = None, data: Optional[Dict[str, Any]] = None):
        self.message = message or self.default_message
        self.data: Dict[str, Any] = dict(data or {})
        super().__init__(self.message)

    def with_data(self, **data: Any) -> "BingoError":
        """Attach extra ack fields and return self for re-raising."""
        self.data.update(data)
        return self


class ValidationError(BingoError):
    """Malformed or missing input."""

    code = "validation_error"
    default_message = "Invalid request"


class NotFoundError(BingoError):
    """Unknown session or player."""

    code = "not_found"
    default_message = "Not found"


class InvalidStateError(BingoError):
    """Operation is illegal in the session's current state."""

    code = "invalid_state"
    default_message = "Operation not allowed in the current state"


class ConflictError(BingoError):
    """The target resource was already taken."""

    code = "conflict"
    default_message = "Conflict"


class AlreadyClaimedError(ConflictError):
    """A prize slot has already been awarded."""

    default_message = "Prize already claimed"


class AuthorizationError(BingoError):
    """Connection is not bound to the target session or role."""

    code = "unauthorized"
    default_message = "Not allowed for this connection"


class PersistenceError(BingoError):
    """Durable store failure."""

    code = "persistence_error"
    default_message = "Failed to save game data"
