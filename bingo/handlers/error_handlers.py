"""
Error Handlers

This module turns command outcomes into acknowledgement payloads.
Engine errors become structured failures with a stable code; anything
unexpected is logged with its traceback and reported as an internal
error, with details only in development.
"""

import traceback
from typing import Any, Dict, Optional

from ..errors import BingoError
from ..utils.config import is_development
from ..utils.logging_config import get_logger

# Logger setup
logger = get_logger(__name__)


def success_ack(data: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Build a success acknowledgement."""
    ack: Dict[str, Any] = {"success": True}
    if data:
        ack.update(data)
    return ack


def error_ack(error: Exception, command: Optional[str] = None,
              connection_id: Optional[str] = None) -> Dict[str, Any]:
    """
    Build a failure acknowledgement for an exception.

    Args:
        error: The exception raised while handling a command
        command: Command name, for logging
        connection_id: Connection that issued the command, for logging

    Returns:
        Dict[str, Any]: {"success": False, "error", "code", ...extra data}
    """
    if isinstance(error, BingoError):
        logger.info(
            f"Command rejected - command={command}, sid={connection_id}, "
            f"code={error.code}, error={error.message}"
        )
        ack: Dict[str, Any] = {"success": False, "error": error.message, "code": error.code}
        for key, value in error.data.items():
            ack.setdefault(key, value)
        return ack

    # Unexpected failure
    error_message = str(error) or type(error).__name__
    tb = "".join(traceback.format_exception(type(error), error, error.__traceback__))
    logger.error(
        f"Command failed - command={command}, sid={connection_id}, "
        f"error_message={error_message}, traceback={tb}"
    )

    if is_development():
        # In development, show detailed error for debugging
        message = f"Internal error: {error_message}"
    else:
        message = "Something went wrong. Please try again in a few moments."
    return {"success": False, "error": message, "code": "internal_error"}
