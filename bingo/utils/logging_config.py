"""
Logging Configuration

This module sets up basic logging for the application and provides
audit helpers for game and player events.
"""

import logging
import sys

from .config import get_settings


def setup_logging() -> None:
    """
    Set up basic logging configuration.

    This function configures standard logging for the application.
    """
    settings = get_settings()

    # Configure standard logging
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout)
        ]
    )

    # Set specific logger levels
    logging.getLogger("engineio").setLevel(logging.WARNING)
    logging.getLogger("socketio").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
    if not settings.debug:
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

    # Create application logger
    logger = logging.getLogger(__name__)
    logger.info("Logging configuration initialized")


def get_logger(name: str):
    """
    Get a configured logger instance.

    Args:
        name: Logger name (usually __name__)

    Returns:
        logging.Logger: Configured logger instance
    """
    return logging.getLogger(name)


def log_player_action(player_id: str, action: str, **kwargs) -> None:
    """
    Log player actions for audit and analytics.

    Args:
        player_id: Connection-bound player ID
        action: Action description
        **kwargs: Additional context data
    """
    logger = get_logger("player_actions")
    extra_info = " ".join([f"{k}={v}" for k, v in kwargs.items()])
    logger.debug(f"Player action: player_id={player_id} action={action} {extra_info}")


def log_game_event(session_id: str, event_type: str, **kwargs) -> None:
    """
    Log game-related events for debugging and analytics.

    Args:
        session_id: Session code
        event_type: Type of game event
        **kwargs: Additional event data
    """
    logger = get_logger("game_events")
    extra_info = " ".join([f"{k}={v}" for k, v in kwargs.items()])
    logger.debug(f"Game event: session_id={session_id} event_type={event_type} {extra_info}")
