"""
Bingo Session Engine Package

This package contains the real-time bingo server including:
- Session state machine, card generation and win evaluation
- Automatic number caller
- Protocol dispatcher and socket.io handlers
- Database models and persistence gateway
- Utility functions and helpers
"""

__version__ = "1.0.0"

# Package imports for easier access
from .main import main
from .utils.config import get_settings

__all__ = ["main", "get_settings"]
