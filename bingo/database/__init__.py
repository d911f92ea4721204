"""
Database Package

This package contains persistence for the engine:
- Async engine and session management
- SQLAlchemy models for games, players and winners
- Persistence gateway used by the registry and dispatcher
"""
