"""
Database Models

This module defines the SQLAlchemy models backing the persistence gateway:
- Game: one row per bingo session (state, number pool, called numbers)
- GamePlayer: one row per player, including disconnected ones awaiting reconnection
- GameWinner: prize history, at most one row per prize per game
"""

from sqlalchemy import (
    Column, String, Integer, Boolean, DateTime, ForeignKey, JSON, Enum, UniqueConstraint
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base
from ..game.session import PrizeKind, SessionState


class Game(Base):
    """
    Bingo session row.

    Pool, called numbers and board config are stored as JSON.
    """
    __tablename__ = "games"

    # Primary key is the shareable session code
    id = Column(String(16), primary_key=True, doc="Session code")

    state = Column(Enum(SessionState), default=SessionState.WAITING, index=True, doc="Session state")
    config = Column(JSON, nullable=False, default=dict, doc="Board config")

    # Numbers
    number_pool = Column(JSON, nullable=False, default=list, doc="Remaining undrawn numbers")
    called_numbers = Column(JSON, nullable=False, default=list, doc="Called numbers in draw order")
    current_number = Column(Integer, nullable=True, doc="Last called number")

    # Timestamps
    created_at = Column(DateTime(timezone=True), default=func.now(), doc="Creation timestamp")
    started_at = Column(DateTime(timezone=True), nullable=True, doc="When drawing started")
    finished_at = Column(DateTime(timezone=True), nullable=True, doc="When the session finished")
    finish_reason = Column(String(50), nullable=True, doc="Why the session finished")

    # Relationships
    players = relationship("GamePlayer", back_populates="game", cascade="all, delete-orphan")
    winners = relationship("GameWinner", back_populates="game", cascade="all, delete-orphan")

    def __repr__(self) -> str:
        return f"<Game(id={self.id}, state={self.state.value if self.state else None})>"


class GamePlayer(Base):
    """
    Player row with reconnection support.

    The id is the player's current connection id and is rewritten on
    reconnection; reconnect_token stays stable.
    """
    __tablename__ = "game_players"

    id = Column(String(64), primary_key=True, doc="Connection-bound player ID")
    game_id = Column(String(16), ForeignKey("games.id"), nullable=False, index=True, doc="Game ID")

    name = Column(String(64), nullable=False, doc="Display name")
    card = Column(JSON, nullable=False, doc="Card grid")
    marked_numbers = Column(JSON, nullable=False, default=list, doc="Marked numbers")

    # Connection tracking
    is_connected = Column(Boolean, default=True, doc="Whether the player is connected")
    disconnected_at = Column(DateTime(timezone=True), nullable=True, doc="When the player disconnected")
    reconnect_token = Column(String(64), unique=True, index=True, nullable=True, doc="Reconnection token")

    joined_at = Column(DateTime(timezone=True), default=func.now(), doc="When the player joined")

    # Relationships
    game = relationship("Game", back_populates="players")

    def __repr__(self) -> str:
        return f"<GamePlayer(id={self.id}, name={self.name}, connected={self.is_connected})>"


class GameWinner(Base):
    """
    Prize award.

    The (game_id, prize) constraint keeps storage exactly-once even if
    two writers race.
    """
    __tablename__ = "game_winners"
    __table_args__ = (
        UniqueConstraint("game_id", "prize", name="uq_game_winners_prize"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    game_id = Column(String(16), ForeignKey("games.id"), nullable=False, index=True, doc="Game ID")
    player_id = Column(String(64), nullable=False, doc="Winning player's connection ID")
    player_name = Column(String(64), nullable=False, doc="Winning player's name")
    prize = Column(Enum(PrizeKind), nullable=False, doc="Prize won")
    won_at = Column(DateTime(timezone=True), default=func.now(), doc="When the prize was won")

    # Relationships
    game = relationship("Game", back_populates="winners")

    def __repr__(self) -> str:
        return f"<GameWinner(game_id={self.game_id}, prize={self.prize.value}, player={self.player_name})>"
