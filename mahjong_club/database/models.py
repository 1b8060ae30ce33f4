"""
SQLAlchemy ORM models for the mahjong club tournament engine.
"""

import enum
from decimal import Decimal
from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    Boolean,
    Numeric,
    DateTime,
    Enum,
    ForeignKey,
    UniqueConstraint,
    CheckConstraint,
    Index,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from mahjong_club.database.db import Base
from mahjong_club.models.occupants import Occupant, occupant_from_columns


class TournamentStatus(str, enum.Enum):
    """Tournament lifecycle status."""

    NOT_STARTED = "NotStarted"
    IN_PROGRESS = "InProgress"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


class Seat(str, enum.Enum):
    """Table seat (wind)."""

    EAST = "East"
    SOUTH = "South"
    WEST = "West"
    NORTH = "North"


SEAT_ORDER = (Seat.EAST, Seat.SOUTH, Seat.WEST, Seat.NORTH)
SEAT_INDEX = {seat: index for index, seat in enumerate(SEAT_ORDER)}


class OccupantMixin:
    """Shared accessor for rows that hold either a player or a filler."""

    @property
    def occupant(self) -> Occupant:
        return occupant_from_columns(self.player_id, self.filler_slot)


class Player(Base):
    """Player identities, owned by account management."""

    __tablename__ = "players"

    id = Column(Integer, primary_key=True, autoincrement=True)
    display_name = Column(String(100), nullable=False)
    email = Column(String, nullable=True)
    is_guest = Column(Boolean, default=False, nullable=False, server_default="false")
    is_admin = Column(Boolean, default=False, nullable=False, server_default="false")
    auth_token = Column(String, nullable=True, unique=True)  # Opaque bearer token
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    tournament_entries = relationship("TournamentPlayer", back_populates="player")

    __table_args__ = (
        Index("idx_players_display_name", "display_name"),
    )


class Tournament(Base):
    """Multi-round tournament aggregate."""

    __tablename__ = "tournaments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    date = Column(DateTime(timezone=True), nullable=False)
    location = Column(String, nullable=True)  # Street address or online location
    status = Column(
        Enum(TournamentStatus), nullable=False, default=TournamentStatus.NOT_STARTED
    )
    starting_point_value = Column(Integer, nullable=False, default=25000)
    max_players = Column(Integer, nullable=True)  # NULL means unlimited
    round_count = Column(Integer, nullable=True)  # NULL means derived from active players
    round_duration_minutes = Column(Integer, nullable=True)  # Informational only
    is_east_only = Column(Boolean, default=False, nullable=False)
    created_by = Column(Integer, ForeignKey("players.id", ondelete="SET NULL"), nullable=True)
    version = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    players = relationship(
        "TournamentPlayer",
        back_populates="tournament",
        cascade="all, delete-orphan",
        order_by="TournamentPlayer.id",
    )
    waitlist = relationship(
        "WaitlistEntry",
        back_populates="tournament",
        cascade="all, delete-orphan",
        order_by=lambda: [WaitlistEntry.added_at, WaitlistEntry.id],
    )
    rounds = relationship(
        "Round",
        back_populates="tournament",
        cascade="all, delete-orphan",
        order_by="Round.round_number",
    )
    uma_penalties = relationship(
        "UmaPenalty",
        back_populates="tournament",
        cascade="all, delete-orphan",
        order_by="UmaPenalty.id",
    )
    creator = relationship("Player", foreign_keys=[created_by])

    # Every write bumps the version; concurrent writers fail with StaleDataError
    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("idx_tournaments_date", "date"),
        Index("idx_tournaments_status", "status"),
        CheckConstraint("max_players IS NULL OR max_players > 0", name="ck_tournaments_max_players"),
    )


class TournamentPlayer(Base):
    """Roster entry with cumulative UMA."""

    __tablename__ = "tournament_players"

    id = Column(Integer, primary_key=True, autoincrement=True)
    tournament_id = Column(Integer, ForeignKey("tournaments.id", ondelete="CASCADE"), nullable=False)
    player_id = Column(Integer, ForeignKey("players.id", ondelete="CASCADE"), nullable=False)
    uma = Column(Numeric(12, 3), nullable=False, default=Decimal("0"))
    dropped = Column(Boolean, nullable=False, default=False)
    joined_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    tournament = relationship("Tournament", back_populates="players")
    player = relationship("Player", back_populates="tournament_entries")

    __table_args__ = (
        UniqueConstraint("tournament_id", "player_id", name="uq_tournament_players"),
        Index("idx_tournament_players_player", "player_id"),
    )


class WaitlistEntry(Base):
    """Waitlisted player, served FIFO by added_at."""

    __tablename__ = "tournament_waitlist"

    id = Column(Integer, primary_key=True, autoincrement=True)
    tournament_id = Column(Integer, ForeignKey("tournaments.id", ondelete="CASCADE"), nullable=False)
    player_id = Column(Integer, ForeignKey("players.id", ondelete="CASCADE"), nullable=False)
    added_at = Column(DateTime(timezone=True), nullable=False)  # UTC

    # Relationships
    tournament = relationship("Tournament", back_populates="waitlist")
    player = relationship("Player")

    __table_args__ = (
        UniqueConstraint("tournament_id", "player_id", name="uq_tournament_waitlist"),
        Index("idx_tournament_waitlist_added_at", "tournament_id", "added_at"),
    )


class Round(Base):
    """A tournament round. closed_at is set once, when UMA is applied."""

    __tablename__ = "tournament_rounds"

    id = Column(Integer, primary_key=True, autoincrement=True)
    tournament_id = Column(Integer, ForeignKey("tournaments.id", ondelete="CASCADE"), nullable=False)
    round_number = Column(Integer, nullable=False)
    start_date = Column(DateTime(timezone=True), nullable=True)  # Informational only
    closed_at = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    tournament = relationship("Tournament", back_populates="rounds")
    pairings = relationship(
        "Pairing",
        back_populates="round",
        cascade="all, delete-orphan",
        order_by="Pairing.table_number",
    )

    __table_args__ = (
        UniqueConstraint("tournament_id", "round_number", name="uq_tournament_rounds_number"),
        CheckConstraint("round_number >= 1", name="ck_tournament_rounds_number"),
    )

    @property
    def is_closed(self) -> bool:
        return self.closed_at is not None


class Pairing(Base):
    """One table of four in a round."""

    __tablename__ = "pairings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    round_id = Column(Integer, ForeignKey("tournament_rounds.id", ondelete="CASCADE"), nullable=False)
    table_number = Column(Integer, nullable=False)
    game_id = Column(Integer, ForeignKey("games.id", ondelete="SET NULL"), nullable=True, unique=True)

    # Relationships
    round = relationship("Round", back_populates="pairings")
    seats = relationship(
        "PairingSeat",
        back_populates="pairing",
        cascade="all, delete-orphan",
        order_by="PairingSeat.id",
    )
    game = relationship("Game", back_populates="pairing")

    __table_args__ = (
        UniqueConstraint("round_id", "table_number", name="uq_pairings_table"),
        CheckConstraint("table_number >= 1", name="ck_pairings_table_number"),
    )

    @property
    def occupants(self):
        return [seat.occupant for seat in self.seats]


class PairingSeat(OccupantMixin, Base):
    """Seat assignment within a pairing."""

    __tablename__ = "pairing_seats"

    id = Column(Integer, primary_key=True, autoincrement=True)
    pairing_id = Column(Integer, ForeignKey("pairings.id", ondelete="CASCADE"), nullable=False)
    seat = Column(Enum(Seat), nullable=False)
    player_id = Column(Integer, ForeignKey("players.id"), nullable=True)
    filler_slot = Column(Integer, nullable=True)

    # Relationships
    pairing = relationship("Pairing", back_populates="seats")
    player = relationship("Player")

    __table_args__ = (
        UniqueConstraint("pairing_id", "seat", name="uq_pairing_seats_seat"),
        CheckConstraint(
            "(player_id IS NULL) <> (filler_slot IS NULL)", name="ck_pairing_seats_occupant"
        ),
    )


class Game(Base):
    """Submitted match result for one table."""

    __tablename__ = "games"

    id = Column(Integer, primary_key=True, autoincrement=True)
    submitted_by = Column(Integer, ForeignKey("players.id", ondelete="SET NULL"), nullable=True)
    game_date = Column(DateTime(timezone=True), nullable=False)
    notes = Column(String(500), nullable=True)
    points_left_on_table = Column(Integer, nullable=False, default=0)
    is_east_only = Column(Boolean, nullable=False, default=False)
    ran_out_of_time = Column(Boolean, nullable=False, default=False)
    verified = Column(Boolean, nullable=False, default=False)
    verified_by = Column(Integer, ForeignKey("players.id", ondelete="SET NULL"), nullable=True)
    verified_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    lines = relationship(
        "GamePlayer",
        back_populates="game",
        cascade="all, delete-orphan",
        order_by="GamePlayer.id",
    )
    pairing = relationship("Pairing", back_populates="game", uselist=False)
    submitter = relationship("Player", foreign_keys=[submitted_by])
    verifier = relationship("Player", foreign_keys=[verified_by])

    __table_args__ = (
        Index("idx_games_submitted_by", "submitted_by"),
        Index("idx_games_game_date", "game_date"),
    )


class GamePlayer(OccupantMixin, Base):
    """One (occupant, score, rank) line of a game, stored in seat order."""

    __tablename__ = "game_players"

    id = Column(Integer, primary_key=True, autoincrement=True)
    game_id = Column(Integer, ForeignKey("games.id", ondelete="CASCADE"), nullable=False)
    seat = Column(Enum(Seat), nullable=False)
    player_id = Column(Integer, ForeignKey("players.id"), nullable=True)
    filler_slot = Column(Integer, nullable=True)
    score = Column(Integer, nullable=False)
    rank = Column(Integer, nullable=False)

    # Relationships
    game = relationship("Game", back_populates="lines")
    player = relationship("Player")

    __table_args__ = (
        UniqueConstraint("game_id", "seat", name="uq_game_players_seat"),
        CheckConstraint("rank BETWEEN 1 AND 4", name="ck_game_players_rank"),
        CheckConstraint(
            "(player_id IS NULL) <> (filler_slot IS NULL)", name="ck_game_players_occupant"
        ),
        Index("idx_game_players_player", "player_id"),
    )


class UmaPenalty(Base):
    """Administrative UMA adjustment, folded into standings only."""

    __tablename__ = "uma_penalties"

    id = Column(Integer, primary_key=True, autoincrement=True)
    tournament_id = Column(Integer, ForeignKey("tournaments.id", ondelete="CASCADE"), nullable=False)
    player_id = Column(Integer, ForeignKey("players.id", ondelete="CASCADE"), nullable=False)
    amount = Column(Numeric(12, 3), nullable=False)  # Signed; penalties are usually negative
    reason = Column(String(500), nullable=True)
    created_by = Column(Integer, ForeignKey("players.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    tournament = relationship("Tournament", back_populates="uma_penalties")
    player = relationship("Player", foreign_keys=[player_id])

    __table_args__ = (
        Index("idx_uma_penalties_tournament", "tournament_id"),
    )
