"""
Shared pytest fixtures.

Each test gets a fresh in-memory SQLite database. Settings are forced into
test mode before any application module is imported.
"""

import os

os.environ["ENV"] = "test"
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("PAIRING_ITERATIONS", "500")
os.environ.setdefault("WAITLIST_PROMOTION", "manual")

import itertools
import random
from datetime import datetime
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from mahjong_club.database.db import Base
from mahjong_club.database.models import Tournament, TournamentPlayer
from mahjong_club.services import game_service, player_service, registry_service, tournament_service

# Final scores handed out in seat order when a test settles a table
DEFAULT_TABLE_SCORES = (32000, 28000, 25000, 15000)


@pytest_asyncio.fixture
async def db_session():
    """Create a test database session on a fresh in-memory database."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async_session_maker = async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with async_session_maker() as session:
        yield session

    await engine.dispose()


@pytest_asyncio.fixture
async def make_player(db_session):
    """Factory for player identities; each gets a bearer token token-<id>."""
    counter = itertools.count(1)

    async def _make(name=None, is_guest=False, is_admin=False):
        n = next(counter)
        return await player_service.create_player(
            db_session,
            display_name=name or f"Player {n}",
            is_guest=is_guest,
            is_admin=is_admin,
            auth_token=None if is_guest else f"token-{n}",
        )

    return _make


@pytest_asyncio.fixture
async def admin(make_player):
    return await make_player(name="Admin", is_admin=True)


@pytest_asyncio.fixture
async def make_tournament(db_session):
    """Factory for NotStarted tournaments."""

    async def _make(**kwargs):
        kwargs.setdefault("name", "Autumn Open")
        kwargs.setdefault("date", datetime(2026, 11, 1, 10, 0))
        kwargs.setdefault("location", "Club room")
        return await tournament_service.create_tournament(db_session, **kwargs)

    return _make


@pytest_asyncio.fixture
async def signed_up(db_session, make_player, make_tournament):
    """Factory: a tournament with `count` players on the roster."""

    async def _make(count, **kwargs):
        tournament = await make_tournament(**kwargs)
        players = []
        for _ in range(count):
            player = await make_player()
            await registry_service.signup(db_session, tournament["id"], player.id)
            players.append(player)
        return tournament, players

    return _make


@pytest_asyncio.fixture
async def settle_table(db_session, admin):
    """
    Submit and verify the result of one table.

    Scores are handed out in seat order; the admin submits and verifies so
    tests do not depend on who sits where.
    """

    async def _settle(tournament_id, round_number, pairing, scores=DEFAULT_TABLE_SCORES,
                      points_left_on_table=0, verify=True):
        lines = [
            {"player_id": seat["player_id"], "filler_slot": seat["filler_slot"], "score": score}
            for seat, score in zip(pairing["seats"], scores)
        ]
        game = await tournament_service.submit_result(
            db_session,
            tournament_id,
            round_number,
            pairing["table_number"],
            lines,
            submitted_by=admin,
            points_left_on_table=points_left_on_table,
        )
        if verify:
            game = await game_service.verify_game(db_session, game["id"], admin)
        return game

    return _settle


@pytest_asyncio.fixture
async def settle_round(db_session, settle_table):
    """Settle every table of a round, optionally skipping some table numbers."""

    async def _settle(tournament_id, round_number, skip_tables=(), verify=True,
                      scores=DEFAULT_TABLE_SCORES):
        tournament = await tournament_service.get_tournament(db_session, tournament_id)
        round_ = next(r for r in tournament["rounds"] if r["round_number"] == round_number)
        for pairing in round_["pairings"]:
            if pairing["table_number"] in skip_tables:
                continue
            await settle_table(tournament_id, round_number, pairing, scores=scores, verify=verify)

    return _settle


@pytest.fixture
def rng():
    return random.Random(20261019)


@pytest.fixture
def transient_tournament():
    """Factory for an unsaved Tournament with roster entries for the given ids."""

    def _make(player_ids, starting_point_value=25000, dropped=()):
        tournament = Tournament(
            name="Transient",
            starting_point_value=starting_point_value,
        )
        tournament.players = [
            TournamentPlayer(player_id=pid, uma=Decimal(0), dropped=pid in dropped)
            for pid in player_ids
        ]
        tournament.rounds = []
        tournament.waitlist = []
        tournament.uma_penalties = []
        return tournament

    return _make
