"""
Round completion gate.

A table is settled when its pairing references a game and that game is
verified. A pairing's game may or may not have been loaded with it, so it is
normalized to a GameRef first and everything below works on that.
"""

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional, Union

from sqlalchemy import inspect, select
from sqlalchemy.ext.asyncio import AsyncSession

from mahjong_club.database.models import Game, Pairing, Round


@dataclass(frozen=True)
class UnloadedGame:
    game_id: int


@dataclass(frozen=True)
class LoadedGame:
    game: Game


GameRef = Union[UnloadedGame, LoadedGame]

# game_id -> verified. Missing ids count as not verified.
VerificationLookup = Callable[[int], Awaitable[bool]]


def game_ref(pairing: Pairing) -> Optional[GameRef]:
    """Normalize a pairing's game reference; None when nothing is attached."""
    if "game" not in inspect(pairing).unloaded and pairing.game is not None:
        return LoadedGame(pairing.game)
    if pairing.game_id is not None:
        return UnloadedGame(pairing.game_id)
    return None


async def is_settled(ref: Optional[GameRef], lookup: VerificationLookup) -> bool:
    if ref is None:
        return False
    if isinstance(ref, LoadedGame):
        return bool(ref.game.verified)
    return await lookup(ref.game_id)


async def _settled_by_table(round_: Round, lookup: VerificationLookup) -> Dict[int, bool]:
    # Snapshot the references before any lookup runs
    refs = [(pairing.table_number, game_ref(pairing)) for pairing in round_.pairings]
    results = await asyncio.gather(*(is_settled(ref, lookup) for _, ref in refs))
    return {table: settled for (table, _), settled in zip(refs, results)}


async def all_settled(round_: Round, lookup: VerificationLookup) -> bool:
    """True when every table of the round has a verified game."""
    settled = await _settled_by_table(round_, lookup)
    return bool(settled) and all(settled.values())


async def unsettled_tables(round_: Round, lookup: VerificationLookup) -> List[int]:
    settled = await _settled_by_table(round_, lookup)
    return sorted(table for table, ok in settled.items() if not ok)


def lookup_from_flags(flags: Dict[int, bool]) -> VerificationLookup:
    async def lookup(game_id: int) -> bool:
        return flags.get(game_id, False)

    return lookup


async def load_verification_lookup(session: AsyncSession, round_: Round) -> VerificationLookup:
    """
    Read the verification flags of every game referenced by the round in
    one query, so the gate answers from a single snapshot.
    """
    game_ids = [p.game_id for p in round_.pairings if p.game_id is not None]
    if not game_ids:
        return lookup_from_flags({})
    result = await session.execute(
        select(Game.id, Game.verified).where(Game.id.in_(game_ids))
    )
    return lookup_from_flags({game_id: bool(verified) for game_id, verified in result.all()})
