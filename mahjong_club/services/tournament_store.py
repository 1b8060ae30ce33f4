"""
Loading, committing and serializing the tournament aggregate.

Every mutating operation loads the whole tournament (roster, waitlist,
rounds, pairings, games) in one go, changes it in memory, and commits it
through commit_tournament, which bumps the optimistic-concurrency version.
"""

import logging
from typing import Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from sqlalchemy.orm.exc import StaleDataError

from mahjong_club.database.models import (
    Game,
    GamePlayer,
    Pairing,
    PairingSeat,
    Player,
    Round,
    Tournament,
    TournamentPlayer,
    WaitlistEntry,
)
from mahjong_club.services import uma_service
from mahjong_club.services.errors import (
    ConcurrentModificationError,
    PlayerNotFoundError,
    TournamentNotFoundError,
)
from mahjong_club.utils.datetime_utils import isoformat_or_none, utcnow

logger = logging.getLogger(__name__)


def _aggregate_options():
    return (
        selectinload(Tournament.players).selectinload(TournamentPlayer.player),
        selectinload(Tournament.waitlist).selectinload(WaitlistEntry.player),
        selectinload(Tournament.uma_penalties),
        selectinload(Tournament.rounds)
        .selectinload(Round.pairings)
        .selectinload(Pairing.seats)
        .selectinload(PairingSeat.player),
        selectinload(Tournament.rounds)
        .selectinload(Round.pairings)
        .selectinload(Pairing.game)
        .selectinload(Game.lines)
        .selectinload(GamePlayer.player),
    )


async def load_tournament(
    session: AsyncSession, tournament_id: int, for_update: bool = False
) -> Tournament:
    """
    Load a tournament with its whole aggregate.

    Args:
        session: Database session
        tournament_id: Tournament to load
        for_update: Lock the tournament row until the transaction ends

    Raises:
        TournamentNotFoundError: If no such tournament exists
    """
    query = (
        select(Tournament)
        .where(Tournament.id == tournament_id)
        .options(*_aggregate_options())
        .execution_options(populate_existing=True)
    )
    if for_update:
        query = query.with_for_update(of=Tournament)

    result = await session.execute(query)
    tournament = result.scalar_one_or_none()
    if not tournament:
        raise TournamentNotFoundError(f"Tournament {tournament_id} not found")
    return tournament


async def get_player(session: AsyncSession, player_id: int) -> Player:
    player = await session.get(Player, player_id)
    if not player:
        raise PlayerNotFoundError(f"Player {player_id} not found")
    return player


async def commit_tournament(session: AsyncSession, tournament: Tournament) -> None:
    """
    Commit all pending changes to the aggregate.

    Touching updated_at guarantees an UPDATE of the tournament row, so the
    version check runs even when only child rows changed.

    Raises:
        ConcurrentModificationError: If another transaction committed first
    """
    tournament_id = tournament.id  # Rollback expires the instance
    tournament.updated_at = utcnow()
    try:
        await session.commit()
    except StaleDataError:
        await session.rollback()
        logger.warning(f"Concurrent modification of tournament {tournament_id}")
        raise ConcurrentModificationError(
            f"Tournament {tournament_id} was modified by another request, please retry"
        )


# ============================================================================
# Serialization
# ============================================================================


def _player_name(player: Optional[Player]) -> Optional[str]:
    return player.display_name if player else None


def _occupant_dict(row) -> Dict:
    """Seat or game line -> dict, fillers shown with a placeholder name."""
    if row.player_id is None:
        return {
            "player_id": None,
            "filler_slot": row.filler_slot,
            "is_filler": True,
            "display_name": f"Filler {row.filler_slot}",
        }
    return {
        "player_id": row.player_id,
        "filler_slot": None,
        "is_filler": False,
        "display_name": _player_name(row.player),
    }


def game_to_dict(game: Game) -> Dict:
    return {
        "id": game.id,
        "submitted_by": game.submitted_by,
        "game_date": isoformat_or_none(game.game_date),
        "notes": game.notes,
        "points_left_on_table": game.points_left_on_table,
        "is_east_only": game.is_east_only,
        "ran_out_of_time": game.ran_out_of_time,
        "verified": game.verified,
        "verified_by": game.verified_by,
        "verified_at": isoformat_or_none(game.verified_at),
        "lines": [
            {
                **_occupant_dict(line),
                "seat": line.seat.value,
                "score": line.score,
                "rank": line.rank,
            }
            for line in game.lines
        ],
    }


def pairing_to_dict(pairing: Pairing) -> Dict:
    return {
        "id": pairing.id,
        "table_number": pairing.table_number,
        "game_id": pairing.game_id,
        "seats": [{**_occupant_dict(seat), "seat": seat.seat.value} for seat in pairing.seats],
        "game": game_to_dict(pairing.game) if pairing.game else None,
    }


def round_to_dict(round_: Round) -> Dict:
    return {
        "id": round_.id,
        "round_number": round_.round_number,
        "start_date": isoformat_or_none(round_.start_date),
        "closed_at": isoformat_or_none(round_.closed_at),
        "is_closed": round_.is_closed,
        "pairings": [pairing_to_dict(p) for p in round_.pairings],
    }


def standings_to_list(tournament: Tournament) -> List[Dict]:
    return [
        {
            "player_id": row.player_id,
            "display_name": row.display_name,
            "uma": row.uma,
            "penalty": row.penalty,
            "total": row.total,
            "dropped": row.dropped,
        }
        for row in uma_service.standings(tournament)
    ]


def tournament_to_dict(tournament: Tournament, include_rounds: bool = True) -> Dict:
    """
    Serialize the aggregate.

    The public view passes include_rounds=False: no rounds, pairings or
    game results, only the roster, waitlist and standings.
    """
    data = {
        "id": tournament.id,
        "name": tournament.name,
        "description": tournament.description,
        "date": isoformat_or_none(tournament.date),
        "location": tournament.location,
        "status": tournament.status.value,
        "starting_point_value": tournament.starting_point_value,
        "max_players": tournament.max_players,
        "round_count": tournament.round_count,
        "round_duration_minutes": tournament.round_duration_minutes,
        "is_east_only": tournament.is_east_only,
        "created_by": tournament.created_by,
        "version": tournament.version,
        "created_at": isoformat_or_none(tournament.created_at),
        "updated_at": isoformat_or_none(tournament.updated_at),
        "players": [
            {
                "player_id": entry.player_id,
                "display_name": _player_name(entry.player),
                "uma": entry.uma,
                "dropped": entry.dropped,
            }
            for entry in tournament.players
        ],
        "waitlist": [
            {
                "player_id": entry.player_id,
                "display_name": _player_name(entry.player),
                "added_at": isoformat_or_none(entry.added_at),
            }
            for entry in tournament.waitlist
        ],
        "standings": standings_to_list(tournament),
        "current_round": tournament.rounds[-1].round_number if tournament.rounds else None,
    }
    if include_rounds:
        data["rounds"] = [round_to_dict(r) for r in tournament.rounds]
        data["uma_penalties"] = [
            {
                "id": penalty.id,
                "player_id": penalty.player_id,
                "amount": penalty.amount,
                "reason": penalty.reason,
                "created_by": penalty.created_by,
                "created_at": isoformat_or_none(penalty.created_at),
            }
            for penalty in tournament.uma_penalties
        ]
    return data


def tournament_summary(tournament: Tournament) -> Dict:
    """Row for the tournament list; counts instead of the full roster."""
    return {
        "id": tournament.id,
        "name": tournament.name,
        "date": isoformat_or_none(tournament.date),
        "location": tournament.location,
        "status": tournament.status.value,
        "max_players": tournament.max_players,
        "player_count": sum(1 for entry in tournament.players if not entry.dropped),
        "waitlist_count": len(tournament.waitlist),
    }
