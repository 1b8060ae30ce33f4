"""
Tournament lifecycle.

NotStarted -> InProgress -> Completed, with Cancelled reachable from either
non-terminal state. Rounds are opened by start_tournament and end_round,
and a round can only be ended once every table has a verified result.
"""

import logging
import math
import random
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from sqlalchemy.orm.exc import StaleDataError

from mahjong_club.database.models import (
    Pairing,
    Player,
    Round,
    Tournament,
    TournamentPlayer,
    TournamentStatus,
    UmaPenalty,
)
from mahjong_club.models.occupants import RealPlayer
from mahjong_club.services import (
    game_service,
    pairing_service,
    registry_service,
    result_gate,
    tournament_store,
    uma_service,
)
from mahjong_club.services.errors import (
    ConcurrentModificationError,
    IllegalStateTransitionError,
    InvalidTournamentError,
    NotRegisteredError,
    PairingNotFoundError,
    PermissionDeniedError,
    ResultAlreadySubmittedError,
    RoundAlreadyClosedError,
    RoundIncompleteError,
    RoundNotFoundError,
)
from mahjong_club.utils.constants import (
    DEFAULT_PAGE_SIZE,
    DEFAULT_STARTING_POINT_VALUE,
    MAX_PAGE_SIZE,
    TABLE_SIZE,
    UMA_QUANTUM,
    WHEEL_PLAYERS_PER_ROUND,
)
from mahjong_club.utils.datetime_utils import utcnow

logger = logging.getLogger(__name__)

DETAIL_FIELDS = ("name", "description", "date", "location", "round_duration_minutes")
SETTING_FIELDS = ("starting_point_value", "max_players", "round_count", "is_east_only")


def derived_round_count(active_players: int) -> int:
    """Club default: one extra round for every 12 players beyond the first 4."""
    return max(1, math.ceil((active_players - TABLE_SIZE) / WHEEL_PLAYERS_PER_ROUND + 1))


def total_rounds(tournament: Tournament) -> int:
    if tournament.round_count:
        return tournament.round_count
    return derived_round_count(registry_service.active_count(tournament))


def find_round(tournament: Tournament, round_number: int) -> Round:
    for round_ in tournament.rounds:
        if round_.round_number == round_number:
            return round_
    raise RoundNotFoundError(f"Round {round_number} not found")


def find_pairing(round_: Round, table_number: int) -> Pairing:
    for pairing in round_.pairings:
        if pairing.table_number == table_number:
            return pairing
    raise PairingNotFoundError(
        f"Table {table_number} not found in round {round_.round_number}"
    )


def _validate_settings(values: Dict[str, Any]) -> None:
    if "name" in values and not (values["name"] or "").strip():
        raise InvalidTournamentError("Tournament name is required")
    if "date" in values and values["date"] is None:
        raise InvalidTournamentError("Tournament date is required")
    for key in ("starting_point_value", "is_east_only"):
        if key in values and values[key] is None:
            raise InvalidTournamentError(f"{key} cannot be cleared")
    spv = values.get("starting_point_value")
    if spv is not None and spv <= 0:
        raise InvalidTournamentError("Starting point value must be positive")
    max_players = values.get("max_players")
    if max_players is not None and max_players < 1:
        raise InvalidTournamentError("Max players must be at least 1")
    round_count = values.get("round_count")
    if round_count is not None and round_count < 1:
        raise InvalidTournamentError("Round count must be at least 1")
    duration = values.get("round_duration_minutes")
    if duration is not None and duration < 1:
        raise InvalidTournamentError("Round duration must be at least 1 minute")


def _require_status(tournament: Tournament, *allowed: TournamentStatus, action: str) -> None:
    if tournament.status not in allowed:
        raise IllegalStateTransitionError(
            f"Cannot {action} a tournament that is {tournament.status.value}"
        )


async def _reloaded(session: AsyncSession, tournament_id: int, include_rounds: bool = True) -> Dict:
    tournament = await tournament_store.load_tournament(session, tournament_id)
    return tournament_store.tournament_to_dict(tournament, include_rounds=include_rounds)


# ============================================================================
# Create / update / delete
# ============================================================================


async def create_tournament(
    session: AsyncSession,
    name: str,
    date: datetime,
    location: Optional[str] = None,
    description: Optional[str] = None,
    starting_point_value: int = DEFAULT_STARTING_POINT_VALUE,
    max_players: Optional[int] = None,
    round_count: Optional[int] = None,
    round_duration_minutes: Optional[int] = None,
    is_east_only: bool = False,
    created_by: Optional[int] = None,
) -> Dict:
    """Create a tournament in the NotStarted state."""
    values = {
        "name": name,
        "date": date,
        "location": location,
        "description": description,
        "starting_point_value": starting_point_value,
        "max_players": max_players,
        "round_count": round_count,
        "round_duration_minutes": round_duration_minutes,
        "is_east_only": is_east_only,
    }
    _validate_settings(values)

    tournament = Tournament(
        status=TournamentStatus.NOT_STARTED,
        created_by=created_by,
        **values,
    )
    session.add(tournament)
    await session.commit()
    logger.info(f"Created tournament {tournament.id} '{name}'")
    return await _reloaded(session, tournament.id)


async def update_tournament(session: AsyncSession, tournament_id: int, updates: Dict[str, Any]) -> Dict:
    """
    Update tournament details or settings.

    Details (name, description, date, location, round duration) can change
    until the tournament is over. Scoring and capacity settings can only
    change before the start, and max_players cannot go below the number of
    active players already on the roster.
    """
    unknown = set(updates) - set(DETAIL_FIELDS) - set(SETTING_FIELDS)
    if unknown:
        raise InvalidTournamentError(f"Unknown tournament fields: {', '.join(sorted(unknown))}")

    tournament = await tournament_store.load_tournament(session, tournament_id, for_update=True)
    _require_status(
        tournament, TournamentStatus.NOT_STARTED, TournamentStatus.IN_PROGRESS, action="edit"
    )
    _validate_settings(updates)

    settings = {k: v for k, v in updates.items() if k in SETTING_FIELDS}
    changed_settings = {k: v for k, v in settings.items() if getattr(tournament, k) != v}
    if changed_settings and tournament.status != TournamentStatus.NOT_STARTED:
        raise IllegalStateTransitionError(
            f"Cannot change {', '.join(sorted(changed_settings))} after the tournament has started"
        )
    max_players = changed_settings.get("max_players")
    if max_players is not None and max_players < registry_service.active_count(tournament):
        raise InvalidTournamentError(
            f"Max players cannot be lower than the {registry_service.active_count(tournament)} "
            f"players already registered"
        )

    for key, value in updates.items():
        setattr(tournament, key, value)

    await tournament_store.commit_tournament(session, tournament)
    logger.info(f"Updated tournament {tournament_id}: {', '.join(sorted(updates))}")
    return await _reloaded(session, tournament_id)


async def delete_tournament(session: AsyncSession, tournament_id: int) -> bool:
    """Delete a tournament and the games played in it."""
    tournament = await tournament_store.load_tournament(session, tournament_id, for_update=True)
    for round_ in tournament.rounds:
        for pairing in round_.pairings:
            if pairing.game is not None:
                await session.delete(pairing.game)
    await session.delete(tournament)
    try:
        await session.commit()
    except StaleDataError:
        await session.rollback()
        raise ConcurrentModificationError(
            f"Tournament {tournament_id} was modified by another request, please retry"
        )
    logger.info(f"Deleted tournament {tournament_id}")
    return True


# ============================================================================
# Lifecycle transitions
# ============================================================================


async def start_tournament(
    session: AsyncSession,
    tournament_id: int,
    strategy: Optional[pairing_service.PairingStrategy] = None,
    rng: Optional[random.Random] = None,
) -> Dict:
    """
    Move a tournament to InProgress and pair round 1.

    When no round count was configured, the club formula is applied to the
    active roster now and stored, so later drops do not change it.

    Raises:
        IllegalStateTransitionError: If the tournament is not NotStarted
        InsufficientPlayersError: If nobody is on the active roster
    """
    tournament = await tournament_store.load_tournament(session, tournament_id, for_update=True)
    _require_status(tournament, TournamentStatus.NOT_STARTED, action="start")

    pairings = pairing_service.generate_round(
        tournament, 1, strategy=strategy or pairing_service.get_strategy(), rng=rng
    )

    if not tournament.round_count:
        tournament.round_count = total_rounds(tournament)
    tournament.status = TournamentStatus.IN_PROGRESS
    tournament.rounds.append(Round(round_number=1, start_date=utcnow(), pairings=pairings))

    await tournament_store.commit_tournament(session, tournament)
    logger.info(
        f"Started tournament {tournament_id}: {len(pairings)} tables, "
        f"{tournament.round_count} rounds"
    )
    return await _reloaded(session, tournament_id)


async def end_round(
    session: AsyncSession,
    tournament_id: int,
    round_number: int,
    strategy: Optional[pairing_service.PairingStrategy] = None,
    rng: Optional[random.Random] = None,
) -> Dict:
    """
    Score the latest round and open the next one, or complete the tournament.

    Deltas and the next round's pairings are computed before anything is
    changed, so a failure leaves the tournament as it was.

    Raises:
        IllegalStateTransitionError: If the tournament is not InProgress or
            the round is not the latest one
        RoundAlreadyClosedError: If the round was already ended
        RoundIncompleteError: If some table has no verified result
        InsufficientPlayersError: If a next round is due but nobody is active
    """
    tournament = await tournament_store.load_tournament(session, tournament_id, for_update=True)
    _require_status(tournament, TournamentStatus.IN_PROGRESS, action="end a round of")

    round_ = find_round(tournament, round_number)
    if round_.is_closed:
        raise RoundAlreadyClosedError(f"Round {round_number} has already ended")
    if round_ is not tournament.rounds[-1]:
        raise IllegalStateTransitionError(f"Round {round_number} is not the current round")

    lookup = await result_gate.load_verification_lookup(session, round_)
    if not await result_gate.all_settled(round_, lookup):
        tables = await result_gate.unsettled_tables(round_, lookup)
        raise RoundIncompleteError(
            f"Cannot end round {round_number}: table(s) {', '.join(str(t) for t in tables)} "
            f"have no verified result"
        )

    deltas = uma_service.round_deltas(tournament, round_)

    next_pairings = None
    if round_number < total_rounds(tournament):
        projected = uma_service.effective_uma(tournament)
        for player_id, delta in deltas.items():
            projected[player_id] = projected.get(player_id, Decimal(0)) + uma_service.to_uma(delta)
        next_pairings = pairing_service.generate_round(
            tournament,
            round_number + 1,
            strategy=strategy or pairing_service.get_strategy(),
            rng=rng,
            standings=projected,
        )

    uma_service.apply_round(tournament, round_, deltas=deltas)
    if next_pairings is not None:
        tournament.rounds.append(
            Round(round_number=round_number + 1, start_date=utcnow(), pairings=next_pairings)
        )
    else:
        tournament.status = TournamentStatus.COMPLETED

    await tournament_store.commit_tournament(session, tournament)
    if next_pairings is not None:
        logger.info(f"Tournament {tournament_id}: round {round_number} ended, round {round_number + 1} paired")
    else:
        logger.info(f"Tournament {tournament_id}: round {round_number} ended, tournament completed")
    return await _reloaded(session, tournament_id)


async def cancel_tournament(session: AsyncSession, tournament_id: int) -> Dict:
    """Cancel a tournament. UMA already applied is kept."""
    tournament = await tournament_store.load_tournament(session, tournament_id, for_update=True)
    _require_status(
        tournament, TournamentStatus.NOT_STARTED, TournamentStatus.IN_PROGRESS, action="cancel"
    )
    tournament.status = TournamentStatus.CANCELLED
    await tournament_store.commit_tournament(session, tournament)
    logger.info(f"Cancelled tournament {tournament_id}")
    return await _reloaded(session, tournament_id)


# ============================================================================
# Results and penalties
# ============================================================================


async def submit_result(
    session: AsyncSession,
    tournament_id: int,
    round_number: int,
    table_number: int,
    lines: List[Dict],
    submitted_by: Player,
    points_left_on_table: int = 0,
    notes: Optional[str] = None,
    ran_out_of_time: bool = False,
) -> Dict:
    """
    Attach a game to a table of the open round.

    Returns:
        The created game

    Raises:
        PermissionDeniedError: If the submitter is not at the table and not an admin
        ResultAlreadySubmittedError: If the table already has a game
        InvalidResultError, InvalidScoreTotalError: From the game checks
    """
    tournament = await tournament_store.load_tournament(session, tournament_id, for_update=True)
    _require_status(tournament, TournamentStatus.IN_PROGRESS, action="submit results to")

    round_ = find_round(tournament, round_number)
    if round_.is_closed:
        raise RoundAlreadyClosedError(f"Round {round_number} has already ended")
    pairing = find_pairing(round_, table_number)

    if not submitted_by.is_admin and RealPlayer(submitted_by.id) not in pairing.occupants:
        raise PermissionDeniedError("Only players at this table or an admin can submit its result")
    if pairing.game_id is not None or pairing.game is not None:
        raise ResultAlreadySubmittedError(
            f"A result was already submitted for round {round_number} table {table_number}"
        )

    game = game_service.build_game(
        pairing,
        lines,
        points_left_on_table=points_left_on_table,
        submitted_by=submitted_by.id,
        notes=notes,
        ran_out_of_time=ran_out_of_time,
        is_east_only=tournament.is_east_only,
    )
    session.add(game)
    pairing.game = game

    await tournament_store.commit_tournament(session, tournament)
    logger.info(
        f"Result submitted for tournament {tournament_id} round {round_number} "
        f"table {table_number} by player {submitted_by.id}"
    )
    return await game_service.get_game(session, game.id)


async def add_uma_penalty(
    session: AsyncSession,
    tournament_id: int,
    player_id: int,
    amount: Decimal,
    reason: Optional[str] = None,
    created_by: Optional[int] = None,
) -> Dict:
    """Record a UMA adjustment. It shows in standings; roster UMA is untouched."""
    tournament = await tournament_store.load_tournament(session, tournament_id, for_update=True)
    _require_status(
        tournament,
        TournamentStatus.IN_PROGRESS,
        TournamentStatus.COMPLETED,
        action="add penalties to",
    )
    if registry_service.roster_entry(tournament, player_id) is None:
        raise NotRegisteredError(f"Player {player_id} is not on the roster")
    if not amount:
        raise InvalidTournamentError("Penalty amount must be non-zero")

    tournament.uma_penalties.append(
        UmaPenalty(
            player_id=player_id,
            amount=Decimal(str(amount)).quantize(UMA_QUANTUM),
            reason=reason,
            created_by=created_by,
        )
    )
    await tournament_store.commit_tournament(session, tournament)
    logger.info(f"UMA penalty of {amount} for player {player_id} in tournament {tournament_id}")
    return await _reloaded(session, tournament_id)


# ============================================================================
# Reads
# ============================================================================


async def get_tournament(session: AsyncSession, tournament_id: int) -> Dict:
    return await _reloaded(session, tournament_id)


async def get_tournament_public(session: AsyncSession, tournament_id: int) -> Dict:
    """Read-only view without rounds, pairings or results."""
    return await _reloaded(session, tournament_id, include_rounds=False)


async def list_tournaments(
    session: AsyncSession,
    page: int = 1,
    limit: int = DEFAULT_PAGE_SIZE,
    status: Optional[TournamentStatus] = None,
) -> Dict:
    """List tournaments, latest date first."""
    page = max(1, page)
    limit = min(max(1, limit), MAX_PAGE_SIZE)

    count_query = select(func.count(Tournament.id))
    query = (
        select(Tournament)
        .options(
            selectinload(Tournament.players),
            selectinload(Tournament.waitlist),
        )
        .order_by(Tournament.date.desc(), Tournament.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    if status is not None:
        count_query = count_query.where(Tournament.status == status)
        query = query.where(Tournament.status == status)

    total = (await session.execute(count_query)).scalar_one()
    result = await session.execute(query)
    tournaments = result.scalars().all()

    return {
        "tournaments": [tournament_store.tournament_summary(t) for t in tournaments],
        "page": page,
        "limit": limit,
        "total": total,
        "pages": math.ceil(total / limit) if total else 0,
    }


async def get_my_pairing(session: AsyncSession, tournament_id: int, player_id: int) -> Dict:
    """
    The caller's table in the latest round.

    Returns a dict whose "pairing" is None when the tournament has no rounds
    or the player was not paired in the latest one.
    """
    tournament = await tournament_store.load_tournament(session, tournament_id)
    if not tournament.rounds:
        return {"round_number": None, "is_closed": None, "pairing": None}

    latest = tournament.rounds[-1]
    me = RealPlayer(player_id)
    for pairing in latest.pairings:
        if me in pairing.occupants:
            return {
                "round_number": latest.round_number,
                "is_closed": latest.is_closed,
                "pairing": tournament_store.pairing_to_dict(pairing),
            }
    return {"round_number": latest.round_number, "is_closed": latest.is_closed, "pairing": None}


async def player_tournaments(session: AsyncSession, player_id: int) -> List[Dict]:
    """Tournaments a player is on the roster of, with their UMA."""
    result = await session.execute(
        select(TournamentPlayer)
        .where(TournamentPlayer.player_id == player_id)
        .options(selectinload(TournamentPlayer.tournament))
        .order_by(TournamentPlayer.id.desc())
    )
    return [
        {
            "tournament_id": entry.tournament_id,
            "name": entry.tournament.name,
            "status": entry.tournament.status.value,
            "uma": entry.uma,
            "dropped": entry.dropped,
        }
        for entry in result.scalars().all()
    ]


# ============================================================================
# Maintenance
# ============================================================================


async def recalculate_tournament_uma(
    session: AsyncSession, tournament_id: int, dry_run: bool = False
) -> Dict[int, Decimal]:
    """
    Rebuild roster UMA from the closed rounds' games.

    With dry_run the roster is left as it is and the corrections are only
    reported.

    Returns:
        player_id -> correction applied (empty when nothing drifted)
    """
    if dry_run:
        tournament = await tournament_store.load_tournament(session, tournament_id)
        return uma_service.uma_drift(tournament)

    tournament = await tournament_store.load_tournament(session, tournament_id, for_update=True)
    changes = uma_service.recalculate_uma(tournament)
    if not changes:
        # Release the row lock without expiring anything loaded in this session
        await session.commit()
        return changes

    await tournament_store.commit_tournament(session, tournament)
    logger.info(f"Recalculated UMA for tournament {tournament_id}: {len(changes)} players corrected")
    return changes
