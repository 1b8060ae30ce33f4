"""
Match results for tournament tables.

A game holds the four final scores of one table. It is validated against
the pairing it was played for, ranked, and later verified by another player
from the same table.
"""

import logging
import math
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from mahjong_club.database.models import Game, GamePlayer, Pairing, Player, Round, TournamentStatus
from mahjong_club.models.occupants import Filler, Occupant, RealPlayer, occupant_columns, occupant_from_columns
from mahjong_club.services import tournament_store, uma_service
from mahjong_club.services.errors import (
    GameAlreadyVerifiedError,
    GameNotFoundError,
    IllegalStateTransitionError,
    InvalidResultError,
    InvalidScoreTotalError,
    PermissionDeniedError,
    RoundAlreadyClosedError,
)
from mahjong_club.utils.constants import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, TABLE_SIZE, VALID_TABLE_TOTALS
from mahjong_club.utils.datetime_utils import utcnow

logger = logging.getLogger(__name__)


def validate_score_total(scores: List[int], points_left_on_table: int = 0) -> int:
    """
    Check that scores plus points left on the table add up to an allowed total.

    Returns:
        The table total

    Raises:
        InvalidScoreTotalError: If the total is not one of VALID_TABLE_TOTALS
    """
    if points_left_on_table < 0:
        raise InvalidScoreTotalError("Points left on the table cannot be negative")
    total = sum(scores) + points_left_on_table
    if total not in VALID_TABLE_TOTALS:
        allowed = " or ".join(str(t) for t in VALID_TABLE_TOTALS)
        raise InvalidScoreTotalError(
            f"Scores plus points left on the table must total {allowed}, got {total}"
        )
    return total


def _line_occupant(line: Dict) -> Occupant:
    try:
        return occupant_from_columns(line.get("player_id"), line.get("filler_slot"))
    except ValueError:
        raise InvalidResultError("Each result line needs exactly one of player_id or filler_slot")


def build_game(
    pairing: Pairing,
    lines: List[Dict],
    points_left_on_table: int = 0,
    submitted_by: Optional[int] = None,
    notes: Optional[str] = None,
    ran_out_of_time: bool = False,
    is_east_only: bool = False,
    game_date: Optional[datetime] = None,
) -> Game:
    """
    Build an unsaved game for a pairing.

    Args:
        pairing: Table the game was played at
        lines: One dict per seat occupant with player_id or filler_slot, and score
        points_left_on_table: Riichi sticks left unclaimed at the end

    Raises:
        InvalidResultError: If the lines do not name exactly the table's occupants
        InvalidScoreTotalError: If the total is not allowed
    """
    if len(lines) != TABLE_SIZE:
        raise InvalidResultError(f"A result needs exactly {TABLE_SIZE} lines, got {len(lines)}")

    scores_by_occupant: Dict[Occupant, int] = {}
    for line in lines:
        occupant = _line_occupant(line)
        if occupant in scores_by_occupant:
            raise InvalidResultError(f"{_describe(occupant)} appears twice in the result")
        scores_by_occupant[occupant] = int(line["score"])

    seated = {seat.occupant: seat.seat for seat in pairing.seats}
    if set(scores_by_occupant) != set(seated):
        raise InvalidResultError(
            f"Result lines must name exactly the players at table {pairing.table_number}"
        )

    validate_score_total(list(scores_by_occupant.values()), points_left_on_table)

    ordered = [(seat.seat, seat.occupant) for seat in pairing.seats]
    ranks = uma_service.assign_ranks([(seat, scores_by_occupant[occ]) for seat, occ in ordered])

    game = Game(
        submitted_by=submitted_by,
        game_date=game_date or utcnow(),
        notes=notes,
        points_left_on_table=points_left_on_table,
        is_east_only=is_east_only,
        ran_out_of_time=ran_out_of_time,
        verified=False,
    )
    game.lines = [
        GamePlayer(
            seat=seat,
            score=scores_by_occupant[occupant],
            rank=rank,
            **occupant_columns(occupant),
        )
        for (seat, occupant), rank in zip(ordered, ranks)
    ]
    return game


def _describe(occupant: Occupant) -> str:
    if isinstance(occupant, Filler):
        return f"Filler {occupant.slot}"
    return f"Player {occupant.player_id}"


def can_verify(game: Game, verifier: Player) -> bool:
    """A different real player from the same table, or an admin."""
    if verifier.is_admin:
        return True
    if game.submitted_by == verifier.id:
        return False
    return any(line.occupant == RealPlayer(verifier.id) for line in game.lines)


async def _load_game(session: AsyncSession, game_id: int) -> Game:
    result = await session.execute(
        select(Game)
        .where(Game.id == game_id)
        .options(
            selectinload(Game.lines).selectinload(GamePlayer.player),
            selectinload(Game.pairing).selectinload(Pairing.round),
        )
        .execution_options(populate_existing=True)
    )
    game = result.scalar_one_or_none()
    if not game:
        raise GameNotFoundError(f"Game {game_id} not found")
    return game


async def get_game(session: AsyncSession, game_id: int) -> Dict:
    game = await _load_game(session, game_id)
    return tournament_store.game_to_dict(game)


async def verify_game(session: AsyncSession, game_id: int, verifier: Player) -> Dict:
    """
    Mark a game verified.

    The owning tournament is locked and its version bumped, so a round
    cannot be closed from a snapshot taken before this verification.

    Raises:
        GameNotFoundError: If the game does not exist
        PermissionDeniedError: If the verifier did not play at the table
        GameAlreadyVerifiedError: If the game is already verified
    """
    game = await _load_game(session, game_id)
    round_: Optional[Round] = game.pairing.round if game.pairing else None

    tournament = None
    if round_ is not None:
        tournament = await tournament_store.load_tournament(
            session, round_.tournament_id, for_update=True
        )
        game = await _load_game(session, game_id)

    if game.verified:
        raise GameAlreadyVerifiedError(f"Game {game_id} is already verified")
    if not can_verify(game, verifier):
        raise PermissionDeniedError(
            "Only another player from the same table or an admin can verify a result"
        )

    game.verified = True
    game.verified_by = verifier.id
    game.verified_at = utcnow()

    if tournament is not None:
        await tournament_store.commit_tournament(session, tournament)
    else:
        await session.commit()

    logger.info(f"Game {game_id} verified by player {verifier.id}")
    return await get_game(session, game_id)


def can_delete(game: Game, requester: Player) -> bool:
    return requester.is_admin or game.submitted_by == requester.id


async def delete_game(session: AsyncSession, game_id: int, requester: Player) -> bool:
    """
    Delete an unverified result so its table can be submitted again.

    The table's round must still be open. The owning tournament is locked
    and its version bumped, like verify_game.

    Raises:
        GameNotFoundError: If the game does not exist
        PermissionDeniedError: If the requester is neither the submitter nor an admin
        GameAlreadyVerifiedError: If the game is already verified
        RoundAlreadyClosedError: If the game's round has been scored
    """
    game = await _load_game(session, game_id)
    round_: Optional[Round] = game.pairing.round if game.pairing else None

    tournament = None
    if round_ is not None:
        tournament = await tournament_store.load_tournament(
            session, round_.tournament_id, for_update=True
        )
        game = await _load_game(session, game_id)

    if not can_delete(game, requester):
        raise PermissionDeniedError("Only the submitter or an admin can delete a result")
    if game.verified:
        raise GameAlreadyVerifiedError(f"Game {game_id} is verified and cannot be deleted")

    if tournament is not None:
        if tournament.status != TournamentStatus.IN_PROGRESS:
            raise IllegalStateTransitionError(
                f"Cannot delete results of a tournament that is {tournament.status.value}"
            )
        pairing = game.pairing
        if pairing.round.is_closed:
            raise RoundAlreadyClosedError(
                f"Round {pairing.round.round_number} is closed; its results cannot be deleted"
            )
        pairing.game = None

    await session.delete(game)
    if tournament is not None:
        await tournament_store.commit_tournament(session, tournament)
    else:
        await session.commit()

    logger.info(f"Game {game_id} deleted by player {requester.id}")
    return True


async def list_pending_verification(
    session: AsyncSession,
    player_id: int,
    page: int = 1,
    limit: int = DEFAULT_PAGE_SIZE,
) -> Dict:
    """Unverified games the player sat in but did not submit, latest first."""
    page = max(1, page)
    limit = min(max(1, limit), MAX_PAGE_SIZE)

    filters = (
        Game.verified.is_(False),
        Game.lines.any(GamePlayer.player_id == player_id),
        or_(Game.submitted_by.is_(None), Game.submitted_by != player_id),
    )
    total = (await session.execute(select(func.count(Game.id)).where(*filters))).scalar_one()
    result = await session.execute(
        select(Game)
        .where(*filters)
        .options(
            selectinload(Game.lines).selectinload(GamePlayer.player),
            selectinload(Game.pairing).selectinload(Pairing.round),
        )
        .order_by(Game.game_date.desc(), Game.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )

    games = []
    for game in result.scalars().all():
        data = tournament_store.game_to_dict(game)
        if game.pairing is not None:
            data["tournament_id"] = game.pairing.round.tournament_id
            data["round_number"] = game.pairing.round.round_number
            data["table_number"] = game.pairing.table_number
        games.append(data)

    return {
        "games": games,
        "page": page,
        "limit": limit,
        "total": total,
        "pages": math.ceil(total / limit) if total else 0,
    }
