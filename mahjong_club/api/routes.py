"""
API route handlers for the mahjong club tournament engine.
"""

from fastapi import APIRouter, HTTPException, Request, Depends, Query
from slowapi import Limiter  # type: ignore
from slowapi.util import get_remote_address  # type: ignore
from sqlalchemy.ext.asyncio import AsyncSession
from mahjong_club.database.db import get_db_session
from mahjong_club.database.models import Player, TournamentStatus
from mahjong_club.services import game_service, player_service, registry_service, tournament_service
from mahjong_club.api.auth_dependencies import require_player, require_admin
from mahjong_club.models.schemas import (
    TournamentCreate, TournamentUpdate, TournamentResponse, TournamentListResponse,
    SignupResponse, AddPlayerRequest, PromoteRequest, UmaPenaltyCreate,
    SubmitResultRequest, GameResponse, PendingGameListResponse, MyPairingResponse,
    PlayerProfileResponse,
)
from mahjong_club.utils.constants import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, SIGNUP_RATE_LIMIT
import logging
import os
from typing import Optional, Dict, Any

logger = logging.getLogger(__name__)

router = APIRouter()

# Rate limiter instance shared with FastAPI app
limiter = Limiter(key_func=get_remote_address, enabled=os.getenv("ENV") != "test")


def domain_error(e: ValueError) -> HTTPException:
    """Map a domain error to its HTTP status; plain ValueErrors are 400s."""
    return HTTPException(status_code=getattr(e, "status_code", 400), detail=str(e))


# Tournament reads

@router.get("/api/tournaments", response_model=TournamentListResponse)
async def list_tournaments(
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    status: Optional[TournamentStatus] = None,
    player: Player = Depends(require_player),
    session: AsyncSession = Depends(get_db_session)
):
    """List tournaments, latest first."""
    try:
        return await tournament_service.list_tournaments(session, page=page, limit=limit, status=status)
    except Exception as e:
        logger.error(f"Error listing tournaments: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error listing tournaments")


@router.get("/api/tournaments/{tournament_id}", response_model=TournamentResponse)
async def get_tournament(
    tournament_id: int,
    player: Player = Depends(require_player),
    session: AsyncSession = Depends(get_db_session)
):
    """Full tournament with rounds, pairings and results."""
    try:
        return await tournament_service.get_tournament(session, tournament_id)
    except ValueError as e:
        raise domain_error(e)
    except Exception as e:
        logger.error(f"Error getting tournament {tournament_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error getting tournament")


@router.get("/api/public/tournaments/{tournament_id}", response_model=TournamentResponse, response_model_exclude_none=True)
async def get_tournament_public(
    tournament_id: int,
    session: AsyncSession = Depends(get_db_session)
):
    """
    Read-only tournament view, safe without authentication.

    Roster, waitlist and standings only; no rounds or results.
    """
    try:
        return await tournament_service.get_tournament_public(session, tournament_id)
    except ValueError as e:
        raise domain_error(e)
    except Exception as e:
        logger.error(f"Error getting public tournament {tournament_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error getting tournament")


@router.get("/api/tournaments/{tournament_id}/my-pairing", response_model=MyPairingResponse)
async def get_my_pairing(
    tournament_id: int,
    player: Player = Depends(require_player),
    session: AsyncSession = Depends(get_db_session)
):
    """The caller's table in the latest round."""
    try:
        return await tournament_service.get_my_pairing(session, tournament_id, player.id)
    except ValueError as e:
        raise domain_error(e)
    except Exception as e:
        logger.error(f"Error getting pairing for tournament {tournament_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error getting pairing")


# Registration

@router.post("/api/tournaments/{tournament_id}/signup", response_model=SignupResponse)
@limiter.limit(SIGNUP_RATE_LIMIT)
async def signup(
    request: Request,
    tournament_id: int,
    player: Player = Depends(require_player),
    session: AsyncSession = Depends(get_db_session)
):
    """
    Sign up for a tournament.

    Goes onto the roster while there is room, otherwise onto the waitlist;
    the response says which.
    """
    try:
        return await registry_service.signup(session, tournament_id, player.id)
    except ValueError as e:
        raise domain_error(e)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error signing up for tournament {tournament_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error signing up for tournament")


@router.put("/api/tournaments/{tournament_id}/drop", response_model=TournamentResponse)
async def drop(
    tournament_id: int,
    player: Player = Depends(require_player),
    session: AsyncSession = Depends(get_db_session)
):
    """Drop out of a tournament, or leave its waitlist."""
    try:
        return await registry_service.drop(session, tournament_id, player.id)
    except ValueError as e:
        raise domain_error(e)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error dropping from tournament {tournament_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error dropping from tournament")


@router.delete("/api/tournaments/{tournament_id}/waitlist", response_model=TournamentResponse)
async def leave_waitlist(
    tournament_id: int,
    player: Player = Depends(require_player),
    session: AsyncSession = Depends(get_db_session)
):
    try:
        return await registry_service.drop_from_waitlist(session, tournament_id, player.id)
    except ValueError as e:
        raise domain_error(e)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error leaving waitlist of tournament {tournament_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error leaving waitlist")


# Results

@router.post("/api/tournaments/{tournament_id}/rounds/{round_number}/tables/{table_number}/result", response_model=GameResponse, status_code=201)
async def submit_result(
    tournament_id: int,
    round_number: int,
    table_number: int,
    payload: SubmitResultRequest,
    player: Player = Depends(require_player),
    session: AsyncSession = Depends(get_db_session)
):
    """
    Submit the final scores of a table.

    Request body:
        {
            "lines": [{"player_id": 1, "score": 32000}, ..., {"filler_slot": 1, "score": 15000}],
            "points_left_on_table": 0
        }

    Ranks are derived from the scores. Another player from the table must
    verify the result before the round can end.
    """
    try:
        return await tournament_service.submit_result(
            session,
            tournament_id=tournament_id,
            round_number=round_number,
            table_number=table_number,
            lines=[line.model_dump() for line in payload.lines],
            submitted_by=player,
            points_left_on_table=payload.points_left_on_table,
            notes=payload.notes,
            ran_out_of_time=payload.ran_out_of_time,
        )
    except ValueError as e:
        raise domain_error(e)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error submitting result for tournament {tournament_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error submitting result")


@router.get("/api/games/pending-verification", response_model=PendingGameListResponse)
async def list_pending_verification(
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    player: Player = Depends(require_player),
    session: AsyncSession = Depends(get_db_session)
):
    """Results from the caller's tables that are waiting for their verification."""
    try:
        return await game_service.list_pending_verification(session, player.id, page=page, limit=limit)
    except Exception as e:
        logger.error(f"Error listing games pending verification for player {player.id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error listing games pending verification")


@router.get("/api/games/{game_id}", response_model=GameResponse)
async def get_game(
    game_id: int,
    player: Player = Depends(require_player),
    session: AsyncSession = Depends(get_db_session)
):
    try:
        return await game_service.get_game(session, game_id)
    except ValueError as e:
        raise domain_error(e)
    except Exception as e:
        logger.error(f"Error getting game {game_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error getting game")


@router.put("/api/games/{game_id}/verify", response_model=GameResponse)
async def verify_game(
    game_id: int,
    player: Player = Depends(require_player),
    session: AsyncSession = Depends(get_db_session)
):
    """Verify a table result. Must be another player from that table, or an admin."""
    try:
        return await game_service.verify_game(session, game_id, player)
    except ValueError as e:
        raise domain_error(e)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error verifying game {game_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error verifying game")


@router.delete("/api/games/{game_id}")
async def delete_game(
    game_id: int,
    player: Player = Depends(require_player),
    session: AsyncSession = Depends(get_db_session)
) -> Dict[str, Any]:
    """Withdraw an unverified result. Only its submitter or an admin may do this."""
    try:
        await game_service.delete_game(session, game_id, player)
        return {"success": True}
    except ValueError as e:
        raise domain_error(e)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error deleting game {game_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error deleting game")


@router.get("/api/players/{player_id}", response_model=PlayerProfileResponse)
async def get_player_profile(
    player_id: int,
    player: Player = Depends(require_player),
    session: AsyncSession = Depends(get_db_session)
):
    """Player identity with their tournament history."""
    try:
        profile = await player_service.get_player_profile(session, player_id)
        if not profile:
            raise HTTPException(status_code=404, detail="Player not found")
        return profile
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error getting player {player_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error getting player")


# Admin: tournament management

@router.post("/api/tournaments/admin", response_model=TournamentResponse, status_code=201)
async def create_tournament(
    payload: TournamentCreate,
    admin: Player = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session)
):
    try:
        return await tournament_service.create_tournament(
            session,
            created_by=admin.id,
            **payload.model_dump(),
        )
    except ValueError as e:
        raise domain_error(e)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error creating tournament: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error creating tournament")


@router.put("/api/tournaments/admin/{tournament_id}", response_model=TournamentResponse)
async def update_tournament(
    tournament_id: int,
    payload: TournamentUpdate,
    admin: Player = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session)
):
    """Update a tournament. Only the fields present in the body are changed."""
    try:
        return await tournament_service.update_tournament(
            session, tournament_id, payload.model_dump(exclude_unset=True)
        )
    except ValueError as e:
        raise domain_error(e)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error updating tournament {tournament_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error updating tournament")


@router.delete("/api/tournaments/admin/{tournament_id}")
async def delete_tournament(
    tournament_id: int,
    admin: Player = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session)
) -> Dict[str, Any]:
    try:
        await tournament_service.delete_tournament(session, tournament_id)
        return {"success": True}
    except ValueError as e:
        raise domain_error(e)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error deleting tournament {tournament_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error deleting tournament")


@router.put("/api/tournaments/admin/{tournament_id}/start", response_model=TournamentResponse)
async def start_tournament(
    tournament_id: int,
    admin: Player = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session)
):
    """Start the tournament and pair round 1."""
    try:
        return await tournament_service.start_tournament(session, tournament_id)
    except ValueError as e:
        raise domain_error(e)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error starting tournament {tournament_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error starting tournament")


@router.put("/api/tournaments/admin/{tournament_id}/rounds/{round_number}/end", response_model=TournamentResponse)
async def end_round(
    tournament_id: int,
    round_number: int,
    admin: Player = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session)
):
    """
    End a round: apply UMA, then pair the next round or complete the tournament.

    Fails with 400 while any table lacks a verified result.
    """
    try:
        return await tournament_service.end_round(session, tournament_id, round_number)
    except ValueError as e:
        raise domain_error(e)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error ending round {round_number} of tournament {tournament_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error ending round")


@router.put("/api/tournaments/admin/{tournament_id}/cancel", response_model=TournamentResponse)
async def cancel_tournament(
    tournament_id: int,
    admin: Player = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session)
):
    try:
        return await tournament_service.cancel_tournament(session, tournament_id)
    except ValueError as e:
        raise domain_error(e)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error cancelling tournament {tournament_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error cancelling tournament")


# Admin: roster

@router.post("/api/tournaments/admin/{tournament_id}/players", response_model=TournamentResponse, status_code=201)
async def add_player(
    tournament_id: int,
    payload: AddPlayerRequest,
    admin: Player = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session)
):
    """Add a player straight to the roster, regardless of capacity."""
    try:
        return await registry_service.add_player(session, tournament_id, payload.player_id)
    except ValueError as e:
        raise domain_error(e)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error adding player to tournament {tournament_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error adding player")


@router.put("/api/tournaments/admin/{tournament_id}/players/{player_id}/kick", response_model=TournamentResponse)
async def kick_player(
    tournament_id: int,
    player_id: int,
    admin: Player = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session)
):
    try:
        return await registry_service.kick_player(session, tournament_id, player_id)
    except ValueError as e:
        raise domain_error(e)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error removing player from tournament {tournament_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error removing player")


@router.post("/api/tournaments/admin/{tournament_id}/waitlist/promote", response_model=TournamentResponse)
async def promote_from_waitlist(
    tournament_id: int,
    payload: PromoteRequest,
    admin: Player = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session)
):
    try:
        return await registry_service.promote_from_waitlist(session, tournament_id, payload.player_id)
    except ValueError as e:
        raise domain_error(e)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error promoting from waitlist of tournament {tournament_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error promoting from waitlist")


@router.post("/api/tournaments/admin/{tournament_id}/penalties", response_model=TournamentResponse, status_code=201)
async def add_uma_penalty(
    tournament_id: int,
    payload: UmaPenaltyCreate,
    admin: Player = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session)
):
    """Record a UMA penalty. It counts in standings only."""
    try:
        return await tournament_service.add_uma_penalty(
            session,
            tournament_id,
            player_id=payload.player_id,
            amount=payload.amount,
            reason=payload.reason,
            created_by=admin.id,
        )
    except ValueError as e:
        raise domain_error(e)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error adding penalty in tournament {tournament_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error adding penalty")
