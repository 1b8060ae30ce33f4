"""
Authentication dependencies for FastAPI routes.
"""

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
from mahjong_club.database.db import get_db_session
from mahjong_club.database.models import Player
from mahjong_club.services import player_service

security = HTTPBearer()


async def get_current_player(
    session: AsyncSession = Depends(get_db_session),
    credentials: HTTPAuthorizationCredentials = Depends(security)
) -> Player:
    """
    Dependency to get the current authenticated player from the bearer token.

    Tokens are issued by account management; here they are only looked up.

    Raises:
        HTTPException: If the token does not belong to any player
    """
    player = await player_service.get_player_by_token(session, credentials.credentials)
    if player is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return player


async def require_player(player: Player = Depends(get_current_player)) -> Player:
    """Require any authenticated player."""
    return player


async def require_admin(player: Player = Depends(get_current_player)) -> Player:
    """Require a club admin."""
    if not player.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return player
