"""
Player identity lookups.

Accounts and login live outside the tournament engine; this module only
resolves the opaque bearer tokens account management issues and creates
player rows for admin tooling and tests.
"""

import logging
import secrets
from typing import Dict, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from mahjong_club.database.models import Player
from mahjong_club.services import tournament_service

logger = logging.getLogger(__name__)


async def get_player_by_token(session: AsyncSession, token: str) -> Optional[Player]:
    if not token:
        return None
    result = await session.execute(select(Player).where(Player.auth_token == token))
    return result.scalar_one_or_none()


async def create_player(
    session: AsyncSession,
    display_name: str,
    email: Optional[str] = None,
    is_guest: bool = False,
    is_admin: bool = False,
    auth_token: Optional[str] = None,
) -> Player:
    """
    Create a player identity.

    A random auth token is issued unless one is given; guests get none.
    """
    if not display_name or not display_name.strip():
        raise ValueError("Display name is required")
    if auth_token is None and not is_guest:
        auth_token = secrets.token_urlsafe(32)

    player = Player(
        display_name=display_name.strip(),
        email=email,
        is_guest=is_guest,
        is_admin=is_admin,
        auth_token=auth_token,
    )
    session.add(player)
    await session.commit()
    logger.info(f"Created player {player.id} ({'guest' if is_guest else 'member'})")
    return player


def player_to_dict(player: Player) -> Dict:
    return {
        "id": player.id,
        "display_name": player.display_name,
        "is_guest": player.is_guest,
        "is_admin": player.is_admin,
    }


async def get_player_profile(session: AsyncSession, player_id: int) -> Optional[Dict]:
    """Player identity with the tournaments they have played."""
    player = await session.get(Player, player_id)
    if not player:
        return None
    return {
        **player_to_dict(player),
        "tournaments": await tournament_service.player_tournaments(session, player_id),
    }
