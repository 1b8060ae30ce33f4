"""
Tournament registration: roster, waitlist and capacity.

The pure functions work on a loaded Tournament; the async functions wrap
them with locking, commit and logging.
"""

import logging
from decimal import Decimal
from abc import ABC, abstractmethod
from typing import Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from mahjong_club.database.models import (
    Player,
    Tournament,
    TournamentPlayer,
    TournamentStatus,
    WaitlistEntry,
)
from mahjong_club.services import tournament_store
from mahjong_club.services.errors import (
    AlreadyDroppedError,
    CapacityExceeded,
    DuplicateSignupError,
    GuestPlayerError,
    IllegalStateTransitionError,
    NotRegisteredError,
    TournamentFullError,
)
from mahjong_club.utils.constants import WAITLIST_PROMOTION
from mahjong_club.utils.datetime_utils import utcnow

logger = logging.getLogger(__name__)

ROSTER = "roster"
WAITLIST = "waitlist"


# ============================================================================
# Aggregate helpers
# ============================================================================


def roster_entry(tournament: Tournament, player_id: int) -> Optional[TournamentPlayer]:
    for entry in tournament.players:
        if entry.player_id == player_id:
            return entry
    return None


def waitlist_entry(tournament: Tournament, player_id: int) -> Optional[WaitlistEntry]:
    for entry in tournament.waitlist:
        if entry.player_id == player_id:
            return entry
    return None


def active_count(tournament: Tournament) -> int:
    return sum(1 for entry in tournament.players if not entry.dropped)


def check_capacity(tournament: Tournament) -> None:
    """Raises CapacityExceeded when no roster slot is free."""
    if tournament.max_players is not None and active_count(tournament) >= tournament.max_players:
        raise CapacityExceeded(
            f"Tournament {tournament.id} is full ({tournament.max_players} players)"
        )


def has_free_slot(tournament: Tournament) -> bool:
    try:
        check_capacity(tournament)
    except CapacityExceeded:
        return False
    return True


def _require_status(tournament: Tournament, *allowed: TournamentStatus, action: str) -> None:
    if tournament.status not in allowed:
        raise IllegalStateTransitionError(
            f"Cannot {action} a tournament that is {tournament.status.value}"
        )


def _add_to_roster(tournament: Tournament, player: Player) -> TournamentPlayer:
    entry = TournamentPlayer(player_id=player.id, player=player, uma=Decimal(0), dropped=False)
    tournament.players.append(entry)
    return entry


def place_player(tournament: Tournament, player: Player) -> str:
    """
    Put a player on the roster, or on the waitlist when the roster is full.

    A roster entry dropped before the start is re-activated instead of
    duplicated, but only into a free slot.

    Returns:
        ROSTER or WAITLIST

    Raises:
        IllegalStateTransitionError: If the tournament has started
        GuestPlayerError: If the player is a guest identity
        DuplicateSignupError: If the player is already registered or waitlisted
        TournamentFullError: If a dropped player rejoins a full tournament
    """
    _require_status(tournament, TournamentStatus.NOT_STARTED, action="sign up for")
    if player.is_guest:
        raise GuestPlayerError("Guest players cannot sign up for tournaments")
    if waitlist_entry(tournament, player.id):
        raise DuplicateSignupError("You are already on the waitlist for this tournament")

    existing = roster_entry(tournament, player.id)
    if existing and not existing.dropped:
        raise DuplicateSignupError("You are already signed up for this tournament")

    try:
        check_capacity(tournament)
    except CapacityExceeded:
        if existing:
            raise TournamentFullError(
                "Tournament is full; a dropped player can only rejoin into a free slot"
            )
        tournament.waitlist.append(
            WaitlistEntry(player_id=player.id, player=player, added_at=utcnow())
        )
        return WAITLIST

    if existing:
        existing.dropped = False
    else:
        _add_to_roster(tournament, player)
    return ROSTER


def remove_player(tournament: Tournament, player_id: int) -> str:
    """
    Drop a roster player, or take a player off the waitlist.

    Roster entries are kept with dropped=True so their results survive.

    Returns:
        ROSTER or WAITLIST, whichever the player was removed from
    """
    _require_status(
        tournament, TournamentStatus.NOT_STARTED, TournamentStatus.IN_PROGRESS, action="drop from"
    )
    entry = roster_entry(tournament, player_id)
    if entry:
        if entry.dropped:
            raise AlreadyDroppedError("Player has already dropped from this tournament")
        entry.dropped = True
        return ROSTER

    waiting = waitlist_entry(tournament, player_id)
    if waiting:
        tournament.waitlist.remove(waiting)
        return WAITLIST

    raise NotRegisteredError("Player is not registered for this tournament")


def remove_from_waitlist(tournament: Tournament, player_id: int) -> None:
    _require_status(
        tournament,
        TournamentStatus.NOT_STARTED,
        TournamentStatus.IN_PROGRESS,
        action="leave the waitlist of",
    )
    waiting = waitlist_entry(tournament, player_id)
    if not waiting:
        raise NotRegisteredError("Player is not on the waitlist for this tournament")
    tournament.waitlist.remove(waiting)


def promote(tournament: Tournament, player_id: Optional[int] = None) -> TournamentPlayer:
    """
    Move a waitlisted player onto the roster.

    Args:
        tournament: Tournament to promote in
        player_id: Waitlisted player to promote; the front of the waitlist if None

    Raises:
        NotRegisteredError: If the waitlist is empty or the player is not on it
        TournamentFullError: If no roster slot is free
    """
    _require_status(tournament, TournamentStatus.NOT_STARTED, action="promote players in")
    if player_id is None:
        if not tournament.waitlist:
            raise NotRegisteredError("The waitlist is empty")
        waiting = tournament.waitlist[0]
    else:
        waiting = waitlist_entry(tournament, player_id)
        if not waiting:
            raise NotRegisteredError(f"Player {player_id} is not on the waitlist")

    if not has_free_slot(tournament):
        raise TournamentFullError("No free slot to promote into")

    tournament.waitlist.remove(waiting)
    return _add_to_roster(tournament, waiting.player)


def admin_add(tournament: Tournament, player: Player) -> TournamentPlayer:
    """
    Admin placement straight onto the roster, ignoring capacity.

    A waitlisted player is moved off the waitlist; a dropped entry is
    re-activated.
    """
    _require_status(tournament, TournamentStatus.NOT_STARTED, action="add players to")
    if player.is_guest:
        raise GuestPlayerError("Cannot add guest players to tournaments")

    existing = roster_entry(tournament, player.id)
    if existing:
        if not existing.dropped:
            raise DuplicateSignupError("Player is already in the tournament")
        existing.dropped = False
        return existing

    waiting = waitlist_entry(tournament, player.id)
    if waiting:
        tournament.waitlist.remove(waiting)
    return _add_to_roster(tournament, player)


def admin_kick(tournament: Tournament, player_id: int) -> TournamentPlayer:
    _require_status(tournament, TournamentStatus.NOT_STARTED, action="kick players from")
    entry = roster_entry(tournament, player_id)
    if not entry:
        raise NotRegisteredError("Player not found in tournament")
    if entry.dropped:
        raise AlreadyDroppedError("Player has already been removed from the tournament")
    entry.dropped = True
    return entry


# ============================================================================
# Waitlist promotion policies
# ============================================================================


class WaitlistPromotionPolicy(ABC):
    """Decides what happens to the waitlist when a roster slot frees up."""

    @abstractmethod
    def on_slot_freed(self, tournament: Tournament) -> Optional[TournamentPlayer]:
        """Return the roster entry promoted, if any."""


class ManualPromotionPolicy(WaitlistPromotionPolicy):
    """Admins promote explicitly; nothing happens on drop."""

    def on_slot_freed(self, tournament):
        return None


class AutoPromotionPolicy(WaitlistPromotionPolicy):
    """Promote the front of the waitlist as soon as a pre-start slot frees up."""

    def on_slot_freed(self, tournament):
        if tournament.status != TournamentStatus.NOT_STARTED or not tournament.waitlist:
            return None
        if not has_free_slot(tournament):
            return None
        return promote(tournament)


def get_promotion_policy(name: Optional[str] = None) -> WaitlistPromotionPolicy:
    name = (name or WAITLIST_PROMOTION).lower()
    if name == "auto":
        return AutoPromotionPolicy()
    if name == "manual":
        return ManualPromotionPolicy()
    raise ValueError(f"Unknown waitlist promotion policy: {name}")


# ============================================================================
# Operations
# ============================================================================


async def signup(session: AsyncSession, tournament_id: int, player_id: int) -> Dict:
    """
    Sign a player up for a tournament.

    Returns:
        Dict with "placement" ("roster" or "waitlist") and the updated "tournament"
    """
    tournament = await tournament_store.load_tournament(session, tournament_id, for_update=True)
    player = await tournament_store.get_player(session, player_id)

    placement = place_player(tournament, player)
    await tournament_store.commit_tournament(session, tournament)
    logger.info(f"Player {player_id} signed up for tournament {tournament_id} ({placement})")

    tournament = await tournament_store.load_tournament(session, tournament_id)
    return {"placement": placement, "tournament": tournament_store.tournament_to_dict(tournament)}


async def drop(
    session: AsyncSession,
    tournament_id: int,
    player_id: int,
    policy: Optional[WaitlistPromotionPolicy] = None,
) -> Dict:
    """Drop a player from the roster or the waitlist, whichever holds them."""
    policy = policy or get_promotion_policy()
    tournament = await tournament_store.load_tournament(session, tournament_id, for_update=True)

    removed_from = remove_player(tournament, player_id)
    promoted = None
    if removed_from == ROSTER:
        promoted = policy.on_slot_freed(tournament)

    await tournament_store.commit_tournament(session, tournament)
    logger.info(f"Player {player_id} dropped from tournament {tournament_id} ({removed_from})")
    if promoted:
        logger.info(f"Player {promoted.player_id} promoted from waitlist of tournament {tournament_id}")

    tournament = await tournament_store.load_tournament(session, tournament_id)
    return tournament_store.tournament_to_dict(tournament)


async def drop_from_waitlist(session: AsyncSession, tournament_id: int, player_id: int) -> Dict:
    tournament = await tournament_store.load_tournament(session, tournament_id, for_update=True)
    remove_from_waitlist(tournament, player_id)
    await tournament_store.commit_tournament(session, tournament)
    logger.info(f"Player {player_id} left the waitlist of tournament {tournament_id}")

    tournament = await tournament_store.load_tournament(session, tournament_id)
    return tournament_store.tournament_to_dict(tournament)


async def promote_from_waitlist(
    session: AsyncSession, tournament_id: int, player_id: Optional[int] = None
) -> Dict:
    tournament = await tournament_store.load_tournament(session, tournament_id, for_update=True)
    entry = promote(tournament, player_id)
    await tournament_store.commit_tournament(session, tournament)
    logger.info(f"Player {entry.player_id} promoted from waitlist of tournament {tournament_id}")

    tournament = await tournament_store.load_tournament(session, tournament_id)
    return tournament_store.tournament_to_dict(tournament)


async def add_player(session: AsyncSession, tournament_id: int, player_id: int) -> Dict:
    tournament = await tournament_store.load_tournament(session, tournament_id, for_update=True)
    player = await tournament_store.get_player(session, player_id)
    admin_add(tournament, player)
    await tournament_store.commit_tournament(session, tournament)
    logger.info(f"Admin added player {player_id} to tournament {tournament_id}")

    tournament = await tournament_store.load_tournament(session, tournament_id)
    return tournament_store.tournament_to_dict(tournament)


async def kick_player(
    session: AsyncSession,
    tournament_id: int,
    player_id: int,
    policy: Optional[WaitlistPromotionPolicy] = None,
) -> Dict:
    policy = policy or get_promotion_policy()
    tournament = await tournament_store.load_tournament(session, tournament_id, for_update=True)
    admin_kick(tournament, player_id)
    promoted = policy.on_slot_freed(tournament)
    await tournament_store.commit_tournament(session, tournament)
    logger.info(f"Admin removed player {player_id} from tournament {tournament_id}")
    if promoted:
        logger.info(f"Player {promoted.player_id} promoted from waitlist of tournament {tournament_id}")

    tournament = await tournament_store.load_tournament(session, tournament_id)
    return tournament_store.tournament_to_dict(tournament)
