"""
UMA scoring.

UMA for one game line is the score above or below the starting point value
in thousands, plus a fixed bonus for the finishing rank. A round's deltas
are added to the roster exactly once, when the round is closed.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from fractions import Fraction
from typing import Dict, List, Optional, Sequence, Tuple

from mahjong_club.database.models import (
    Game,
    Round,
    SEAT_INDEX,
    Seat,
    Tournament,
)
from mahjong_club.models.occupants import RealPlayer
from mahjong_club.services.errors import (
    InvalidResultError,
    RoundAlreadyClosedError,
    RoundIncompleteError,
)
from mahjong_club.utils.constants import RANK_UMA, UMA_QUANTUM
from mahjong_club.utils.datetime_utils import utcnow

logger = logging.getLogger(__name__)


def uma_delta(score: int, rank: int, starting_point_value: int) -> Fraction:
    """
    UMA earned by one game line.

    >>> uma_delta(32000, 1, 25000)
    Fraction(37, 1)
    """
    if rank not in RANK_UMA:
        raise InvalidResultError(f"Rank must be between 1 and 4, got {rank}")
    return Fraction(score - starting_point_value, 1000) + RANK_UMA[rank]


def to_uma(value: Fraction) -> Decimal:
    """Stored form of an exact UMA value."""
    return (Decimal(value.numerator) / Decimal(value.denominator)).quantize(UMA_QUANTUM)


def assign_ranks(lines: Sequence[Tuple[Seat, int]]) -> List[int]:
    """
    Ranks for (seat, score) lines, in input order.

    Higher score ranks first; equal scores are ordered by seat, East first.
    """
    order = sorted(
        range(len(lines)),
        key=lambda i: (-lines[i][1], SEAT_INDEX[lines[i][0]]),
    )
    ranks = [0] * len(lines)
    for rank, index in enumerate(order, start=1):
        ranks[index] = rank
    return ranks


def game_deltas(game: Game, starting_point_value: int) -> Dict[int, Fraction]:
    """UMA per real player for one game. Filler lines are skipped."""
    deltas = {}
    for line in game.lines:
        occupant = line.occupant
        if not isinstance(occupant, RealPlayer):
            continue
        deltas[occupant.player_id] = uma_delta(line.score, line.rank, starting_point_value)
    return deltas


def round_deltas(
    tournament: Tournament,
    round_: Round,
    games: Optional[Dict[int, Game]] = None,
) -> Dict[int, Fraction]:
    """
    UMA per real player for a whole round, without applying anything.

    Args:
        tournament: Tournament the round belongs to
        round_: Round to score
        games: game_id -> Game, for games not loaded on the pairings

    Raises:
        RoundIncompleteError: If a table has no game to score
    """
    games = games or {}
    deltas: Dict[int, Fraction] = {}
    for pairing in round_.pairings:
        game = pairing.game if pairing.game is not None else games.get(pairing.game_id)
        if game is None:
            raise RoundIncompleteError(
                f"Round {round_.round_number} table {pairing.table_number} has no result"
            )
        for player_id, delta in game_deltas(game, tournament.starting_point_value).items():
            deltas[player_id] = deltas.get(player_id, Fraction(0)) + delta
    return deltas


def add_deltas(tournament: Tournament, deltas: Dict[int, Fraction]) -> None:
    entries = {entry.player_id: entry for entry in tournament.players}
    for player_id, delta in deltas.items():
        entry = entries.get(player_id)
        if entry is None:
            # A result line for someone off the roster cannot be scored
            raise InvalidResultError(
                f"Player {player_id} is not on the roster of tournament {tournament.id}"
            )
        entry.uma = (entry.uma or Decimal(0)) + to_uma(delta)


def apply_round(
    tournament: Tournament,
    round_: Round,
    games: Optional[Dict[int, Game]] = None,
    deltas: Optional[Dict[int, Fraction]] = None,
) -> Dict[int, Fraction]:
    """
    Add a round's UMA to the roster and close the round.

    Deltas computed earlier with round_deltas may be passed in so scoring
    and mutation can be separated.

    Raises:
        RoundAlreadyClosedError: If the round was already scored
    """
    if round_.is_closed:
        raise RoundAlreadyClosedError(
            f"Round {round_.round_number} has already been scored"
        )
    if deltas is None:
        deltas = round_deltas(tournament, round_, games)

    add_deltas(tournament, deltas)
    round_.closed_at = utcnow()
    logger.info(
        f"Applied UMA for tournament {tournament.id} round {round_.round_number} "
        f"to {len(deltas)} players"
    )
    return deltas


def recalculate_uma(
    tournament: Tournament, games: Optional[Dict[int, Game]] = None
) -> Dict[int, Decimal]:
    """
    Rebuild every roster UMA from the closed rounds.

    Returns the player_id -> UMA change made, so callers can report drift.
    """
    changes = uma_drift(tournament, games)
    entries = {entry.player_id: entry for entry in tournament.players}
    for player_id, change in changes.items():
        entries[player_id].uma = (entries[player_id].uma or Decimal(0)) + change
    return changes


def uma_drift(
    tournament: Tournament, games: Optional[Dict[int, Game]] = None
) -> Dict[int, Decimal]:
    """player_id -> correction needed to match the closed rounds. Nothing is changed."""
    totals: Dict[int, Fraction] = {entry.player_id: Fraction(0) for entry in tournament.players}
    for round_ in tournament.rounds:
        if not round_.is_closed:
            continue
        for player_id, delta in round_deltas(tournament, round_, games).items():
            if player_id not in totals:
                raise InvalidResultError(
                    f"Player {player_id} is not on the roster of tournament {tournament.id}"
                )
            totals[player_id] += delta

    drift = {}
    for entry in tournament.players:
        change = to_uma(totals[entry.player_id]) - (entry.uma or Decimal(0))
        if change != 0:
            drift[entry.player_id] = change
    return drift


@dataclass
class StandingRow:
    player_id: int
    display_name: Optional[str]
    uma: Decimal
    penalty: Decimal
    dropped: bool

    @property
    def total(self) -> Decimal:
        return self.uma + self.penalty


def penalty_totals(tournament: Tournament) -> Dict[int, Decimal]:
    totals: Dict[int, Decimal] = {}
    for penalty in tournament.uma_penalties:
        totals[penalty.player_id] = totals.get(penalty.player_id, Decimal(0)) + penalty.amount
    return totals


def standings(tournament: Tournament) -> List[StandingRow]:
    """
    Roster ordered by UMA plus penalties, highest first.

    Dropped players keep their UMA but are listed after active ones.
    """
    penalties = penalty_totals(tournament)
    rows = [
        StandingRow(
            player_id=entry.player_id,
            display_name=entry.player.display_name if entry.player else None,
            uma=entry.uma or Decimal(0),
            penalty=penalties.get(entry.player_id, Decimal(0)),
            dropped=entry.dropped,
        )
        for entry in tournament.players
    ]
    rows.sort(key=lambda row: (row.dropped, -row.total, row.player_id))
    return rows


def effective_uma(tournament: Tournament) -> Dict[int, Decimal]:
    """player_id -> UMA plus penalties, for standings-aware pairing."""
    return {row.player_id: row.total for row in standings(tournament)}
