"""
Round pairing generation.

Partitions the active roster into tables of four, pads the last table with
filler seats, and assigns winds. How players are grouped is delegated to a
PairingStrategy so the policy can change without touching the round
lifecycle.
"""

import logging
import math
import random
from abc import ABC, abstractmethod
from collections import Counter
from dataclasses import dataclass, field
from decimal import Decimal
from itertools import combinations
from typing import Dict, FrozenSet, List, Mapping, Optional, Sequence, Tuple

from mahjong_club.database.models import (
    Pairing,
    PairingSeat,
    Round,
    SEAT_ORDER,
    Seat,
    Tournament,
)
from mahjong_club.models.occupants import Filler, Occupant, RealPlayer, occupant_columns
from mahjong_club.services.errors import InsufficientPlayersError, InvalidPairingError
from mahjong_club.utils.constants import (
    PAIRING_ITERATIONS,
    PAIRING_STRATEGY,
    TABLE_SIZE,
    WHEEL_PLAYERS_PER_ROUND,
)

logger = logging.getLogger(__name__)

OpponentHistory = Counter  # frozenset({player_a, player_b}) -> times seated together


@dataclass
class PairingContext:
    """Everything a strategy may look at when grouping players."""

    round_number: int
    previous_rounds: List[Round] = field(default_factory=list)
    standings: Mapping[int, Decimal] = field(default_factory=dict)
    rng: random.Random = field(default_factory=random.Random)


# ============================================================================
# Helpers
# ============================================================================


def active_players(tournament: Tournament) -> List[RealPlayer]:
    """Roster entries eligible for pairing: not dropped and not guests."""
    players = []
    for entry in tournament.players:
        if entry.dropped:
            continue
        if entry.player is not None and entry.player.is_guest:
            continue
        players.append(RealPlayer(entry.player_id))
    return players


def table_sizes(player_count: int) -> List[int]:
    """
    Number of real players at each table.

    Every table is full except the last, which takes the whole shortfall
    as filler seats: 9 players give [4, 4, 1].
    """
    if player_count <= 0:
        return []
    table_count = math.ceil(player_count / TABLE_SIZE)
    sizes = [TABLE_SIZE] * table_count
    sizes[-1] = player_count - TABLE_SIZE * (table_count - 1)
    return sizes


def chunk(players: Sequence[RealPlayer], sizes: Sequence[int]) -> List[List[RealPlayer]]:
    """Split players into consecutive groups of the given sizes."""
    groups = []
    start = 0
    for size in sizes:
        groups.append(list(players[start:start + size]))
        start += size
    return groups


def build_opponent_history(rounds: Sequence[Round]) -> OpponentHistory:
    """Count how many times each pair of real players has shared a table."""
    history: OpponentHistory = Counter()
    for round_ in rounds:
        for pairing in round_.pairings:
            ids = [
                occupant.player_id
                for occupant in pairing.occupants
                if isinstance(occupant, RealPlayer)
            ]
            for a, b in combinations(ids, 2):
                history[frozenset((a, b))] += 1
    return history


def repeat_penalty(table: Sequence[Occupant], history: OpponentHistory) -> int:
    """
    Penalty for seating these players together.

    Each pair contributes the square of the times they already met, so one
    pair meeting twice costs more than two pairs meeting once.
    """
    ids = [occupant.player_id for occupant in table if isinstance(occupant, RealPlayer)]
    score = 0
    for a, b in combinations(ids, 2):
        times_played = history.get(frozenset((a, b)), 0)
        score += times_played * times_played
    return score


def total_repeat_penalty(tables: Sequence[Sequence[Occupant]], history: OpponentHistory) -> int:
    return sum(repeat_penalty(table, history) for table in tables)


def assign_seats(table: Sequence[Occupant], rng: random.Random) -> List[Tuple[Seat, Occupant]]:
    """Give each occupant a wind at random, returned in East..North order."""
    seats = list(SEAT_ORDER)
    rng.shuffle(seats)
    assigned = list(zip(seats, table))
    assigned.sort(key=lambda item: SEAT_ORDER.index(item[0]))
    return assigned


# ============================================================================
# Strategies
# ============================================================================


class PairingStrategy(ABC):
    """Groups real players into tables of the requested sizes."""

    name = "abstract"

    @abstractmethod
    def partition(
        self,
        players: List[RealPlayer],
        sizes: List[int],
        context: PairingContext,
    ) -> List[List[RealPlayer]]:
        """Return one group per entry in ``sizes``, using every player exactly once."""


class RandomPairingStrategy(PairingStrategy):
    """Uniformly random tables."""

    name = "random"

    def partition(self, players, sizes, context):
        shuffled = list(players)
        context.rng.shuffle(shuffled)
        return chunk(shuffled, sizes)


class RematchAvoidingPairingStrategy(PairingStrategy):
    """
    Random-restart search for the partition with the fewest repeat meetings.

    Tries ``iterations`` shuffles and keeps the one with the lowest
    total_repeat_penalty, stopping early when a partition without repeats
    is found.
    """

    name = "rematch_avoiding"

    def __init__(self, iterations: int = PAIRING_ITERATIONS):
        self.iterations = max(1, iterations)

    def partition(self, players, sizes, context):
        history = build_opponent_history(context.previous_rounds)
        best: Optional[List[List[RealPlayer]]] = None
        best_score = math.inf
        shuffled = list(players)

        for _ in range(self.iterations):
            context.rng.shuffle(shuffled)
            tables = chunk(shuffled, sizes)
            score = total_repeat_penalty(tables, history)
            if score < best_score:
                best, best_score = tables, score
                if score == 0:
                    break

        logger.debug(
            f"Round {context.round_number}: best repeat penalty {best_score} "
            f"after search over {len(players)} players"
        )
        return best


class WheelPairingStrategy(PairingStrategy):
    """
    Rotating-columns schedule for large fields.

    Round 1 tables are read as four columns (one per seat position). Round N
    rotates column i forward by (N - 1) * (i + 1) tables, so players who met
    in round 1 are spread apart as long as there are enough tables. Only
    usable when every table is full and the field has not changed since
    round 1.
    """

    name = "wheel"

    def applies_to(self, players: Sequence[RealPlayer], context: PairingContext) -> bool:
        if context.round_number == 1:
            return len(players) % TABLE_SIZE == 0
        first_round = _find_round(context.previous_rounds, 1)
        if first_round is None or len(players) % TABLE_SIZE != 0:
            return False
        seated: FrozenSet[Occupant] = frozenset(
            occupant for pairing in first_round.pairings for occupant in pairing.occupants
        )
        return seated == frozenset(players)

    def partition(self, players, sizes, context):
        if not self.applies_to(players, context):
            raise InvalidPairingError(
                "Wheel pairing requires full tables and an unchanged field since round 1"
            )
        if context.round_number == 1:
            return RandomPairingStrategy().partition(players, sizes, context)

        columns = self._columns(_find_round(context.previous_rounds, 1))
        table_count = len(columns[0])
        for index, column in enumerate(columns):
            moves = ((context.round_number - 1) * (index + 1)) % table_count
            columns[index] = column[moves:] + column[:moves]
        return [[column[table] for column in columns] for table in range(table_count)]

    @staticmethod
    def _columns(first_round: Round) -> List[List[RealPlayer]]:
        columns: List[List[RealPlayer]] = [[] for _ in range(TABLE_SIZE)]
        for pairing in sorted(first_round.pairings, key=lambda p: p.table_number):
            for index, occupant in enumerate(pairing.occupants):
                columns[index].append(occupant)
        return columns


class StandingsPairingStrategy(PairingStrategy):
    """Seat players of similar standing together, leaders at table 1."""

    name = "standings"

    def partition(self, players, sizes, context):
        ordered = list(players)
        context.rng.shuffle(ordered)  # Random order among equal standings
        ordered.sort(key=lambda p: context.standings.get(p.player_id, Decimal(0)), reverse=True)
        return chunk(ordered, sizes)


class DefaultPairingStrategy(PairingStrategy):
    """
    Random first round; afterwards the wheel for large fields and the
    rematch-avoiding search otherwise.
    """

    name = "default"

    def __init__(self, iterations: int = PAIRING_ITERATIONS):
        self.random = RandomPairingStrategy()
        self.wheel = WheelPairingStrategy()
        self.rematch_avoiding = RematchAvoidingPairingStrategy(iterations)

    def choose(self, players: Sequence[RealPlayer], context: PairingContext) -> PairingStrategy:
        if context.round_number == 1:
            return self.random
        threshold = WHEEL_PLAYERS_PER_ROUND * (context.round_number - 1) + TABLE_SIZE
        if len(players) > threshold and self.wheel.applies_to(players, context):
            return self.wheel
        return self.rematch_avoiding

    def partition(self, players, sizes, context):
        strategy = self.choose(players, context)
        logger.info(f"Round {context.round_number}: pairing {len(players)} players with {strategy.name}")
        return strategy.partition(players, sizes, context)


STRATEGIES: Dict[str, type] = {
    RandomPairingStrategy.name: RandomPairingStrategy,
    RematchAvoidingPairingStrategy.name: RematchAvoidingPairingStrategy,
    WheelPairingStrategy.name: WheelPairingStrategy,
    StandingsPairingStrategy.name: StandingsPairingStrategy,
    DefaultPairingStrategy.name: DefaultPairingStrategy,
}


def get_strategy(name: Optional[str] = None) -> PairingStrategy:
    """Instantiate a strategy by name; None gives the configured one."""
    name = name or PAIRING_STRATEGY
    try:
        return STRATEGIES[name]()
    except KeyError:
        raise ValueError(f"Unknown pairing strategy: {name}")


# ============================================================================
# Round generation
# ============================================================================


def _find_round(rounds: Sequence[Round], round_number: int) -> Optional[Round]:
    for round_ in rounds:
        if round_.round_number == round_number:
            return round_
    return None


def _check_partition(
    groups: List[List[RealPlayer]], players: List[RealPlayer], sizes: List[int]
) -> None:
    if groups is None or [len(group) for group in groups] != sizes:
        raise InvalidPairingError("Pairing strategy returned tables of the wrong size")
    seated = [player for group in groups for player in group]
    if len(set(seated)) != len(seated) or set(seated) != set(players):
        raise InvalidPairingError("Pairing strategy must seat every active player exactly once")


def generate_round(
    tournament: Tournament,
    round_number: int,
    strategy: Optional[PairingStrategy] = None,
    rng: Optional[random.Random] = None,
    standings: Optional[Mapping[int, Decimal]] = None,
) -> List[Pairing]:
    """
    Build the pairings for a round.

    Args:
        tournament: Tournament with roster and previous rounds loaded
        round_number: 1-based number of the round being generated
        strategy: Grouping policy, DefaultPairingStrategy when omitted
        rng: Random source, for reproducible pairings
        standings: player_id -> UMA used by standings-aware strategies;
            defaults to the roster's current UMA

    Returns:
        Unsaved Pairing objects, numbered from table 1, without games

    Raises:
        InsufficientPlayersError: If no active player remains
    """
    players = active_players(tournament)
    if not players:
        raise InsufficientPlayersError(
            f"Cannot generate round {round_number}: no active players"
        )

    strategy = strategy or DefaultPairingStrategy()
    rng = rng or random.Random()
    if standings is None:
        standings = {entry.player_id: entry.uma or Decimal(0) for entry in tournament.players}

    context = PairingContext(
        round_number=round_number,
        previous_rounds=[r for r in tournament.rounds if r.round_number < round_number],
        standings=standings,
        rng=rng,
    )
    sizes = table_sizes(len(players))
    groups = strategy.partition(list(players), list(sizes), context)
    _check_partition(groups, players, sizes)

    pairings = []
    filler_slot = 0
    for table_number, group in enumerate(groups, start=1):
        table: List[Occupant] = list(group)
        while len(table) < TABLE_SIZE:
            filler_slot += 1
            table.append(Filler(filler_slot))
        pairing = Pairing(table_number=table_number, game_id=None)
        pairing.seats = [
            PairingSeat(seat=seat, **occupant_columns(occupant))
            for seat, occupant in assign_seats(table, rng)
        ]
        pairings.append(pairing)

    return pairings
