"""
Seat occupants.

A seat at a tournament table is either held by a real registrant or by a
filler placeholder that only exists to complete a table of four. Code that
scores or ranks players must go through these types instead of checking a
nullable column, so a filler can never be counted by omission.
"""

from dataclasses import dataclass
from typing import Optional, Union


@dataclass(frozen=True)
class RealPlayer:
    """A registered player sitting at a table."""

    player_id: int


@dataclass(frozen=True)
class Filler:
    """A placeholder seat. Slots are numbered from 1 within a round."""

    slot: int


Occupant = Union[RealPlayer, Filler]


def occupant_from_columns(player_id: Optional[int], filler_slot: Optional[int]) -> Occupant:
    """Build the occupant variant from the two mutually exclusive columns."""
    if player_id is not None and filler_slot is not None:
        raise ValueError("A seat cannot hold both a player and a filler")
    if player_id is not None:
        return RealPlayer(player_id)
    if filler_slot is not None:
        return Filler(filler_slot)
    raise ValueError("A seat must hold either a player or a filler")


def occupant_columns(occupant: Occupant) -> dict:
    """Inverse of occupant_from_columns, for building ORM rows."""
    if isinstance(occupant, RealPlayer):
        return {"player_id": occupant.player_id, "filler_slot": None}
    return {"player_id": None, "filler_slot": occupant.slot}
