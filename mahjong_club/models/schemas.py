"""
Pydantic models for API request/response validation.
"""

from datetime import datetime
from decimal import Decimal
from typing import Annotated, List, Optional

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer, model_validator

from mahjong_club.utils.constants import DEFAULT_STARTING_POINT_VALUE

# UMA is exact in thousandths; JSON carries it as a plain number
UmaValue = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]


# --- Tournaments ---


class TournamentCreate(BaseModel):
    """Request to create a tournament."""
    name: str = Field(min_length=1, max_length=100)
    date: datetime
    location: Optional[str] = None
    description: Optional[str] = None
    starting_point_value: int = Field(default=DEFAULT_STARTING_POINT_VALUE, gt=0)
    max_players: Optional[int] = Field(default=None, ge=1)
    round_count: Optional[int] = Field(default=None, ge=1)
    round_duration_minutes: Optional[int] = Field(default=None, ge=1)
    is_east_only: bool = False


class TournamentUpdate(BaseModel):
    """Request to update a tournament. Only fields that are set are changed."""
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    date: Optional[datetime] = None
    location: Optional[str] = None
    description: Optional[str] = None
    starting_point_value: Optional[int] = Field(default=None, gt=0)
    max_players: Optional[int] = Field(default=None, ge=1)
    round_count: Optional[int] = Field(default=None, ge=1)
    round_duration_minutes: Optional[int] = Field(default=None, ge=1)
    is_east_only: Optional[bool] = None


class AddPlayerRequest(BaseModel):
    """Admin request to add a player to the roster."""
    player_id: int


class PromoteRequest(BaseModel):
    """Admin request to promote from the waitlist; the front of the queue if no player is named."""
    player_id: Optional[int] = None


class UmaPenaltyCreate(BaseModel):
    player_id: int
    amount: Decimal = Field(max_digits=12, decimal_places=3)
    reason: Optional[str] = Field(default=None, max_length=500)

    @model_validator(mode='after')
    def validate_amount(self):
        if self.amount == 0:
            raise ValueError("Penalty amount must be non-zero")
        return self


# --- Results ---


class ResultLine(BaseModel):
    """One seat's final score; exactly one of player_id or filler_slot."""
    player_id: Optional[int] = None
    filler_slot: Optional[int] = Field(default=None, ge=1)
    score: int

    @model_validator(mode='after')
    def validate_occupant(self):
        if (self.player_id is None) == (self.filler_slot is None):
            raise ValueError("Provide either player_id or filler_slot")
        return self


class SubmitResultRequest(BaseModel):
    """Request to submit the result of a table."""
    lines: List[ResultLine] = Field(min_length=4, max_length=4)
    points_left_on_table: int = Field(default=0, ge=0)
    notes: Optional[str] = Field(default=None, max_length=500)
    ran_out_of_time: bool = False


# --- Responses ---


class OccupantResponse(BaseModel):
    player_id: Optional[int] = None
    filler_slot: Optional[int] = None
    is_filler: bool
    display_name: Optional[str] = None


class SeatResponse(OccupantResponse):
    seat: str


class GameLineResponse(SeatResponse):
    score: int
    rank: int


class GameResponse(BaseModel):
    """Match result of one table."""
    id: int
    submitted_by: Optional[int] = None
    game_date: Optional[str] = None
    notes: Optional[str] = None
    points_left_on_table: int
    is_east_only: bool
    ran_out_of_time: bool
    verified: bool
    verified_by: Optional[int] = None
    verified_at: Optional[str] = None
    lines: List[GameLineResponse]


class PendingGameResponse(GameResponse):
    """Unverified game with the table it was played at."""
    tournament_id: Optional[int] = None
    round_number: Optional[int] = None
    table_number: Optional[int] = None


class PendingGameListResponse(BaseModel):
    games: List[PendingGameResponse]
    page: int
    limit: int
    total: int
    pages: int


class PairingResponse(BaseModel):
    id: int
    table_number: int
    game_id: Optional[int] = None
    seats: List[SeatResponse]
    game: Optional[GameResponse] = None


class RoundResponse(BaseModel):
    id: int
    round_number: int
    start_date: Optional[str] = None
    closed_at: Optional[str] = None
    is_closed: bool
    pairings: List[PairingResponse]


class RosterEntryResponse(BaseModel):
    player_id: int
    display_name: Optional[str] = None
    uma: UmaValue
    dropped: bool


class WaitlistEntryResponse(BaseModel):
    player_id: int
    display_name: Optional[str] = None
    added_at: Optional[str] = None


class StandingResponse(BaseModel):
    player_id: int
    display_name: Optional[str] = None
    uma: UmaValue
    penalty: UmaValue
    total: UmaValue
    dropped: bool


class UmaPenaltyResponse(BaseModel):
    id: int
    player_id: int
    amount: UmaValue
    reason: Optional[str] = None
    created_by: Optional[int] = None
    created_at: Optional[str] = None


class TournamentResponse(BaseModel):
    """Tournament aggregate. Rounds and penalties are omitted from the public view."""
    model_config = ConfigDict(from_attributes=True)
    id: int
    name: str
    description: Optional[str] = None
    date: Optional[str] = None
    location: Optional[str] = None
    status: str
    starting_point_value: int
    max_players: Optional[int] = None
    round_count: Optional[int] = None
    round_duration_minutes: Optional[int] = None
    is_east_only: bool
    created_by: Optional[int] = None
    version: int
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    players: List[RosterEntryResponse]
    waitlist: List[WaitlistEntryResponse]
    standings: List[StandingResponse]
    current_round: Optional[int] = None
    rounds: Optional[List[RoundResponse]] = None
    uma_penalties: Optional[List[UmaPenaltyResponse]] = None


class SignupResponse(BaseModel):
    placement: str  # "roster" or "waitlist"
    tournament: TournamentResponse


class TournamentSummaryResponse(BaseModel):
    id: int
    name: str
    date: Optional[str] = None
    location: Optional[str] = None
    status: str
    max_players: Optional[int] = None
    player_count: int
    waitlist_count: int


class TournamentListResponse(BaseModel):
    tournaments: List[TournamentSummaryResponse]
    page: int
    limit: int
    total: int
    pages: int


class MyPairingResponse(BaseModel):
    round_number: Optional[int] = None
    is_closed: Optional[bool] = None
    pairing: Optional[PairingResponse] = None


class PlayerTournamentResponse(BaseModel):
    tournament_id: int
    name: str
    status: str
    uma: UmaValue
    dropped: bool


class PlayerProfileResponse(BaseModel):
    id: int
    display_name: str
    is_guest: bool
    is_admin: bool
    tournaments: List[PlayerTournamentResponse]
