"""
Domain errors for the tournament engine.

Every error is a ValueError so that routes following the usual
``except ValueError -> 400`` convention keep working; the ``status_code``
attribute lets a route pick a more precise HTTP code.
"""


class TournamentError(ValueError):
    """Base class for all recoverable tournament errors."""

    status_code = 400


# --- Lookups ---


class NotFoundError(TournamentError):
    status_code = 404


class TournamentNotFoundError(NotFoundError):
    pass


class PlayerNotFoundError(NotFoundError):
    pass


class RoundNotFoundError(NotFoundError):
    pass


class PairingNotFoundError(NotFoundError):
    pass


class GameNotFoundError(NotFoundError):
    pass


# --- Registration ---


class DuplicateSignupError(TournamentError):
    """Player is already on the roster or the waitlist."""


class GuestPlayerError(TournamentError):
    """Guest and filler identities cannot register as real players."""


class CapacityExceeded(TournamentError):
    """Internal: the roster is full. Resolved by placing the player on the waitlist."""


class TournamentFullError(TournamentError):
    """A slot was required (promotion, rejoin) but none is free."""


class NotRegisteredError(TournamentError):
    """Player is on neither the roster nor the waitlist."""


class AlreadyDroppedError(TournamentError):
    pass


# --- Lifecycle ---


class IllegalStateTransitionError(TournamentError):
    """Operation is not allowed in the tournament's current state."""


class RoundAlreadyClosedError(IllegalStateTransitionError):
    """UMA for this round has already been applied."""


class RoundIncompleteError(TournamentError):
    """Some table in the round has no verified game."""


class InsufficientPlayersError(TournamentError):
    """No active players to pair."""


class InvalidTournamentError(TournamentError):
    """Tournament settings are inconsistent."""


# --- Results ---


class InvalidResultError(TournamentError):
    """Submitted result lines do not describe the pairing."""


class InvalidScoreTotalError(InvalidResultError):
    """sum(scores) + points left on the table is not an allowed total."""


class ResultAlreadySubmittedError(TournamentError):
    pass


class GameAlreadyVerifiedError(TournamentError):
    pass


# --- Access and concurrency ---


class PermissionDeniedError(TournamentError):
    status_code = 403


class ConcurrentModificationError(TournamentError):
    """Another request changed the tournament first; safe to retry."""

    status_code = 409


class InvalidPairingError(TournamentError):
    """A pairing strategy produced an invalid partition."""

    status_code = 500
