"""
Planning Poker error types

Every repository failure raised to callers derives from PokerError and
carries a stable code the realtime layer forwards to clients.
"""


class PokerError(Exception):
    """Base exception for poker persistence errors"""
    code = "POKER_ERROR"


class PokerEncodingError(PokerError):
    """Raised when a join/facilitator code or a JSON column cannot be encoded or decoded"""
    code = "ENCODING_ERROR"


class GameNotFoundError(PokerError):
    code = "GAME_NOT_FOUND"


class ParticipantNotFoundError(PokerError):
    """Raised when the user has never joined the game"""
    code = "USER_NOT_IN_GAME"


class UserNotFoundError(PokerError):
    code = "USER_NOT_FOUND"


class StoryNotFoundError(PokerError):
    code = "STORY_NOT_FOUND"


class FacilitatorCodeNotSetError(PokerError):
    code = "FACILITATOR_CODE_NOT_SET"


class NotFacilitatorError(PokerError):
    """Raised when a non facilitator attempts a facilitator only action"""
    code = "INVALID_FACILITATOR"


class OnlyFacilitatorError(PokerError):
    """Raised when removing the last facilitator of a game"""
    code = "ONLY_FACILITATOR"


class DuplicateActiveUserError(PokerError):
    """Raised when the user is already connected to the game"""
    code = "DUPLICATE_BATTLE_USER"


class VotingClosedError(PokerError):
    """Raised when voting on a story that is not active or while voting is locked"""
    code = "VOTING_CLOSED"


class InvalidRoundingError(PokerError):
    """Raised when point_average_rounding is not one of ceil, round, floor"""
    code = "INVALID_POINT_AVERAGE_ROUNDING"


class PokerStoreError(PokerError):
    """Wraps a database failure with the operation that hit it"""
    code = "STORE_ERROR"


class RefreshedList(list):
    """List re-read after a successful mutation.

    The mutation result is authoritative; the re-read is advisory. When it
    fails the list is empty and stale is True so callers can tell a failed
    refresh from a genuinely empty result.
    """

    def __init__(self, items=(), stale: bool = False):
        super().__init__(items)
        self.stale = stale
