from .poker import (
    PokerVote, PokerStorySnapshot, PokerUserSnapshot, PokerGameSnapshot
)
