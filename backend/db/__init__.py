from .database import engine, init_db, build_engine, build_session_factory
from .models import Base, User, UserType, Team, TeamUser, TeamRole
from .poker_models import (
    PokerGame, PokerFacilitator, PokerParticipant, PokerStory, PointAverageRounding
)
