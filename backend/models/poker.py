from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, List
from datetime import datetime


class PokerVote(BaseModel):
    model_config = ConfigDict(extra="ignore")

    user_id: str
    vote: str


class PokerStorySnapshot(BaseModel):
    """Estimation item snapshot"""
    model_config = ConfigDict(extra="ignore")

    id: str = ""
    poker_id: str = ""
    name: str = ""
    type: str = "Story"
    reference_id: str = ""
    link: str = ""
    description: str = ""
    acceptance_criteria: str = ""
    position: int = 0
    points: str = ""
    active: bool = False
    skipped: bool = False
    votes: List[PokerVote] = Field(default_factory=list)
    vote_start_time: Optional[datetime] = None
    vote_end_time: Optional[datetime] = None


class PokerUserSnapshot(BaseModel):
    """Game participant joined with the user profile"""
    model_config = ConfigDict(extra="ignore")

    id: str
    name: str
    type: str
    avatar: str = ""
    gravatar_hash: str = ""
    active: bool = False
    spectator: bool = False
    picture_url: str = ""


class PokerGameSnapshot(BaseModel):
    """Game snapshot

    users and stories are populated by separate reads and are never persisted
    through this object. join_code and facilitator_code are plaintext here.
    """
    model_config = ConfigDict(extra="ignore")

    id: str = ""
    name: str
    voting_locked: bool = True
    active_story_id: str = ""
    point_values_allowed: List[str] = Field(default_factory=list)
    auto_finish_voting: bool = True
    point_average_rounding: str = "ceil"
    hide_voter_identity: bool = False
    facilitators: List[str] = Field(default_factory=list)
    join_code: str = ""
    facilitator_code: str = ""
    team_id: str = ""
    team_name: str = ""
    users: List[PokerUserSnapshot] = Field(default_factory=list)
    # True when the participant read failed and users may be incomplete
    users_stale: bool = False
    stories: List[PokerStorySnapshot] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
