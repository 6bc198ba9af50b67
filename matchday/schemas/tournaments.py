"""
Pydantic Schemas for the tournament engine API

Request and response models for tournaments, teams, matches and results.
"""
from datetime import datetime
from typing import Optional, List, Dict
from pydantic import BaseModel, ConfigDict, Field

from matchday.orm.match import MatchStage, MatchState
from matchday.orm.tournament import TournamentFormat, TournamentStatus


# ============================================================================
# Tournament Schemas
# ============================================================================

class TournamentCreate(BaseModel):
    """Schema for creating a tournament."""
    name: str = Field(..., min_length=1, max_length=255)
    format: TournamentFormat = Field(TournamentFormat.LEAGUE, description="LEAGUE or PLAYOFF")
    description: Optional[str] = None
    number_of_rounds: int = Field(1, ge=1, le=2, description="1 = single, 2 = double round robin")
    max_participants: Optional[int] = Field(None, ge=2)
    auto_start: bool = False


class TournamentUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    number_of_rounds: Optional[int] = Field(None, ge=1, le=2)
    max_participants: Optional[int] = Field(None, ge=2)
    auto_start: Optional[bool] = None


class TournamentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: Optional[str] = None
    format: TournamentFormat
    status: TournamentStatus
    number_of_rounds: int
    is_active: bool
    created_by: str
    max_participants: Optional[int] = None
    auto_start: bool
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# ============================================================================
# Team Schemas
# ============================================================================

class TeamJoin(BaseModel):
    """Schema for joining a tournament."""
    team_name: str = Field(..., min_length=1, max_length=255)


class TeamResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    tournament_id: int
    participant_id: str
    name: str


# ============================================================================
# Match Schemas
# ============================================================================

class MatchResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    tournament_id: int
    home_team_id: int
    away_team_id: int
    round: int
    stage: MatchStage
    bracket_position: Optional[int] = None
    state: MatchState
    home_score: Optional[int] = None
    away_score: Optional[int] = None
    home_penalty_score: Optional[int] = None
    away_penalty_score: Optional[int] = None
    decided_by_penalties: bool
    is_bye: bool
    is_third_place_match: bool
    reject_reason: Optional[str] = None
    next_match_id: Optional[int] = None
    winner_to_home: Optional[bool] = None


class ParticipantMatchResponse(MatchResponse):
    """A match seen from one participant's side."""
    is_home: bool
    can_submit: bool = Field(..., description="Home side and the match still awaits a result")


class BracketRound(BaseModel):
    round: int
    stage: MatchStage
    stage_name: str
    matches: List[MatchResponse]


class BracketResponse(BaseModel):
    tournament_id: int
    rounds: List[BracketRound]


# ============================================================================
# Result Schemas
# ============================================================================

class ResultSubmit(BaseModel):
    """Schema for the home team reporting a score."""
    home_score: int = Field(..., ge=0)
    away_score: int = Field(..., ge=0)
    evidence_ref: Optional[str] = Field(None, max_length=500, description="Screenshot reference")
    home_penalty: Optional[int] = Field(None, ge=0)
    away_penalty: Optional[int] = Field(None, ge=0)


class ResultReview(BaseModel):
    comment: Optional[str] = Field(None, max_length=500)


class PenaltySubmit(BaseModel):
    home_penalty: int = Field(..., ge=0)
    away_penalty: int = Field(..., ge=0)


class DisqualifyRequest(BaseModel):
    team_id: int


class ResultResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    match_id: Optional[int] = None
    home_score: int
    away_score: int
    home_penalty_score: Optional[int] = None
    away_penalty_score: Optional[int] = None
    submitted_by: str
    evidence_ref: Optional[str] = None
    is_approved: bool
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    review_comment: Optional[str] = None


# ============================================================================
# Standings Schemas
# ============================================================================

class StandingResponse(BaseModel):
    position: Optional[int] = None
    team_id: int
    team_name: str
    played: int
    won: int
    drawn: int
    lost: int
    goals_for: int
    goals_against: int
    goal_difference: int
    points: int


class StandingsResponse(BaseModel):
    tournament_id: int
    format: TournamentFormat
    standings: List[StandingResponse]


class StartResponse(BaseModel):
    tournament: TournamentResponse
    match_count: int
    bye_count: int
    matches: List[MatchResponse]


class HealthResponse(BaseModel):
    status: str
    version: str
    feature_flags: Dict[str, bool]
