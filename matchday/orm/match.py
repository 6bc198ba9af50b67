"""
matchday/orm/match.py
Match model shared by league fixtures and playoff bracket slots.

Bracket shape is stored as plain columns rather than object graphs:
- (tournament_id, round, bracket_position) locates a slot
- next_match_id is the forward link to the match the winner moves into
- winner_to_home says which slot of next_match this match's winner fills
"""
from sqlalchemy import (
    Column, Integer, String, Boolean, ForeignKey, Index, Enum as SQLEnum
)
from enum import Enum as PyEnum

from matchday.orm.base import BaseModel


class MatchStage(str, PyEnum):
    """Named tier of a match"""
    LEAGUE_ROUND = "LEAGUE_ROUND"
    ROUND_OF_64 = "ROUND_OF_64"
    ROUND_OF_32 = "ROUND_OF_32"
    ROUND_OF_16 = "ROUND_OF_16"
    QUARTER_FINAL = "QUARTER_FINAL"
    SEMI_FINAL = "SEMI_FINAL"
    FINAL = "FINAL"
    THIRD_PLACE = "THIRD_PLACE"

    @property
    def display_name(self) -> str:
        return STAGE_DISPLAY_NAMES[self]


STAGE_DISPLAY_NAMES = {
    MatchStage.LEAGUE_ROUND: "League round",
    MatchStage.ROUND_OF_64: "1/32",
    MatchStage.ROUND_OF_32: "1/16",
    MatchStage.ROUND_OF_16: "1/8",
    MatchStage.QUARTER_FINAL: "Quarter-final",
    MatchStage.SEMI_FINAL: "Semi-final",
    MatchStage.FINAL: "Final",
    MatchStage.THIRD_PLACE: "Third place",
}


class MatchState(str, PyEnum):
    """Result lifecycle of a match (see state_machines.match_lifecycle)"""
    CREATED = "CREATED"
    PENDING_APPROVAL = "PENDING_APPROVAL"
    PENDING_PENALTY = "PENDING_PENALTY"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class Match(BaseModel):
    __tablename__ = "matches"

    tournament_id = Column(
        Integer,
        ForeignKey("tournaments.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    home_team_id = Column(Integer, ForeignKey("teams.id", ondelete="CASCADE"), nullable=False)
    away_team_id = Column(Integer, ForeignKey("teams.id", ondelete="CASCADE"), nullable=False)

    round = Column(Integer, nullable=False, default=1)
    stage = Column(SQLEnum(MatchStage), nullable=False, default=MatchStage.LEAGUE_ROUND)
    bracket_position = Column(Integer, nullable=True)
    state = Column(SQLEnum(MatchState), nullable=False, default=MatchState.CREATED, index=True)

    home_score = Column(Integer, nullable=True)
    away_score = Column(Integer, nullable=True)
    home_penalty_score = Column(Integer, nullable=True)
    away_penalty_score = Column(Integer, nullable=True)
    decided_by_penalties = Column(Boolean, nullable=False, default=False)

    is_bye = Column(Boolean, nullable=False, default=False)
    is_third_place_match = Column(Boolean, nullable=False, default=False)
    reject_reason = Column(String(500), nullable=True)

    next_match_id = Column(
        Integer,
        ForeignKey("matches.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )
    winner_to_home = Column(Boolean, nullable=True)

    version = Column(Integer, nullable=False, default=1)

    __table_args__ = (
        Index("idx_match_tournament_round", "tournament_id", "round"),
    )

    @property
    def has_scores(self) -> bool:
        return self.home_score is not None and self.away_score is not None

    @property
    def is_completed(self) -> bool:
        return self.state == MatchState.APPROVED and self.has_scores

    @property
    def is_real(self) -> bool:
        """A match between two distinct teams."""
        return not self.is_bye and self.home_team_id != self.away_team_id

    def clear_scores(self):
        self.home_score = None
        self.away_score = None
        self.home_penalty_score = None
        self.away_penalty_score = None
        self.decided_by_penalties = False

    def __repr__(self):
        return (
            f"<Match(id={self.id}, round={self.round}, stage={self.stage}, "
            f"{self.home_team_id} vs {self.away_team_id}, state={self.state})>"
        )

    def to_dict(self):
        return {
            "id": self.id,
            "tournament_id": self.tournament_id,
            "home_team_id": self.home_team_id,
            "away_team_id": self.away_team_id,
            "round": self.round,
            "stage": self.stage.value if self.stage else None,
            "stage_name": self.stage.display_name if self.stage else None,
            "bracket_position": self.bracket_position,
            "state": self.state.value if self.state else None,
            "home_score": self.home_score,
            "away_score": self.away_score,
            "home_penalty_score": self.home_penalty_score,
            "away_penalty_score": self.away_penalty_score,
            "decided_by_penalties": self.decided_by_penalties,
            "is_bye": self.is_bye,
            "is_third_place_match": self.is_third_place_match,
            "reject_reason": self.reject_reason,
            "next_match_id": self.next_match_id,
            "winner_to_home": self.winner_to_home,
            "updated_at": self._iso(self.updated_at),
        }
