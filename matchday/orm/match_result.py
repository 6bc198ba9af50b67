"""
matchday/orm/match_result.py
Submitted result for a match, one-to-one with Match through match_id.

Created on submission, deleted on rejection. Once approved only the
penalty fields may change.
"""
from sqlalchemy import Column, Integer, String, Boolean, DateTime, Text, ForeignKey

from matchday.orm.base import BaseModel


class MatchResult(BaseModel):
    __tablename__ = "match_results"

    # Nullable so the link can be cleared before the row is deleted
    match_id = Column(
        Integer,
        ForeignKey("matches.id", ondelete="CASCADE"),
        nullable=True,
        unique=True,
        index=True
    )

    home_score = Column(Integer, nullable=False)
    away_score = Column(Integer, nullable=False)
    home_penalty_score = Column(Integer, nullable=True)
    away_penalty_score = Column(Integer, nullable=True)

    submitted_by = Column(String(64), nullable=False)
    evidence_ref = Column(String(500), nullable=True, comment="Opaque screenshot reference")

    is_approved = Column(Boolean, nullable=False, default=False)
    reviewed_by = Column(String(64), nullable=True)
    reviewed_at = Column(DateTime, nullable=True)
    review_comment = Column(Text, nullable=True)

    @property
    def has_penalties(self) -> bool:
        return self.home_penalty_score is not None and self.away_penalty_score is not None

    def __repr__(self):
        return f"<MatchResult(id={self.id}, match={self.match_id}, approved={self.is_approved})>"

    def to_dict(self):
        return {
            "id": self.id,
            "match_id": self.match_id,
            "home_score": self.home_score,
            "away_score": self.away_score,
            "home_penalty_score": self.home_penalty_score,
            "away_penalty_score": self.away_penalty_score,
            "submitted_by": self.submitted_by,
            "evidence_ref": self.evidence_ref,
            "is_approved": self.is_approved,
            "reviewed_by": self.reviewed_by,
            "reviewed_at": self._iso(self.reviewed_at),
            "review_comment": self.review_comment,
            "created_at": self._iso(self.created_at),
        }
