"""
matchday/orm/team.py
Team model. A team belongs to exactly one tournament and one participant.
"""
from sqlalchemy import Column, Integer, String, ForeignKey, UniqueConstraint

from matchday.orm.base import BaseModel


class Team(BaseModel):
    __tablename__ = "teams"

    tournament_id = Column(
        Integer,
        ForeignKey("tournaments.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    participant_id = Column(String(64), nullable=False, comment="Owning participant address")
    name = Column(String(255), nullable=False)

    __table_args__ = (
        UniqueConstraint("tournament_id", "participant_id", name="uq_team_tournament_participant"),
    )

    def __repr__(self):
        return f"<Team(id={self.id}, name='{self.name}', tournament={self.tournament_id})>"

    def to_dict(self):
        return {
            "id": self.id,
            "tournament_id": self.tournament_id,
            "participant_id": self.participant_id,
            "name": self.name,
            "created_at": self._iso(self.created_at),
        }
