"""
matchday/orm/tournament.py
Tournament model: one league or playoff competition and its lifecycle status.
"""
from sqlalchemy import Column, Integer, String, Boolean, DateTime, Text, Enum as SQLEnum
from enum import Enum as PyEnum

from matchday.orm.base import BaseModel


class TournamentFormat(str, PyEnum):
    """How fixtures are generated"""
    LEAGUE = "LEAGUE"      # round robin
    PLAYOFF = "PLAYOFF"    # single elimination


class TournamentStatus(str, PyEnum):
    """Tournament lifecycle status"""
    CREATED = "CREATED"
    REGISTRATION = "REGISTRATION"
    STARTED = "STARTED"
    IN_PROGRESS = "IN_PROGRESS"
    FINISHED = "FINISHED"
    CANCELLED = "CANCELLED"

    @property
    def can_register(self) -> bool:
        return self in (TournamentStatus.CREATED, TournamentStatus.REGISTRATION)

    @property
    def can_start(self) -> bool:
        return self in (TournamentStatus.CREATED, TournamentStatus.REGISTRATION)

    @property
    def is_ongoing(self) -> bool:
        return self in (TournamentStatus.STARTED, TournamentStatus.IN_PROGRESS)

    @property
    def is_ended(self) -> bool:
        return self in (TournamentStatus.FINISHED, TournamentStatus.CANCELLED)


class Tournament(BaseModel):
    """
    A tournament owns its teams and matches.

    Status only moves forward; CANCELLED is reachable from any
    non-terminal status (see state_machines.tournament_lifecycle).
    """
    __tablename__ = "tournaments"

    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    format = Column(SQLEnum(TournamentFormat), nullable=False, default=TournamentFormat.LEAGUE)
    status = Column(SQLEnum(TournamentStatus), nullable=False, default=TournamentStatus.CREATED, index=True)

    # 1 = single round robin, 2 = double (home/away swapped on the second cycle)
    number_of_rounds = Column(Integer, nullable=False, default=1)

    is_active = Column(Boolean, nullable=False, default=False)
    created_by = Column(String(64), nullable=False, comment="Organizer address")
    max_participants = Column(Integer, nullable=True)
    auto_start = Column(Boolean, nullable=False, default=False)

    start_date = Column(DateTime, nullable=True)
    end_date = Column(DateTime, nullable=True)

    @property
    def is_playoff(self) -> bool:
        return self.format == TournamentFormat.PLAYOFF

    @property
    def is_started(self) -> bool:
        return self.start_date is not None or not self.status.can_start

    def __repr__(self):
        return f"<Tournament(id={self.id}, name='{self.name}', format={self.format}, status={self.status})>"

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "format": self.format.value if self.format else None,
            "status": self.status.value if self.status else None,
            "number_of_rounds": self.number_of_rounds,
            "is_active": self.is_active,
            "created_by": self.created_by,
            "max_participants": self.max_participants,
            "auto_start": self.auto_start,
            "start_date": self._iso(self.start_date),
            "end_date": self._iso(self.end_date),
            "created_at": self._iso(self.created_at),
            "updated_at": self._iso(self.updated_at),
        }
