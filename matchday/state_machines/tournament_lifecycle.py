"""
Tournament Lifecycle State Machine

Rules:
- Status moves strictly forward: CREATED -> REGISTRATION -> STARTED -> IN_PROGRESS -> FINISHED
- CREATED may skip REGISTRATION, STARTED may skip IN_PROGRESS
- CANCELLED is reachable from any non-terminal status
- FINISHED and CANCELLED are terminal; no match or team may change afterwards
"""
import logging
from datetime import datetime
from typing import Dict, List

from matchday.orm.tournament import Tournament, TournamentStatus

logger = logging.getLogger(__name__)


class TournamentTransitionError(Exception):
    """Raised when a tournament status change is not allowed."""
    pass


class TournamentLockedError(Exception):
    """Raised when a finished or cancelled tournament would be mutated."""
    def __init__(self, tournament_id, status: TournamentStatus):
        self.tournament_id = tournament_id
        self.status = status
        super().__init__(f"Tournament {tournament_id} is {status.value}; no further changes allowed")


class TournamentLifecycle:

    VALID_TRANSITIONS: Dict[TournamentStatus, List[TournamentStatus]] = {
        TournamentStatus.CREATED: [
            TournamentStatus.REGISTRATION,
            TournamentStatus.STARTED,
            TournamentStatus.CANCELLED,
        ],
        TournamentStatus.REGISTRATION: [
            TournamentStatus.STARTED,
            TournamentStatus.CANCELLED,
        ],
        TournamentStatus.STARTED: [
            TournamentStatus.IN_PROGRESS,
            TournamentStatus.FINISHED,
            TournamentStatus.CANCELLED,
        ],
        TournamentStatus.IN_PROGRESS: [
            TournamentStatus.FINISHED,
            TournamentStatus.CANCELLED,
        ],
        TournamentStatus.FINISHED: [],
        TournamentStatus.CANCELLED: [],
    }

    @staticmethod
    def _is_valid_transition(from_status: TournamentStatus, to_status: TournamentStatus) -> bool:
        return to_status in TournamentLifecycle.VALID_TRANSITIONS.get(from_status, [])

    @staticmethod
    def transition(tournament: Tournament, to_status: TournamentStatus) -> Tournament:
        from_status = tournament.status or TournamentStatus.CREATED
        if not TournamentLifecycle._is_valid_transition(from_status, to_status):
            raise TournamentTransitionError(
                f"Tournament {tournament.id}: cannot transition from "
                f"{from_status.value} to {to_status.value}"
            )

        tournament.status = to_status
        if to_status.is_ended:
            tournament.is_active = False
            tournament.end_date = tournament.end_date or datetime.utcnow()
        tournament.touch()

        logger.info(f"Tournament {tournament.id} status: {from_status.value} -> {to_status.value}")
        return tournament

    @staticmethod
    def ensure_mutable(tournament: Tournament):
        """
        Raises:
            TournamentLockedError: If the tournament is finished or cancelled
        """
        if tournament.status is not None and tournament.status.is_ended:
            raise TournamentLockedError(tournament.id, tournament.status)
