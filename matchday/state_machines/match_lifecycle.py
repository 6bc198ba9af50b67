"""
Match Lifecycle State Machine

Valid result transitions for a single match:

    CREATED -> PENDING_APPROVAL -> APPROVED
                               -> PENDING_PENALTY -> APPROVED   (knockout draw)
                               -> REJECTED -> CREATED            (resubmission)

Byes, walkovers and disqualifications skip submission and are forced
straight to APPROVED. APPROVED is terminal.
"""
import logging
from typing import Dict, List

from matchday.orm.match import Match, MatchState

logger = logging.getLogger(__name__)


class InvalidTransitionError(Exception):
    """Raised when an invalid state transition is attempted."""
    def __init__(self, match_id, from_state: MatchState, to_state: MatchState):
        self.match_id = match_id
        self.from_state = from_state
        self.to_state = to_state
        allowed = [s.value for s in MatchLifecycle.ALLOWED_TRANSITIONS.get(from_state, [])]
        super().__init__(
            f"Match {match_id}: cannot transition from {from_state.value} to {to_state.value}. "
            f"Allowed: {allowed}"
        )


class MatchLifecycle:
    """Stateless guard over Match.state."""

    ALLOWED_TRANSITIONS: Dict[MatchState, List[MatchState]] = {
        MatchState.CREATED: [
            MatchState.PENDING_APPROVAL,
        ],
        MatchState.PENDING_APPROVAL: [
            MatchState.APPROVED,
            MatchState.PENDING_PENALTY,
            MatchState.REJECTED,
        ],
        MatchState.PENDING_PENALTY: [
            MatchState.APPROVED,
        ],
        MatchState.REJECTED: [
            MatchState.CREATED,
        ],
        MatchState.APPROVED: [],
    }

    # Administrative decisions (bye, walkover, disqualification)
    FORCED_TRANSITIONS: Dict[MatchState, List[MatchState]] = {
        MatchState.CREATED: [MatchState.APPROVED],
        MatchState.PENDING_APPROVAL: [MatchState.APPROVED],
        MatchState.PENDING_PENALTY: [MatchState.APPROVED],
        MatchState.REJECTED: [MatchState.APPROVED],
        MatchState.APPROVED: [],
    }

    @staticmethod
    def _is_valid_transition(from_state: MatchState, to_state: MatchState, force: bool = False) -> bool:
        table = MatchLifecycle.FORCED_TRANSITIONS if force else MatchLifecycle.ALLOWED_TRANSITIONS
        return to_state in table.get(from_state, [])

    @staticmethod
    def can_transition(match: Match, to_state: MatchState, force: bool = False) -> bool:
        return MatchLifecycle._is_valid_transition(match.state or MatchState.CREATED, to_state, force)

    @staticmethod
    def transition(match: Match, to_state: MatchState, force: bool = False) -> Match:
        """
        Move the match to to_state.

        Raises:
            InvalidTransitionError: If the transition is not allowed
        """
        from_state = match.state or MatchState.CREATED
        if not MatchLifecycle._is_valid_transition(from_state, to_state, force):
            raise InvalidTransitionError(match.id, from_state, to_state)

        match.state = to_state
        match.version = (match.version or 0) + 1
        logger.debug(f"Match {match.id}: {from_state.value} -> {to_state.value} (forced={force})")
        return match

    @staticmethod
    def is_terminal(state: MatchState) -> bool:
        return not MatchLifecycle.ALLOWED_TRANSITIONS.get(state)
