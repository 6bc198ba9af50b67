"""
Match Result Service

Drives a match through its result lifecycle:

    submit  (home participant)   CREATED -> PENDING_APPROVAL
    approve (organizer)          PENDING_APPROVAL -> APPROVED | PENDING_PENALTY
    reject  (organizer)          PENDING_APPROVAL -> REJECTED -> CREATED
    penalty (submitter/organizer) PENDING_PENALTY -> APPROVED

Rules:
- Every mutation runs under the tournament lock and commits before the
  lock is released
- Validation happens before any write; a failed call changes nothing
- Approving an approved result is a no-op and does not propagate again
- Notifications are sent only after commit
"""
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from matchday.database import get_session_factory
from matchday.orm.match import Match, MatchState
from matchday.orm.match_result import MatchResult
from matchday.orm.team import Team
from matchday.orm.tournament import Tournament, TournamentFormat, TournamentStatus
from matchday.repositories import (
    MatchRepository, MatchResultRepository, TeamRepository, TournamentRepository
)
from matchday.services.bracket_service import (
    BracketService, MatchAlreadyDecidedError, determine_winner
)
from matchday.services.completion_service import CompletionService
from matchday.services.notification_service import NotificationService
from matchday.services.tournament_locks import (
    TournamentLockRegistry, locked_tournament, schedule_after_commit, tournament_locks
)
from matchday.state_machines.match_lifecycle import MatchLifecycle
from matchday.state_machines.tournament_lifecycle import TournamentLifecycle

logger = logging.getLogger(__name__)


# =============================================================================
# Exceptions
# =============================================================================

class MatchResultError(Exception):
    """Base exception for result operations."""
    def __init__(self, message: str, code: str = "RESULT_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


class MatchNotFoundError(MatchResultError):
    def __init__(self, match_id: int):
        super().__init__(f"Match {match_id} not found", "MATCH_NOT_FOUND")


class ResultNotFoundError(MatchResultError):
    def __init__(self, identifier: str):
        super().__init__(f"Result {identifier} not found", "RESULT_NOT_FOUND")


class UnauthorizedSubmitterError(MatchResultError):
    def __init__(self, message: str):
        super().__init__(message, "UNAUTHORIZED")


class ResultConflictError(MatchResultError):
    def __init__(self, message: str):
        super().__init__(message, "RESULT_CONFLICT")


class InvalidScoreError(MatchResultError):
    def __init__(self, message: str):
        super().__init__(message, "INVALID_SCORE")


class InvalidMatchStateError(MatchResultError):
    def __init__(self, message: str):
        super().__init__(message, "INVALID_MATCH_STATE")


class MatchResultService:

    def __init__(
        self,
        db: AsyncSession,
        notifications: NotificationService = None,
        locks: TournamentLockRegistry = None,
        session_factory: async_sessionmaker = None,
        bracket: BracketService = None,
    ):
        self.db = db
        self.notifications = notifications or NotificationService()
        self.locks = locks or tournament_locks
        self.session_factory = session_factory
        self.bracket = bracket or BracketService(db, self.notifications)
        self.matches = MatchRepository(db)
        self.results = MatchResultRepository(db)
        self.teams = TeamRepository(db)
        self.tournaments = TournamentRepository(db)

    @asynccontextmanager
    async def _locked(self, tournament_id: int):
        async with locked_tournament(self.db, tournament_id, self.notifications, self.locks) as tournament:
            if tournament is None:
                raise InvalidMatchStateError(f"Tournament {tournament_id} no longer exists")
            yield tournament

    async def _get_match(self, match_id: int) -> Match:
        match = await self.matches.find_by_id(match_id)
        if match is None:
            raise MatchNotFoundError(match_id)
        return match

    async def _get_result(self, result_id: int) -> MatchResult:
        result = await self.results.find_by_id(result_id)
        if result is None:
            raise ResultNotFoundError(str(result_id))
        return result

    @staticmethod
    def _ensure_organizer(tournament: Tournament, user: str, action: str):
        if user != tournament.created_by:
            raise UnauthorizedSubmitterError(f"Only the organizer can {action}")

    @staticmethod
    def _validate_penalties(home_penalty: Optional[int], away_penalty: Optional[int]):
        if home_penalty is None or away_penalty is None:
            raise InvalidScoreError("Both penalty scores are required")
        if home_penalty < 0 or away_penalty < 0:
            raise InvalidScoreError("Penalty scores cannot be negative")
        if home_penalty == away_penalty:
            raise InvalidScoreError("Penalty scores cannot be equal")

    @staticmethod
    def _mark_in_progress(tournament: Tournament):
        if tournament.status == TournamentStatus.STARTED:
            TournamentLifecycle.transition(tournament, TournamentStatus.IN_PROGRESS)

    @staticmethod
    def is_home_participant(home: Optional[Team], participant_id: str) -> bool:
        return home is not None and home.participant_id == participant_id

    async def _team_names(self, match: Match):
        teams = await self.teams.find_by_ids([match.home_team_id, match.away_team_id])
        home = teams.get(match.home_team_id)
        away = teams.get(match.away_team_id)
        return home, away

    # =========================================================================
    # Submit
    # =========================================================================

    async def submit_result(
        self,
        match_id: int,
        submitter: str,
        home_score: int,
        away_score: int,
        evidence_ref: Optional[str] = None,
        home_penalty: Optional[int] = None,
        away_penalty: Optional[int] = None,
    ) -> MatchResult:
        """
        Record a result reported by the home team.

        Raises:
            MatchNotFoundError: Unknown match
            UnauthorizedSubmitterError: Submitter is not the home participant
            ResultConflictError: A result already exists
            InvalidScoreError: Negative scores or invalid penalties
            InvalidMatchStateError: Bye, decided match or tournament not running
        """
        match = await self._get_match(match_id)

        async with self._locked(match.tournament_id) as tournament:
            TournamentLifecycle.ensure_mutable(tournament)
            if not tournament.status.is_ongoing:
                raise InvalidMatchStateError(f"Tournament {tournament.id} has not started")

            match = await self.matches.refresh(match, lock=True)
            if match.is_bye:
                raise InvalidMatchStateError(f"Match {match.id} is a bye")
            if home_score is None or away_score is None or home_score < 0 or away_score < 0:
                raise InvalidScoreError("Scores must be non-negative integers")

            home, away = await self._team_names(match)
            if not self.is_home_participant(home, submitter):
                raise UnauthorizedSubmitterError("Only the home team can submit the result")

            if await self.results.find_by_match(match.id) is not None:
                raise ResultConflictError(f"A result for match {match.id} was already submitted")
            if match.state != MatchState.CREATED:
                raise InvalidMatchStateError(
                    f"Match {match.id} is {match.state.value}; results can only be submitted for new matches"
                )

            with_penalties = home_penalty is not None or away_penalty is not None
            if with_penalties:
                if tournament.format != TournamentFormat.PLAYOFF:
                    raise InvalidScoreError("Penalties only apply to knockout matches")
                if home_score != away_score:
                    raise InvalidScoreError("Penalties can only be given for a drawn match")
                self._validate_penalties(home_penalty, away_penalty)

            result = MatchResult(
                match_id=match.id,
                home_score=home_score,
                away_score=away_score,
                home_penalty_score=home_penalty,
                away_penalty_score=away_penalty,
                submitted_by=submitter,
                evidence_ref=evidence_ref,
                is_approved=False,
            )
            await self.results.save(result)

            MatchLifecycle.transition(match, MatchState.PENDING_APPROVAL)
            match.reject_reason = None
            tournament.touch()
            await self.db.flush()

            self.notifications.enqueue(
                tournament.created_by,
                NotificationService.result_submitted(
                    tournament.name, home.name, away.name if away else "?", home_score, away_score
                ),
            )
            logger.info(f"Result {result.id} submitted for match {match.id} by {submitter}: {home_score}-{away_score}")

        return result

    # =========================================================================
    # Approve
    # =========================================================================

    async def approve_result(self, result_id: int, reviewer: str, comment: Optional[str] = None) -> MatchResult:
        """
        Approve a pending result and apply it to the match.

        Idempotent: an already approved result is returned unchanged.
        """
        result = await self._get_result(result_id)
        if result.is_approved:
            logger.warning(f"Result {result_id} already approved; ignoring duplicate approval")
            return result
        if result.match_id is None:
            raise ResultNotFoundError(str(result_id))

        match = await self._get_match(result.match_id)
        league_finished = False

        async with self._locked(match.tournament_id) as tournament:
            result = await self.results.find_by_id(result_id, lock=True)
            if result is None:
                raise ResultNotFoundError(str(result_id))
            if result.is_approved:
                logger.warning(f"Result {result_id} approved concurrently; ignoring duplicate approval")
                return result

            TournamentLifecycle.ensure_mutable(tournament)
            self._ensure_organizer(tournament, reviewer, "approve results")

            match = await self.matches.refresh(match, lock=True)
            if match.state != MatchState.PENDING_APPROVAL:
                raise InvalidMatchStateError(f"Match {match.id} is {match.state.value}, not awaiting approval")

            result.is_approved = True
            result.reviewed_by = reviewer
            result.reviewed_at = datetime.utcnow()
            result.review_comment = comment

            match.home_score = result.home_score
            match.away_score = result.away_score
            if result.has_penalties:
                match.home_penalty_score = result.home_penalty_score
                match.away_penalty_score = result.away_penalty_score
                match.decided_by_penalties = True

            home, away = await self._team_names(match)
            is_playoff = tournament.format == TournamentFormat.PLAYOFF

            if is_playoff and match.home_score == match.away_score and not match.decided_by_penalties:
                MatchLifecycle.transition(match, MatchState.PENDING_PENALTY)
                tournament.touch()
                await self.db.flush()
                self.notifications.enqueue(
                    result.submitted_by, NotificationService.penalties_required(home.name, away.name)
                )
                logger.info(f"Match {match.id} drawn {match.home_score}-{match.away_score}; awaiting penalties")
                return result

            MatchLifecycle.transition(match, MatchState.APPROVED)
            self._mark_in_progress(tournament)
            tournament.touch()
            await self.db.flush()

            self.notifications.enqueue(
                result.submitted_by,
                NotificationService.result_approved(home.name, away.name, match.home_score, match.away_score),
            )
            logger.info(f"Result {result.id} approved by {reviewer}; match {match.id} APPROVED")

            if is_playoff:
                await self.bracket.on_match_decided(tournament, match)
            else:
                league_finished = await CompletionService.check_league_completion(self.db, tournament)

        if league_finished:
            self._schedule_announcement(match.tournament_id)
        return result

    def _schedule_announcement(self, tournament_id: int):
        factory = self.session_factory or get_session_factory()
        announcer = NotificationService(self.notifications.adapter)
        schedule_after_commit(
            lambda: CompletionService.announce_league_completion(factory, tournament_id, announcer),
            name=f"league-completion-{tournament_id}",
        )

    # =========================================================================
    # Reject
    # =========================================================================

    async def reject_result(self, result_id: int, reviewer: str, comment: Optional[str] = None) -> Match:
        """
        Delete a pending result and reopen the match for resubmission.

        Raises:
            ResultNotFoundError: Unknown result
            ResultConflictError: The result is already approved
        """
        result = await self._get_result(result_id)
        if result.is_approved:
            raise ResultConflictError(f"Result {result_id} is already approved and cannot be rejected")
        if result.match_id is None:
            raise ResultNotFoundError(str(result_id))

        match = await self._get_match(result.match_id)

        async with self._locked(match.tournament_id) as tournament:
            result = await self.results.find_by_id(result_id, lock=True)
            if result is None:
                raise ResultNotFoundError(str(result_id))
            if result.is_approved:
                raise ResultConflictError(f"Result {result_id} is already approved and cannot be rejected")

            TournamentLifecycle.ensure_mutable(tournament)
            self._ensure_organizer(tournament, reviewer, "reject results")

            match = await self.matches.refresh(match, lock=True)
            if match.state != MatchState.PENDING_APPROVAL:
                raise InvalidMatchStateError(f"Match {match.id} is {match.state.value}, not awaiting approval")

            submitter = result.submitted_by

            # Clear the link before deleting the row
            result.match_id = None
            await self.db.flush()
            await self.results.delete(result)

            MatchLifecycle.transition(match, MatchState.REJECTED)
            match.clear_scores()
            match.reject_reason = comment
            MatchLifecycle.transition(match, MatchState.CREATED)
            tournament.touch()
            await self.db.flush()

            home, away = await self._team_names(match)
            self.notifications.enqueue(
                submitter, NotificationService.result_rejected(home.name, away.name, comment)
            )
            logger.info(f"Result {result_id} for match {match.id} rejected by {reviewer}: {comment}")

        return match

    # =========================================================================
    # Penalties
    # =========================================================================

    async def submit_penalty(self, match_id: int, user: str, home_penalty: int, away_penalty: int) -> Match:
        """
        Settle a drawn knockout match by penalty shootout.

        Raises:
            InvalidMatchStateError: Match is not awaiting penalties
            UnauthorizedSubmitterError: User is neither submitter nor organizer
            InvalidScoreError: Negative or equal penalty scores
        """
        match = await self._get_match(match_id)

        async with self._locked(match.tournament_id) as tournament:
            TournamentLifecycle.ensure_mutable(tournament)
            match = await self.matches.refresh(match, lock=True)
            if match.state != MatchState.PENDING_PENALTY:
                raise InvalidMatchStateError(f"Match {match.id} is {match.state.value}, not awaiting penalties")

            result = await self.results.find_by_match(match.id)
            if result is None:
                raise ResultNotFoundError(f"for match {match.id}")
            if user not in (result.submitted_by, tournament.created_by):
                raise UnauthorizedSubmitterError("Only the submitter or the organizer can enter penalties")
            self._validate_penalties(home_penalty, away_penalty)

            match.home_penalty_score = home_penalty
            match.away_penalty_score = away_penalty
            match.decided_by_penalties = True
            result.home_penalty_score = home_penalty
            result.away_penalty_score = away_penalty

            MatchLifecycle.transition(match, MatchState.APPROVED)
            self._mark_in_progress(tournament)
            tournament.touch()
            await self.db.flush()
            logger.info(f"Match {match.id} decided on penalties {home_penalty}-{away_penalty}")

            winner = determine_winner(match)
            home, away = await self._team_names(match)
            for team in (home, away):
                if team is not None:
                    self.notifications.enqueue(
                        team.participant_id,
                        NotificationService.penalties_recorded(
                            home.name, away.name, home_penalty, away_penalty, won=team.id == winner
                        ),
                    )

            await self.bracket.on_match_decided(tournament, match)

        return match

    # =========================================================================
    # Administrative decisions
    # =========================================================================

    async def disqualify_team(self, match_id: int, team_id: int, actor: str) -> Match:
        """Organizer awards the match 3-0 against team_id."""
        match = await self._get_match(match_id)
        league_finished = False

        async with self._locked(match.tournament_id) as tournament:
            TournamentLifecycle.ensure_mutable(tournament)
            self._ensure_organizer(tournament, actor, "disqualify teams")

            match = await self.matches.refresh(match, lock=True)
            if match.state == MatchState.APPROVED:
                raise MatchAlreadyDecidedError(match.id)

            pending = await self.results.find_by_match(match.id)
            if pending is not None:
                pending.match_id = None
                await self.db.flush()
                await self.results.delete(pending)

            self._mark_in_progress(tournament)
            await self.bracket.disqualify_team(tournament, match, team_id)

            teams = await self.teams.find_by_ids([team_id])
            if team_id in teams:
                self.notifications.enqueue(
                    teams[team_id].participant_id,
                    NotificationService.disqualified(teams[team_id].name),
                )

            if tournament.format == TournamentFormat.LEAGUE:
                league_finished = await CompletionService.check_league_completion(self.db, tournament)

        if league_finished:
            self._schedule_announcement(match.tournament_id)
        return match

    async def record_walkover(self, match_id: int, winner_team_id: int, actor: str) -> Match:
        match = await self._get_match(match_id)
        if winner_team_id not in (match.home_team_id, match.away_team_id):
            raise InvalidMatchStateError(f"Team {winner_team_id} does not play in match {match_id}")
        loser = match.away_team_id if winner_team_id == match.home_team_id else match.home_team_id
        return await self.disqualify_team(match_id, loser, actor)

    # =========================================================================
    # Queries
    # =========================================================================

    async def list_pending_results(self, tournament_id: int) -> List[MatchResult]:
        return await self.results.find_pending(tournament_id)

    async def list_approved_results(self, tournament_id: int) -> List[MatchResult]:
        return await self.results.find_approved(tournament_id)

    async def list_open_matches(self, participant_id: str) -> List[Tuple[Match, bool]]:
        """
        Undecided matches of the participant in running tournaments, each
        paired with whether the participant plays at home.
        """
        matches = await self.matches.find_open_for_participant(participant_id)
        homes = await self.teams.find_by_ids(sorted({m.home_team_id for m in matches}))
        return [
            (match, self.is_home_participant(homes.get(match.home_team_id), participant_id))
            for match in matches
        ]

    async def get_match(self, match_id: int) -> Match:
        return await self._get_match(match_id)

    async def get_result_for_match(self, match_id: int) -> Optional[MatchResult]:
        return await self.results.find_by_match(match_id)
