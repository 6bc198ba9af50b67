"""
Tournament Orchestrator

Creates tournaments, registers teams and, on start, picks the fixture
generator for the tournament format and stores what it produces.

Rules:
- Teams may join only while the tournament is open (CREATED/REGISTRATION)
  and before it starts
- One team per participant per tournament; team names are unique per
  tournament, ignoring case
- A full tournament rejects further joins; with auto_start it starts on
  the join that fills it
- Starting twice is a no-op
- Finished and cancelled tournaments cannot be changed
"""
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Callable, Dict, List, Optional, Sequence, Awaitable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from matchday.config.feature_flags import FeatureFlags
from matchday.orm.match import Match
from matchday.orm.team import Team
from matchday.orm.tournament import Tournament, TournamentFormat, TournamentStatus
from matchday.repositories import MatchRepository, TeamRepository, TournamentRepository
from matchday.services.bracket_service import BracketService
from matchday.services.notification_service import NotificationService
from matchday.services.round_robin_service import RoundRobinScheduler
from matchday.services.standings_service import TeamStanding, calculate_standings
from matchday.services.tournament_locks import (
    TournamentLockRegistry, locked_tournament, tournament_locks
)
from matchday.state_machines.tournament_lifecycle import (
    TournamentLifecycle, TournamentTransitionError
)

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 255
PARTICIPANT_ROLES = ("organizer", "player")


# =============================================================================
# Exceptions
# =============================================================================

class TournamentError(Exception):
    """Base exception for tournament operations."""
    def __init__(self, message: str, code: str = "TOURNAMENT_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


class TournamentNotFoundError(TournamentError):
    def __init__(self, tournament_id: int):
        super().__init__(f"Tournament {tournament_id} not found", "TOURNAMENT_NOT_FOUND")


class TournamentStateError(TournamentError):
    def __init__(self, message: str):
        super().__init__(message, "INVALID_TOURNAMENT_STATE")


class RegistrationError(TournamentError):
    def __init__(self, message: str, code: str = "REGISTRATION_ERROR"):
        super().__init__(message, code)


class UnauthorizedOrganizerError(TournamentError):
    def __init__(self, action: str):
        super().__init__(f"Only the organizer can {action}", "UNAUTHORIZED")


class InvalidTournamentError(TournamentError):
    def __init__(self, message: str):
        super().__init__(message, "INVALID_TOURNAMENT")


class TournamentService:

    def __init__(
        self,
        db: AsyncSession,
        notifications: NotificationService = None,
        locks: TournamentLockRegistry = None,
        bracket: BracketService = None,
    ):
        self.db = db
        self.notifications = notifications or NotificationService()
        self.locks = locks or tournament_locks
        self.bracket = bracket or BracketService(db, self.notifications)
        self.tournaments = TournamentRepository(db)
        self.teams = TeamRepository(db)
        self.matches = MatchRepository(db)

        self._generators: Dict[
            TournamentFormat, Callable[[Tournament, Sequence[Team]], Awaitable[List[Match]]]
        ] = {
            TournamentFormat.LEAGUE: self._generate_league,
            TournamentFormat.PLAYOFF: self.bracket.generate_bracket,
        }

    @asynccontextmanager
    async def _locked(self, tournament_id: int):
        async with locked_tournament(self.db, tournament_id, self.notifications, self.locks) as tournament:
            if tournament is None:
                raise TournamentNotFoundError(tournament_id)
            yield tournament

    async def get_tournament(self, tournament_id: int) -> Tournament:
        tournament = await self.tournaments.find_by_id(tournament_id)
        if tournament is None:
            raise TournamentNotFoundError(tournament_id)
        return tournament

    @staticmethod
    def is_owner(tournament: Tournament, user: str) -> bool:
        return tournament.created_by == user

    def _ensure_owner(self, tournament: Tournament, user: str, action: str):
        if not self.is_owner(tournament, user):
            raise UnauthorizedOrganizerError(action)

    @staticmethod
    def _transition(tournament: Tournament, status: TournamentStatus):
        try:
            TournamentLifecycle.transition(tournament, status)
        except TournamentTransitionError as e:
            raise TournamentStateError(str(e))

    # =========================================================================
    # Creation and registration
    # =========================================================================

    async def create_tournament(
        self,
        name: str,
        format: TournamentFormat,
        created_by: str,
        description: Optional[str] = None,
        number_of_rounds: int = 1,
        max_participants: Optional[int] = None,
        auto_start: bool = False,
    ) -> Tournament:
        if not name or not name.strip():
            raise InvalidTournamentError("Tournament name cannot be empty")
        if len(name) > MAX_NAME_LENGTH:
            raise InvalidTournamentError(f"Tournament name is longer than {MAX_NAME_LENGTH} characters")
        if number_of_rounds not in (1, 2):
            raise InvalidTournamentError("Number of rounds must be 1 (single) or 2 (double round robin)")
        if max_participants is not None and max_participants < 2:
            raise InvalidTournamentError("A tournament needs room for at least 2 teams")

        tournament = Tournament(
            name=name.strip(),
            description=description,
            format=format,
            status=TournamentStatus.CREATED,
            number_of_rounds=number_of_rounds,
            is_active=False,
            created_by=created_by,
            max_participants=max_participants,
            auto_start=auto_start,
        )
        await self.tournaments.save(tournament)
        await self.db.commit()

        logger.info(f"Tournament {tournament.id} '{tournament.name}' ({format.value}) created by {created_by}")
        return tournament

    async def open_registration(self, tournament_id: int, actor: str) -> Tournament:
        await self.get_tournament(tournament_id)
        async with self._locked(tournament_id) as tournament:
            self._ensure_owner(tournament, actor, "open registration")
            self._transition(tournament, TournamentStatus.REGISTRATION)
        return tournament

    async def join_tournament(self, tournament_id: int, participant_id: str, team_name: str) -> Team:
        """
        Register a team for participant_id.

        Raises:
            RegistrationError: Closed, duplicate participant or name, or full
        """
        await self.get_tournament(tournament_id)
        team_name = (team_name or "").strip()
        if not team_name:
            raise RegistrationError("Team name cannot be empty", "INVALID_TEAM_NAME")
        if len(team_name) > MAX_NAME_LENGTH:
            raise RegistrationError(f"Team name is longer than {MAX_NAME_LENGTH} characters", "INVALID_TEAM_NAME")

        should_start = False
        async with self._locked(tournament_id) as tournament:
            if tournament.is_started or not tournament.status.can_register:
                raise RegistrationError(f"Tournament {tournament_id} is not open for registration", "REGISTRATION_CLOSED")
            if await self.teams.find_by_participant(tournament_id, participant_id) is not None:
                raise RegistrationError(f"{participant_id} already has a team in this tournament", "ALREADY_JOINED")
            if await self.teams.find_by_name(tournament_id, team_name) is not None:
                raise RegistrationError(f"Team name '{team_name}' is already taken", "DUPLICATE_TEAM_NAME")

            count = await self.teams.count_by_tournament(tournament_id)
            if tournament.max_participants is not None and count >= tournament.max_participants:
                raise RegistrationError(f"Tournament {tournament_id} is full", "TOURNAMENT_FULL")

            team = Team(tournament_id=tournament_id, participant_id=participant_id, name=team_name)
            try:
                await self.teams.save(team)
            except IntegrityError:
                raise RegistrationError(f"{participant_id} already has a team in this tournament", "ALREADY_JOINED")
            tournament.touch()

            should_start = (
                FeatureFlags.FEATURE_AUTO_START
                and tournament.auto_start
                and tournament.max_participants is not None
                and count + 1 >= tournament.max_participants
            )
            logger.info(f"Team {team.id} '{team_name}' joined tournament {tournament_id} ({count + 1} teams)")

        if should_start:
            logger.info(f"Tournament {tournament_id} is full; starting automatically")
            await self.start_tournament(tournament_id, tournament.created_by)
        return team

    async def leave_tournament(self, tournament_id: int, participant_id: str):
        await self.get_tournament(tournament_id)
        async with self._locked(tournament_id) as tournament:
            if tournament.is_started:
                raise RegistrationError("Teams cannot leave a started tournament", "REGISTRATION_CLOSED")
            team = await self.teams.find_by_participant(tournament_id, participant_id)
            if team is None:
                raise RegistrationError(f"{participant_id} has no team in this tournament", "NOT_JOINED")
            await self.teams.delete(team)
            tournament.touch()

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def _generate_league(self, tournament: Tournament, teams: Sequence[Team]) -> List[Match]:
        matches = RoundRobinScheduler.generate_league_matches(tournament, teams, tournament.number_of_rounds or 1)
        return await self.matches.save_all(matches)

    async def start_tournament(self, tournament_id: int, actor: str) -> List[Match]:
        """
        Generate and store all initial matches.

        Returns:
            The generated matches, or the existing ones if already started
        Raises:
            TournamentStateError: Fewer than 2 teams, or not startable
        """
        await self.get_tournament(tournament_id)
        async with self._locked(tournament_id) as tournament:
            self._ensure_owner(tournament, actor, "start the tournament")
            if tournament.status.is_ended:
                raise TournamentStateError(f"Tournament {tournament_id} is {tournament.status.value}")

            if tournament.is_started:
                logger.warning(f"Tournament {tournament_id} already started; ignoring start request")
                return await self.matches.find_by_tournament(tournament_id)

            teams = await self.teams.find_by_tournament(tournament_id)
            if len(teams) < 2:
                raise TournamentStateError(f"Tournament {tournament_id} needs at least 2 teams to start, has {len(teams)}")

            generate = self._generators[tournament.format]
            matches = await generate(tournament, teams)

            self._transition(tournament, TournamentStatus.STARTED)
            tournament.start_date = datetime.utcnow()
            tournament.is_active = True
            await self.db.flush()

            real_count = sum(1 for m in matches if not m.is_bye)
            message = NotificationService.tournament_started(tournament.name, real_count)
            for team in teams:
                self.notifications.enqueue(team.participant_id, message)

            logger.info(
                f"Tournament {tournament_id} started: {real_count} matches, "
                f"{len(matches) - real_count} byes, {len(teams)} teams"
            )

        return matches

    async def cancel_tournament(self, tournament_id: int, actor: str) -> Tournament:
        await self.get_tournament(tournament_id)
        async with self._locked(tournament_id) as tournament:
            self._ensure_owner(tournament, actor, "cancel the tournament")
            self._transition(tournament, TournamentStatus.CANCELLED)

            message = NotificationService.tournament_cancelled(tournament.name)
            for team in await self.teams.find_by_tournament(tournament_id):
                self.notifications.enqueue(team.participant_id, message)
        return tournament

    async def update_tournament(self, tournament_id: int, actor: str, **fields) -> Tournament:
        """Change settings before the tournament starts."""
        allowed = {"name", "description", "number_of_rounds", "max_participants", "auto_start"}
        unknown = set(fields) - allowed
        if unknown:
            raise InvalidTournamentError(f"Cannot update fields: {', '.join(sorted(unknown))}")

        await self.get_tournament(tournament_id)
        async with self._locked(tournament_id) as tournament:
            self._ensure_owner(tournament, actor, "update the tournament")
            if tournament.is_started or tournament.status.is_ended:
                raise TournamentStateError("Settings cannot change after the tournament has started")
            if "number_of_rounds" in fields and fields["number_of_rounds"] not in (1, 2):
                raise InvalidTournamentError("Number of rounds must be 1 or 2")
            if fields.get("max_participants") is not None:
                count = await self.teams.count_by_tournament(tournament_id)
                if fields["max_participants"] < max(2, count):
                    raise InvalidTournamentError("max_participants is below the number of registered teams")
            if "name" in fields and not (fields["name"] or "").strip():
                raise InvalidTournamentError("Tournament name cannot be empty")

            for key, value in fields.items():
                setattr(tournament, key, value.strip() if key == "name" else value)
            tournament.touch()
        return tournament

    async def delete_tournament(self, tournament_id: int, actor: str):
        tournament = await self.get_tournament(tournament_id)
        self._ensure_owner(tournament, actor, "delete the tournament")
        async with self.locks.hold(tournament_id):
            await self.tournaments.delete(tournament)
            await self.db.commit()
        logger.info(f"Tournament {tournament_id} deleted by {actor}")

    # =========================================================================
    # Queries
    # =========================================================================

    async def list_tournaments(
        self, active_only: bool = False, status: Optional[TournamentStatus] = None
    ) -> List[Tournament]:
        if status is not None:
            tournaments = await self.tournaments.find_by_status(status)
            return [t for t in tournaments if t.is_active] if active_only else tournaments
        if active_only:
            return await self.tournaments.find_active()
        return await self.tournaments.find_all()

    async def list_for_participant(self, participant_id: str, role: Optional[str] = None) -> List[Tournament]:
        """
        Tournaments the participant organizes (role="organizer"), plays in
        (role="player"), or both when role is None. Ordered by id.
        """
        if role is not None and role not in PARTICIPANT_ROLES:
            raise InvalidTournamentError(f"Unknown role '{role}', expected one of {PARTICIPANT_ROLES}")

        organized = [] if role == "player" else await self.tournaments.find_by_organizer(participant_id)
        joined = [] if role == "organizer" else await self.tournaments.find_for_participant(participant_id)
        by_id = {t.id: t for t in organized + joined}
        return [by_id[tournament_id] for tournament_id in sorted(by_id)]

    async def get_teams(self, tournament_id: int) -> List[Team]:
        await self.get_tournament(tournament_id)
        return await self.teams.find_by_tournament(tournament_id)

    async def get_matches(self, tournament_id: int, round_number: Optional[int] = None) -> List[Match]:
        await self.get_tournament(tournament_id)
        if round_number is not None:
            return await self.matches.find_by_round(tournament_id, round_number)
        return await self.matches.find_by_tournament(tournament_id)

    async def get_standings(self, tournament_id: int) -> List[TeamStanding]:
        """League table, or bracket placements for a playoff."""
        tournament = await self.get_tournament(tournament_id)
        if tournament.format == TournamentFormat.PLAYOFF:
            return await self.bracket.calculate_bracket_placements(tournament)
        teams = await self.teams.find_by_tournament(tournament_id)
        matches = await self.matches.find_by_tournament(tournament_id)
        return calculate_standings(teams, matches)
