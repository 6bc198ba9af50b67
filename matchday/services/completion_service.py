"""
League Completion

Rules:
- A league is finished when every real (non-bye) match has an approved score
- The FINISHED status is written inside the approving transaction
- Final standings are announced to every team after commit, from a fresh
  session, so the announcement sees whatever the tournament looks like by then
- One failed delivery does not stop the others
"""
import asyncio
import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from matchday.config.feature_flags import FeatureFlags, Settings
from matchday.orm.tournament import Tournament, TournamentFormat, TournamentStatus
from matchday.repositories import MatchRepository, TeamRepository, TournamentRepository
from matchday.services.notification_service import NotificationService
from matchday.services.standings_service import all_real_matches_completed, calculate_standings
from matchday.state_machines.tournament_lifecycle import TournamentLifecycle

logger = logging.getLogger(__name__)


class CompletionService:

    @staticmethod
    async def check_league_completion(db: AsyncSession, tournament: Tournament) -> bool:
        """Mark the league FINISHED if nothing is left to play. Caller commits."""
        if tournament.format != TournamentFormat.LEAGUE:
            return False
        if tournament.status == TournamentStatus.FINISHED:
            return True
        if not tournament.status.is_ongoing:
            return False

        matches = await MatchRepository(db).find_by_tournament(tournament.id)
        if not all_real_matches_completed(matches):
            return False

        TournamentLifecycle.transition(tournament, TournamentStatus.FINISHED)
        await db.flush()
        logger.info(f"League {tournament.id} finished: all {sum(1 for m in matches if m.is_real)} matches played")
        return True

    @staticmethod
    async def announce_league_completion(
        session_factory: async_sessionmaker,
        tournament_id: int,
        notifications: NotificationService,
        delay: float = None,
    ) -> int:
        """
        Send each team its final position. Runs after commit.

        Returns:
            Number of messages delivered
        """
        if not FeatureFlags.FEATURE_COMPLETION_ANNOUNCEMENTS:
            return 0

        delay = Settings.COMPLETION_CHECK_DELAY_SECONDS if delay is None else delay
        if delay > 0:
            await asyncio.sleep(delay)

        async with session_factory() as db:
            tournament = await TournamentRepository(db).find_by_id(tournament_id)
            if tournament is None:
                logger.warning(f"Completion announcement: tournament {tournament_id} no longer exists")
                return 0
            if tournament.format != TournamentFormat.LEAGUE or tournament.status == TournamentStatus.CANCELLED:
                return 0

            teams = await TeamRepository(db).find_by_tournament(tournament_id)
            matches = await MatchRepository(db).find_by_tournament(tournament_id)
            if not all_real_matches_completed(matches):
                logger.info(f"Completion announcement: tournament {tournament_id} still has matches to play")
                return 0

            standings = calculate_standings(teams, matches)

        delivered = 0
        for standing in standings:
            message = NotificationService.tournament_finished(
                tournament.name, standing.team.name, standing.position
            )
            if await notifications.notify(standing.team.participant_id, message):
                delivered += 1
            else:
                logger.warning(
                    f"Completion announcement to team {standing.team.id} in tournament {tournament_id} failed"
                )

        logger.info(f"Tournament {tournament_id}: announced final standings to {delivered}/{len(standings)} teams")
        return delivered
