from typing import List, Optional

from sqlalchemy import or_, select
from sqlalchemy.orm import aliased

from matchday.orm.match import Match, MatchStage, MatchState
from matchday.orm.team import Team
from matchday.orm.tournament import Tournament, TournamentStatus
from matchday.repositories.base import Repository


class MatchRepository(Repository[Match]):
    model = Match

    async def find_by_tournament(self, tournament_id: int) -> List[Match]:
        result = await self.db.execute(
            select(Match)
            .where(Match.tournament_id == tournament_id)
            .order_by(Match.round, Match.bracket_position, Match.id)
        )
        return list(result.scalars().all())

    async def find_by_round(self, tournament_id: int, round_number: int) -> List[Match]:
        """Matches of one round, ordered by bracket position."""
        result = await self.db.execute(
            select(Match)
            .where(
                Match.tournament_id == tournament_id,
                Match.round == round_number,
                Match.is_third_place_match == False,  # noqa: E712
            )
            .order_by(Match.bracket_position, Match.id)
        )
        return list(result.scalars().all())

    async def find_by_stage(self, tournament_id: int, stage: MatchStage) -> List[Match]:
        result = await self.db.execute(
            select(Match)
            .where(Match.tournament_id == tournament_id, Match.stage == stage)
            .order_by(Match.bracket_position, Match.id)
        )
        return list(result.scalars().all())

    async def find_final_match(self, tournament_id: int) -> Optional[Match]:
        result = await self.db.execute(
            select(Match)
            .where(Match.tournament_id == tournament_id, Match.stage == MatchStage.FINAL)
            .order_by(Match.id)
        )
        return result.scalars().first()

    async def find_open_for_participant(self, participant_id: str) -> List[Match]:
        """
        Undecided, non-bye matches the participant plays in, across all
        running tournaments.
        """
        home = aliased(Team)
        away = aliased(Team)
        result = await self.db.execute(
            select(Match)
            .join(home, home.id == Match.home_team_id)
            .join(away, away.id == Match.away_team_id)
            .join(Tournament, Tournament.id == Match.tournament_id)
            .where(
                or_(home.participant_id == participant_id, away.participant_id == participant_id),
                Match.is_bye == False,  # noqa: E712
                Match.state != MatchState.APPROVED,
                Tournament.status.in_([TournamentStatus.STARTED, TournamentStatus.IN_PROGRESS]),
            )
            .order_by(Match.tournament_id, Match.round, Match.bracket_position, Match.id)
        )
        return list(result.scalars().all())

    async def refresh(self, match: Match, lock: bool = False) -> Match:
        """Re-read a match from the database, overwriting in-session state."""
        query = select(Match).where(Match.id == match.id).execution_options(populate_existing=True)
        if lock:
            query = query.with_for_update()
        result = await self.db.execute(query)
        return result.scalar_one()
