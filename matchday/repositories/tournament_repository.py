from typing import List, Optional

from sqlalchemy import select, delete

from matchday.orm.match import Match
from matchday.orm.match_result import MatchResult
from matchday.orm.team import Team
from matchday.orm.tournament import Tournament, TournamentStatus
from matchday.repositories.base import Repository


class TournamentRepository(Repository[Tournament]):
    model = Tournament

    async def lock(self, tournament_id: int) -> Optional[Tournament]:
        """
        SELECT ... FOR UPDATE on the tournament row.

        Serializes progression across processes on PostgreSQL; SQLite
        ignores the clause and relies on the in-process lock alone.
        """
        result = await self.db.execute(
            select(Tournament)
            .where(Tournament.id == tournament_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def find_all(self) -> List[Tournament]:
        result = await self.db.execute(select(Tournament).order_by(Tournament.id))
        return list(result.scalars().all())

    async def find_active(self) -> List[Tournament]:
        """Tournaments that have started and are not over."""
        result = await self.db.execute(
            select(Tournament).where(Tournament.is_active == True).order_by(Tournament.id)  # noqa: E712
        )
        return list(result.scalars().all())

    async def find_for_participant(self, participant_id: str) -> List[Tournament]:
        """Tournaments the participant has a team in."""
        result = await self.db.execute(
            select(Tournament)
            .join(Team, Team.tournament_id == Tournament.id)
            .where(Team.participant_id == participant_id)
            .order_by(Tournament.id)
        )
        return list(result.scalars().all())

    async def find_by_organizer(self, created_by: str) -> List[Tournament]:
        result = await self.db.execute(
            select(Tournament)
            .where(Tournament.created_by == created_by)
            .order_by(Tournament.created_at.desc())
        )
        return list(result.scalars().all())

    async def find_by_status(self, status: TournamentStatus) -> List[Tournament]:
        result = await self.db.execute(
            select(Tournament).where(Tournament.status == status).order_by(Tournament.id)
        )
        return list(result.scalars().all())

    async def delete(self, entity: Tournament):
        """Delete a tournament with its results, matches and teams."""
        match_ids = select(Match.id).where(Match.tournament_id == entity.id)
        await self.db.execute(delete(MatchResult).where(MatchResult.match_id.in_(match_ids)))
        await self.db.execute(delete(Match).where(Match.tournament_id == entity.id))
        await self.db.execute(delete(Team).where(Team.tournament_id == entity.id))
        await self.db.delete(entity)
        await self.db.flush()
