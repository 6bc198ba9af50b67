from typing import Dict, List, Optional

from sqlalchemy import select, func

from matchday.orm.team import Team
from matchday.repositories.base import Repository


class TeamRepository(Repository[Team]):
    model = Team

    async def find_by_participant(self, tournament_id: int, participant_id: str) -> Optional[Team]:
        result = await self.db.execute(
            select(Team).where(
                Team.tournament_id == tournament_id,
                Team.participant_id == participant_id,
            )
        )
        return result.scalar_one_or_none()

    async def find_by_name(self, tournament_id: int, name: str) -> Optional[Team]:
        """Case-insensitive name lookup within a tournament."""
        result = await self.db.execute(
            select(Team).where(
                Team.tournament_id == tournament_id,
                func.lower(Team.name) == name.strip().lower(),
            )
        )
        return result.scalars().first()

    async def count_by_tournament(self, tournament_id: int) -> int:
        result = await self.db.execute(
            select(func.count(Team.id)).where(Team.tournament_id == tournament_id)
        )
        return result.scalar() or 0

    async def map_by_id(self, tournament_id: int) -> Dict[int, Team]:
        return {team.id: team for team in await self.find_by_tournament(tournament_id)}

    async def find_by_ids(self, team_ids: List[int]) -> Dict[int, Team]:
        if not team_ids:
            return {}
        result = await self.db.execute(select(Team).where(Team.id.in_(team_ids)))
        return {team.id: team for team in result.scalars().all()}
