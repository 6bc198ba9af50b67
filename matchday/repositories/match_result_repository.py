from typing import List, Optional

from sqlalchemy import select

from matchday.orm.match import Match
from matchday.orm.match_result import MatchResult
from matchday.repositories.base import Repository


class MatchResultRepository(Repository[MatchResult]):
    model = MatchResult

    async def find_by_match(self, match_id: int) -> Optional[MatchResult]:
        result = await self.db.execute(
            select(MatchResult).where(MatchResult.match_id == match_id)
        )
        return result.scalar_one_or_none()

    async def find_by_tournament(self, tournament_id: int) -> List[MatchResult]:
        result = await self.db.execute(
            select(MatchResult)
            .join(Match, Match.id == MatchResult.match_id)
            .where(Match.tournament_id == tournament_id)
            .order_by(MatchResult.created_at, MatchResult.id)
        )
        return list(result.scalars().all())

    async def find_pending(self, tournament_id: int) -> List[MatchResult]:
        return [r for r in await self.find_by_tournament(tournament_id) if not r.is_approved]

    async def find_approved(self, tournament_id: int) -> List[MatchResult]:
        return [r for r in await self.find_by_tournament(tournament_id) if r.is_approved]
