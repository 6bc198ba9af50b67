"""
Participant Routes

What the calling participant takes part in: tournaments they organize or
play in, and the matches still waiting on them.
"""
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from matchday.orm.match import MatchState
from matchday.routes.dependencies import get_participant_id
from matchday.routes.results import get_match_result_service
from matchday.routes.tournaments import get_tournament_service
from matchday.schemas.tournaments import MatchResponse, ParticipantMatchResponse, TournamentResponse
from matchday.services.match_result_service import MatchResultService
from matchday.services.tournament_service import TournamentService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/me", tags=["Participants"])


@router.get("/tournaments", response_model=List[TournamentResponse])
async def list_my_tournaments(
    role: Optional[str] = Query(None, pattern="^(organizer|player)$"),
    participant_id: str = Depends(get_participant_id),
    service: TournamentService = Depends(get_tournament_service),
):
    return await service.list_for_participant(participant_id, role)


@router.get("/matches", response_model=List[ParticipantMatchResponse])
async def list_my_matches(
    participant_id: str = Depends(get_participant_id),
    service: MatchResultService = Depends(get_match_result_service),
):
    matches = await service.list_open_matches(participant_id)
    return [
        ParticipantMatchResponse(
            **MatchResponse.model_validate(match).model_dump(),
            is_home=is_home,
            can_submit=is_home and match.state == MatchState.CREATED,
        )
        for match, is_home in matches
    ]
