"""
Match Result Routes

Submit, approve and reject results, settle knockout draws on penalties
and record disqualifications.
"""
import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from matchday.database import get_db, get_session_factory
from matchday.routes.dependencies import get_notification_service, get_participant_id
from matchday.schemas.tournaments import (
    DisqualifyRequest, MatchResponse, PenaltySubmit, ResultResponse, ResultReview, ResultSubmit,
)
from matchday.services.match_result_service import MatchResultService, ResultNotFoundError
from matchday.services.notification_service import NotificationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Results"])


def get_match_result_service(
    db: AsyncSession = Depends(get_db),
    notifications: NotificationService = Depends(get_notification_service),
    session_factory: async_sessionmaker = Depends(get_session_factory),
) -> MatchResultService:
    return MatchResultService(db, notifications, session_factory=session_factory)


@router.get("/matches/{match_id}", response_model=MatchResponse)
async def get_match(match_id: int, service: MatchResultService = Depends(get_match_result_service)):
    return await service.get_match(match_id)


@router.get("/matches/{match_id}/result", response_model=ResultResponse)
async def get_match_result(match_id: int, service: MatchResultService = Depends(get_match_result_service)):
    result = await service.get_result_for_match(match_id)
    if result is None:
        raise ResultNotFoundError(f"for match {match_id}")
    return result


@router.post("/matches/{match_id}/result", response_model=ResultResponse, status_code=201)
async def submit_result(
    match_id: int,
    request: ResultSubmit,
    participant_id: str = Depends(get_participant_id),
    service: MatchResultService = Depends(get_match_result_service),
):
    return await service.submit_result(
        match_id,
        participant_id,
        request.home_score,
        request.away_score,
        evidence_ref=request.evidence_ref,
        home_penalty=request.home_penalty,
        away_penalty=request.away_penalty,
    )


@router.post("/results/{result_id}/approve", response_model=ResultResponse)
async def approve_result(
    result_id: int,
    request: ResultReview = None,
    participant_id: str = Depends(get_participant_id),
    service: MatchResultService = Depends(get_match_result_service),
):
    comment = request.comment if request else None
    return await service.approve_result(result_id, participant_id, comment)


@router.post("/results/{result_id}/reject", response_model=MatchResponse)
async def reject_result(
    result_id: int,
    request: ResultReview,
    participant_id: str = Depends(get_participant_id),
    service: MatchResultService = Depends(get_match_result_service),
):
    return await service.reject_result(result_id, participant_id, request.comment)


@router.post("/matches/{match_id}/penalties", response_model=MatchResponse)
async def submit_penalties(
    match_id: int,
    request: PenaltySubmit,
    participant_id: str = Depends(get_participant_id),
    service: MatchResultService = Depends(get_match_result_service),
):
    return await service.submit_penalty(match_id, participant_id, request.home_penalty, request.away_penalty)


@router.post("/matches/{match_id}/disqualify", response_model=MatchResponse)
async def disqualify_team(
    match_id: int,
    request: DisqualifyRequest,
    participant_id: str = Depends(get_participant_id),
    service: MatchResultService = Depends(get_match_result_service),
):
    return await service.disqualify_team(match_id, request.team_id, participant_id)
