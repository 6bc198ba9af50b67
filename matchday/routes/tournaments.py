"""
Tournament Routes

Create tournaments, register teams, start, cancel and read schedules,
brackets and standings.
"""
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from matchday.database import get_db
from matchday.orm.match import MatchStage
from matchday.orm.tournament import TournamentStatus
from matchday.routes.dependencies import get_notification_service, get_participant_id
from matchday.schemas.tournaments import (
    BracketResponse, BracketRound, MatchResponse, ResultResponse, StandingResponse,
    StandingsResponse, StartResponse, TeamJoin, TeamResponse, TournamentCreate,
    TournamentResponse, TournamentUpdate,
)
from matchday.services.bracket_service import get_stage_display_name
from matchday.services.match_result_service import MatchResultService
from matchday.services.notification_service import NotificationService
from matchday.services.tournament_service import TournamentService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/tournaments", tags=["Tournaments"])


def get_tournament_service(
    db: AsyncSession = Depends(get_db),
    notifications: NotificationService = Depends(get_notification_service),
) -> TournamentService:
    return TournamentService(db, notifications)


@router.post("", response_model=TournamentResponse, status_code=status.HTTP_201_CREATED)
async def create_tournament(
    request: TournamentCreate,
    participant_id: str = Depends(get_participant_id),
    service: TournamentService = Depends(get_tournament_service),
):
    return await service.create_tournament(
        name=request.name,
        format=request.format,
        created_by=participant_id,
        description=request.description,
        number_of_rounds=request.number_of_rounds,
        max_participants=request.max_participants,
        auto_start=request.auto_start,
    )


@router.get("", response_model=List[TournamentResponse])
async def list_tournaments(
    active: bool = Query(False, description="Only tournaments that have started and are not over"),
    tournament_status: Optional[TournamentStatus] = Query(None, alias="status"),
    service: TournamentService = Depends(get_tournament_service),
):
    return await service.list_tournaments(active_only=active, status=tournament_status)


@router.get("/{tournament_id}", response_model=TournamentResponse)
async def get_tournament(tournament_id: int, service: TournamentService = Depends(get_tournament_service)):
    return await service.get_tournament(tournament_id)


@router.patch("/{tournament_id}", response_model=TournamentResponse)
async def update_tournament(
    tournament_id: int,
    request: TournamentUpdate,
    participant_id: str = Depends(get_participant_id),
    service: TournamentService = Depends(get_tournament_service),
):
    fields = request.model_dump(exclude_unset=True)
    return await service.update_tournament(tournament_id, participant_id, **fields)


@router.delete("/{tournament_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_tournament(
    tournament_id: int,
    participant_id: str = Depends(get_participant_id),
    service: TournamentService = Depends(get_tournament_service),
):
    await service.delete_tournament(tournament_id, participant_id)


@router.post("/{tournament_id}/registration", response_model=TournamentResponse)
async def open_registration(
    tournament_id: int,
    participant_id: str = Depends(get_participant_id),
    service: TournamentService = Depends(get_tournament_service),
):
    return await service.open_registration(tournament_id, participant_id)


@router.post("/{tournament_id}/teams", response_model=TeamResponse, status_code=status.HTTP_201_CREATED)
async def join_tournament(
    tournament_id: int,
    request: TeamJoin,
    participant_id: str = Depends(get_participant_id),
    service: TournamentService = Depends(get_tournament_service),
):
    return await service.join_tournament(tournament_id, participant_id, request.team_name)


@router.get("/{tournament_id}/teams", response_model=List[TeamResponse])
async def list_teams(tournament_id: int, service: TournamentService = Depends(get_tournament_service)):
    return await service.get_teams(tournament_id)


@router.post("/{tournament_id}/start", response_model=StartResponse)
async def start_tournament(
    tournament_id: int,
    participant_id: str = Depends(get_participant_id),
    service: TournamentService = Depends(get_tournament_service),
):
    matches = await service.start_tournament(tournament_id, participant_id)
    tournament = await service.get_tournament(tournament_id)
    byes = sum(1 for m in matches if m.is_bye)
    return StartResponse(
        tournament=TournamentResponse.model_validate(tournament),
        match_count=len(matches) - byes,
        bye_count=byes,
        matches=[MatchResponse.model_validate(m) for m in matches],
    )


@router.post("/{tournament_id}/cancel", response_model=TournamentResponse)
async def cancel_tournament(
    tournament_id: int,
    participant_id: str = Depends(get_participant_id),
    service: TournamentService = Depends(get_tournament_service),
):
    return await service.cancel_tournament(tournament_id, participant_id)


@router.get("/{tournament_id}/matches", response_model=List[MatchResponse])
async def list_matches(
    tournament_id: int,
    round: Optional[int] = Query(None, ge=1),
    service: TournamentService = Depends(get_tournament_service),
):
    return await service.get_matches(tournament_id, round)


@router.get("/{tournament_id}/bracket", response_model=BracketResponse)
async def get_bracket(tournament_id: int, service: TournamentService = Depends(get_tournament_service)):
    await service.get_tournament(tournament_id)
    tree = await service.bracket.get_bracket_tree(tournament_id)
    rounds = []
    for round_number, matches in tree.items():
        main = [m for m in matches if not m.is_third_place_match]
        third = [m for m in matches if m.is_third_place_match]
        for group in (main, third):
            if not group:
                continue
            stage: MatchStage = group[0].stage
            rounds.append(BracketRound(
                round=round_number,
                stage=stage,
                stage_name=get_stage_display_name(stage),
                matches=[MatchResponse.model_validate(m) for m in group],
            ))
    return BracketResponse(tournament_id=tournament_id, rounds=rounds)


@router.get("/{tournament_id}/standings", response_model=StandingsResponse)
async def get_standings(tournament_id: int, service: TournamentService = Depends(get_tournament_service)):
    tournament = await service.get_tournament(tournament_id)
    standings = await service.get_standings(tournament_id)
    return StandingsResponse(
        tournament_id=tournament_id,
        format=tournament.format,
        standings=[StandingResponse(**s.to_dict()) for s in standings],
    )


@router.get("/{tournament_id}/results/pending", response_model=List[ResultResponse])
async def list_pending_results(
    tournament_id: int,
    db: AsyncSession = Depends(get_db),
    service: TournamentService = Depends(get_tournament_service),
):
    await service.get_tournament(tournament_id)
    return await MatchResultService(db, service.notifications).list_pending_results(tournament_id)
