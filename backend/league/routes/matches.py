"""
Match result routes: status + score updates.
Finishing a match triggers progression (standings recompute, bracket propagation).
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field
from sqlmodel import Session

from league.database import get_session
from league.models.match import (
    MATCH_CANCELED,
    MATCH_FINISHED,
    MATCH_LIVE,
    MATCH_POSTPONED,
    MATCH_SCHEDULED,
    MATCH_STATUSES,
    Match,
)
from league.models.tournament import Tournament
from league.services.errors import InvalidInputError, RecordNotFoundError, UndecidedMatchError
from league.services.progression_service import advance_match, finalize_match

router = APIRouter()

# Allowed status transitions; finished may be re-finalized with a corrected score
_TRANSITIONS = {
    MATCH_SCHEDULED: {MATCH_SCHEDULED, MATCH_LIVE, MATCH_FINISHED, MATCH_POSTPONED, MATCH_CANCELED},
    MATCH_LIVE: {MATCH_LIVE, MATCH_FINISHED, MATCH_POSTPONED, MATCH_CANCELED},
    MATCH_POSTPONED: {MATCH_POSTPONED, MATCH_SCHEDULED, MATCH_LIVE, MATCH_FINISHED, MATCH_CANCELED},
    MATCH_FINISHED: {MATCH_FINISHED},
    MATCH_CANCELED: set(),
}


class MatchResultUpdate(BaseModel):
    status: Optional[str] = None
    team_a_score: Optional[int] = Field(default=None, ge=0)
    team_b_score: Optional[int] = Field(default=None, ge=0)
    winner_team_id: Optional[int] = None


class MatchState(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    tournament_id: int
    stage_id: int
    group_id: Optional[int] = None
    round_number: Optional[int] = None
    bracket_pos: Optional[int] = None
    team_a_id: Optional[int] = None
    team_b_id: Optional[int] = None
    team_a_score: Optional[int] = None
    team_b_score: Optional[int] = None
    status: str
    winner_team_id: Optional[int] = None
    source_match_a_id: Optional[int] = None
    source_a_outcome: Optional[str] = None
    source_match_b_id: Optional[int] = None
    source_b_outcome: Optional[str] = None
    completed_at: Optional[datetime] = None


class MatchUpdateResponse(BaseModel):
    match: MatchState
    progression: Optional[Dict[str, Any]] = None


class AdvanceResponse(BaseModel):
    advanced_count: int
    updates: List[Dict[str, Any]]
    conflicts: List[Dict[str, Any]]


def _get_tournament_match(session: Session, tournament_id: int, match_id: int) -> Match:
    tournament = session.get(Tournament, tournament_id)
    if not tournament:
        raise HTTPException(status_code=404, detail="Tournament not found")
    match = session.get(Match, match_id)
    if not match or match.tournament_id != tournament_id:
        raise HTTPException(status_code=404, detail="Match not found")
    return match


def _validate_status_transition(current: str, new: str) -> None:
    if new not in MATCH_STATUSES:
        raise HTTPException(status_code=422, detail=f"Invalid status: {new}")
    if new not in _TRANSITIONS.get(current, set()):
        raise HTTPException(status_code=422, detail=f"Cannot change status from {current} to {new}")


@router.patch("/tournaments/{tournament_id}/matches/{match_id}", response_model=MatchUpdateResponse)
def update_match(
    tournament_id: int,
    match_id: int,
    payload: MatchResultUpdate,
    session: Session = Depends(get_session),
) -> MatchUpdateResponse:
    """Update match status/score. Setting status to finished requires both scores and
    runs progression; the response lists standings warnings, slot updates and conflicts."""
    match = _get_tournament_match(session, tournament_id, match_id)
    current = match.status or MATCH_SCHEDULED
    new_status = payload.status or current
    _validate_status_transition(current, new_status)

    if new_status == MATCH_FINISHED:
        team_a_score = payload.team_a_score if payload.team_a_score is not None else match.team_a_score
        team_b_score = payload.team_b_score if payload.team_b_score is not None else match.team_b_score
        if team_a_score is None or team_b_score is None:
            raise HTTPException(status_code=422, detail="team_a_score and team_b_score required to finish a match")
        try:
            report = finalize_match(
                session,
                match_id,
                team_a_score,
                team_b_score,
                winner_team_id=payload.winner_team_id,
            )
        except InvalidInputError as exc:
            session.rollback()
            raise HTTPException(status_code=400, detail=str(exc))
        session.refresh(match)
        return MatchUpdateResponse(match=MatchState.model_validate(match), progression=report.to_dict())

    if payload.winner_team_id is not None:
        raise HTTPException(status_code=422, detail="winner_team_id only applies when finishing a match")
    if payload.team_a_score is not None:
        match.team_a_score = payload.team_a_score
    if payload.team_b_score is not None:
        match.team_b_score = payload.team_b_score
    match.status = new_status

    session.add(match)
    session.commit()
    session.refresh(match)
    return MatchUpdateResponse(match=MatchState.model_validate(match))


@router.post("/tournaments/{tournament_id}/matches/{match_id}/advance", response_model=AdvanceResponse)
def advance(
    tournament_id: int,
    match_id: int,
    session: Session = Depends(get_session),
) -> AdvanceResponse:
    """Manually re-run propagation for a finished knockout match (repair/testing). Idempotent."""
    match = _get_tournament_match(session, tournament_id, match_id)
    if match.status != MATCH_FINISHED:
        raise HTTPException(status_code=422, detail="Match must be finished to run advancement")

    try:
        result = advance_match(session, match_id)
    except UndecidedMatchError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    except InvalidInputError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except RecordNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))

    data = result.to_dict()
    return AdvanceResponse(advanced_count=len(result.updates), updates=data["updates"], conflicts=data["conflicts"])
