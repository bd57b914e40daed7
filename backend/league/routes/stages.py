"""
Stage routes: cached standings, manual recompute, knockout reseed, bracket view.
"""
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict
from sqlmodel import Session, select

from league.database import get_session
from league.models.stage import Stage
from league.models.stage_standing import StageStanding
from league.services.errors import InvalidInputError
from league.services.progression_service import (
    load_bracket,
    recompute_stage_standings,
    resolve_all_dependencies,
    seed_next_knockout,
)

router = APIRouter()


class StandingRowResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    group_id: Optional[int] = None
    team_id: int
    played: int
    won: int
    drawn: int
    lost: int
    goals_for: int
    goals_against: int
    goal_diff: int
    points: int
    rank: int


class StandingsResponse(BaseModel):
    stage_id: int
    rows: List[StandingRowResponse]


class RecalculateResponse(BaseModel):
    stage_id: int
    tables: int
    warnings: List[Dict[str, Any]]


class ReseedResponse(BaseModel):
    stage_id: int
    seeded_stage_id: Optional[int] = None


class ResolveDependenciesResponse(BaseModel):
    """Response for bulk dependency resolution"""

    matches_processed: int
    teams_advanced: int
    undecided: int
    conflicts: List[Dict[str, Any]]
    unknown_before: int
    unknown_after: int


class BracketResponse(BaseModel):
    stage_id: int
    rounds: List[Dict[str, Any]]
    tree: List[Dict[str, Any]]


def _get_stage_or_404(session: Session, stage_id: int) -> Stage:
    stage = session.get(Stage, stage_id)
    if not stage:
        raise HTTPException(status_code=404, detail="Stage not found")
    return stage


@router.get("/stages/{stage_id}/standings", response_model=StandingsResponse)
def get_standings(stage_id: int, session: Session = Depends(get_session)) -> StandingsResponse:
    """Cached standings ordered by group (league table first) then rank."""
    _get_stage_or_404(session, stage_id)
    rows = session.exec(select(StageStanding).where(StageStanding.stage_id == stage_id)).all()
    rows = sorted(rows, key=lambda r: (r.group_id is not None, r.group_id or 0, r.rank))
    return StandingsResponse(stage_id=stage_id, rows=[StandingRowResponse.model_validate(r) for r in rows])


@router.post("/stages/{stage_id}/recalculate-standings", response_model=RecalculateResponse)
def recalculate_standings(stage_id: int, session: Session = Depends(get_session)) -> RecalculateResponse:
    """
    Manually recompute every table of a league/groups stage.

    Useful after bulk-imported results or when progression did not run.
    """
    _get_stage_or_404(session, stage_id)
    try:
        results = recompute_stage_standings(session, stage_id)
    except InvalidInputError as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    warnings = [w.to_dict() for r in results.values() for w in r.warnings]
    return RecalculateResponse(stage_id=stage_id, tables=len(results), warnings=warnings)


@router.post("/stages/{stage_id}/reseed", response_model=ReseedResponse)
def reseed(
    stage_id: int,
    force: bool = Query(default=True, description="Replace unplayed knockout matches"),
    session: Session = Depends(get_session),
) -> ReseedResponse:
    """Rebuild the knockout stage fed by this league/groups stage from its current table."""
    _get_stage_or_404(session, stage_id)
    try:
        seeded = seed_next_knockout(session, stage_id, reseed=force)
    except InvalidInputError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return ReseedResponse(stage_id=stage_id, seeded_stage_id=seeded)


@router.post("/stages/{stage_id}/resolve-dependencies", response_model=ResolveDependenciesResponse)
def resolve_dependencies(stage_id: int, session: Session = Depends(get_session)) -> ResolveDependenciesResponse:
    """
    Re-propagate every finished match of a knockout stage.

    Idempotent (safe to call multiple times), processes matches by id.
    """
    _get_stage_or_404(session, stage_id)
    try:
        result = resolve_all_dependencies(session, stage_id)
    except InvalidInputError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return ResolveDependenciesResponse(**result)


@router.get("/stages/{stage_id}/bracket", response_model=BracketResponse)
def get_bracket(stage_id: int, session: Session = Depends(get_session)) -> BracketResponse:
    _get_stage_or_404(session, stage_id)
    try:
        graph = load_bracket(session, stage_id)
    except InvalidInputError as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    rounds = [
        {
            "round_number": round_number,
            "matches": [
                {
                    "id": m.id,
                    "bracket_pos": m.bracket_pos,
                    "team_a_id": m.team_a_id,
                    "team_b_id": m.team_b_id,
                    "team_a_score": m.team_a_score,
                    "team_b_score": m.team_b_score,
                    "status": m.status,
                    "ready": graph.is_ready(m.id),
                }
                for m in matches
            ],
        }
        for round_number, matches in graph.rounds()
    ]
    return BracketResponse(stage_id=stage_id, rounds=rounds, tree=graph.tree())
