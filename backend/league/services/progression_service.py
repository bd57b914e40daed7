"""
Progression: everything that follows a match result.

When a match is finalized:
1. league/groups stage -> recompute standings for the match's (stage, group) scope
2. knockout stage -> propagate winner/loser into the immediate dependents
3. table stage fully played -> seed the knockout stage configured to draw from it
4. every match finished or canceled -> tournament completed

This module loads snapshots, calls the pure engines and persists their
results. Standings rows are replaced per scope inside a single commit.
Slot writes are conditional ("write only if still null") so concurrent
finalizations of sibling matches cannot overwrite each other.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import or_, update
from sqlmodel import Session, select

from league.models import Match, MatchDiscipline, Stage, StageGroup, StageStanding, Tournament, TournamentTeam
from league.models.match import MATCH_CANCELED, MATCH_FINISHED, MATCH_SCHEDULED, OUTCOME_WINNER
from league.models.stage import STAGE_GROUPS, STAGE_KNOCKOUT, STAGE_LEAGUE
from league.services.bracket_builder import SEMIS_A1_B2, PlannedMatch, plan_knockout, plan_knockout_from_groups
from league.services.bracket_progressor import (
    CONFLICT_SAME_TEAM,
    SLOT_A,
    BracketGraph,
    BracketMatch,
    PropagationResult,
    SlotConflict,
    decide_outcome,
    propagate_match_result,
    validate_link,
)
from league.services.errors import (
    EmptyParticipantsError,
    IntegrityWarning,
    InvalidInputError,
    RecordNotFoundError,
    UndecidedMatchError,
)
from league.services.standings_engine import (
    CardCounts,
    PointsRule,
    StandingsResult,
    StandingsScope,
    compute_standings,
    parse_tiebreakers,
)
from league.utils.scope_locks import scope_lock

logger = logging.getLogger(__name__)

DEFAULT_ADVANCERS_PER_GROUP = 2
DEFAULT_LEAGUE_ADVANCERS = 8


@dataclass
class ProgressionReport:
    """What a single finalization changed, for the response and for admin review."""

    match_id: int
    standings: List[Dict[str, Any]] = field(default_factory=list)
    warnings: List[IntegrityWarning] = field(default_factory=list)
    propagation: PropagationResult = field(default_factory=PropagationResult)
    seeded_stage_id: Optional[int] = None
    tournament_completed: bool = False

    def to_dict(self):
        return {
            "match_id": self.match_id,
            "standings": self.standings,
            "warnings": [w.to_dict() for w in self.warnings],
            "updates": [u.to_dict() for u in self.propagation.updates],
            "conflicts": [c.to_dict() for c in self.propagation.conflicts],
            "seeded_stage_id": self.seeded_stage_id,
            "tournament_completed": self.tournament_completed,
        }


# ============================================================================
# Loading helpers
# ============================================================================


def _get_match(session: Session, match_id: int) -> Match:
    match = session.get(Match, match_id)
    if not match:
        raise RecordNotFoundError(f"Match {match_id} not found")
    return match


def _get_stage(session: Session, stage_id: int) -> Stage:
    stage = session.get(Stage, stage_id)
    if not stage:
        raise RecordNotFoundError(f"Stage {stage_id} not found")
    return stage


def list_participants(session: Session, stage: Stage) -> Dict[Optional[int], List[int]]:
    """Participant team ids per scope: {None: [...]} for a league, {group_id: [...]} for groups.

    League participants fall back to tournament-level rows (no stage) when the
    stage itself has none.
    """
    rows = session.exec(
        select(TournamentTeam).where(TournamentTeam.stage_id == stage.id).order_by(TournamentTeam.id)
    ).all()

    if stage.kind == STAGE_LEAGUE:
        if not rows:
            rows = session.exec(
                select(TournamentTeam)
                .where(
                    TournamentTeam.tournament_id == stage.tournament_id,
                    TournamentTeam.stage_id.is_(None),
                )
                .order_by(TournamentTeam.id)
            ).all()
        return {None: [r.team_id for r in rows]}

    by_group: Dict[Optional[int], List[int]] = {}
    for r in rows:
        if r.group_id is None:
            continue
        by_group.setdefault(r.group_id, []).append(r.team_id)
    return by_group


def _card_counts(session: Session, match_ids: List[int]) -> Dict[int, CardCounts]:
    if not match_ids:
        return {}
    rows = session.exec(select(MatchDiscipline).where(MatchDiscipline.match_id.in_(match_ids))).all()
    totals: Dict[int, List[int]] = defaultdict(lambda: [0, 0, 0])
    for r in rows:
        t = totals[r.team_id]
        t[0] += r.yellow_cards or 0
        t[1] += r.red_cards or 0
        t[2] += r.blue_cards or 0
    return {team_id: CardCounts(yellow=y, red=rd, blue=b) for team_id, (y, rd, b) in totals.items()}


def _scope_filter(stage: Stage, group_id: Optional[int]):
    if stage.kind == STAGE_LEAGUE or group_id is None:
        return Match.group_id.is_(None)
    return Match.group_id == group_id


# ============================================================================
# Standings
# ============================================================================


def _replace_standings(session: Session, stage_id: int, group_id: Optional[int], result: StandingsResult) -> None:
    """Swap the scope's cached rows for the new ones (caller commits once)."""
    group_clause = StageStanding.group_id.is_(None) if group_id is None else StageStanding.group_id == group_id
    existing = session.exec(
        select(StageStanding).where(StageStanding.stage_id == stage_id, group_clause)
    ).all()
    for row in existing:
        session.delete(row)
    session.flush()

    now = datetime.utcnow()
    for row in result.rows:
        session.add(
            StageStanding(
                stage_id=stage_id,
                group_id=group_id,
                team_id=row.team_id,
                played=row.played,
                won=row.wins,
                drawn=row.draws,
                lost=row.losses,
                goals_for=row.goals_for,
                goals_against=row.goals_against,
                goal_diff=row.goal_diff,
                points=row.points,
                rank=row.rank,
                updated_at=now,
            )
        )


def _compute_scope(
    session: Session, stage: Stage, group_id: Optional[int], participants: List[int]
) -> StandingsResult:
    config = stage.config or {}
    matches = session.exec(
        select(Match)
        .where(Match.stage_id == stage.id, _scope_filter(stage, group_id), Match.status == MATCH_FINISHED)
        .order_by(Match.id)
    ).all()
    return compute_standings(
        StandingsScope(stage_id=stage.id, group_id=group_id),
        matches,
        participants,
        tie_breakers=config.get("tiebreakers"),
        card_counts=_card_counts(session, [m.id for m in matches]),
        points_rule=PointsRule.from_config(config),
    )


def recompute_scope_standings(session: Session, stage: Stage, group_id: Optional[int]) -> StandingsResult:
    """Full recompute of one (stage, group) table, committed atomically."""
    if not stage.is_table_stage:
        raise InvalidInputError(f"Stage {stage.id} is a {stage.kind} stage and has no table")
    if stage.kind == STAGE_LEAGUE:
        group_id = None

    participants = list_participants(session, stage).get(group_id, [])
    with scope_lock(stage.id, group_id):
        result = _compute_scope(session, stage, group_id, participants)
        _replace_standings(session, stage.id, group_id, result)
        session.commit()

    logger.info(
        "Recomputed standings for stage %s group %s: %d rows, %d warning(s)",
        stage.id,
        group_id,
        len(result.rows),
        len(result.warnings),
    )
    return result


def recompute_stage_standings(session: Session, stage_id: int) -> Dict[Optional[int], StandingsResult]:
    """Recompute every table of a league/groups stage; drops rows of scopes with no participants left."""
    stage = _get_stage(session, stage_id)
    if not stage.is_table_stage:
        raise InvalidInputError(f"Stage {stage.id} is a {stage.kind} stage and has no table")

    participants = list_participants(session, stage)
    if not any(participants.values()):
        raise InvalidInputError(f"Stage {stage.id} has no participating teams")

    results: Dict[Optional[int], StandingsResult] = {}
    for group_id in sorted(participants, key=lambda g: (g is not None, g or 0)):
        if not participants[group_id]:
            continue
        with scope_lock(stage.id, group_id):
            result = _compute_scope(session, stage, group_id, participants[group_id])
            _replace_standings(session, stage.id, group_id, result)
        results[group_id] = result

    stale = session.exec(select(StageStanding).where(StageStanding.stage_id == stage.id)).all()
    for row in stale:
        if row.group_id not in results:
            session.delete(row)
    session.commit()

    logger.info(
        "Recomputed standings for stage %s: %d table(s), %d warning(s)",
        stage.id,
        len(results),
        sum(len(r.warnings) for r in results.values()),
    )
    return results


# ============================================================================
# Knockout propagation
# ============================================================================


def compute_propagation(session: Session, match: Match) -> PropagationResult:
    """Load the finished match and everything linking to it, and run the progressor.

    Dependents are loaded regardless of tournament so a cross-tournament link
    is rejected instead of silently ignored.
    """
    return propagate_match_result(BracketMatch.from_model(match), _dependents(session, match.id))


def _dependents(session: Session, match_id: int) -> List[BracketMatch]:
    rows = session.exec(
        select(Match)
        .where(or_(Match.source_match_a_id == match_id, Match.source_match_b_id == match_id))
        .order_by(Match.id)
    ).all()
    return [BracketMatch.from_model(d) for d in rows]


def apply_propagation(session: Session, result: PropagationResult) -> PropagationResult:
    """Apply slot updates as conditional writes; a lost race turns into a conflict."""
    applied = PropagationResult(conflicts=list(result.conflicts))
    for upd in result.updates:
        column_name = "team_a_id" if upd.slot == SLOT_A else "team_b_id"
        column = getattr(Match, column_name)
        opponent = Match.team_b_id if upd.slot == SLOT_A else Match.team_a_id
        outcome = session.execute(
            update(Match)
            .where(
                Match.id == upd.match_id,
                column.is_(None),
                or_(opponent.is_(None), opponent != upd.team_id),
            )
            .values({column_name: upd.team_id})
        )
        if outcome.rowcount == 1:
            applied.updates.append(upd)
            continue

        current, current_opponent = session.exec(
            select(column, opponent).where(Match.id == upd.match_id)
        ).one()
        if current == upd.team_id:
            continue
        if current is None:
            conflict = SlotConflict(
                match_id=upd.match_id,
                slot=upd.slot,
                existing=current_opponent,
                attempted=upd.team_id,
                reason=CONFLICT_SAME_TEAM,
            )
        else:
            conflict = SlotConflict(match_id=upd.match_id, slot=upd.slot, existing=current, attempted=upd.team_id)
        logger.warning(
            "Slot %s of match %s not written with team %s: slot holds %s, other slot holds %s",
            upd.slot,
            upd.match_id,
            upd.team_id,
            current,
            current_opponent,
        )
        applied.conflicts.append(conflict)

    session.commit()
    if applied.updates:
        logger.info("Advanced %d team slot(s)", len(applied.updates))
    return applied


def advance_match(session: Session, match_id: int) -> PropagationResult:
    """Run propagation for one finished match (repair/testing). Raises UndecidedMatchError on a draw."""
    match = _get_match(session, match_id)
    return apply_propagation(session, compute_propagation(session, match))


def resolve_all_dependencies(session: Session, stage_id: int) -> Dict[str, Any]:
    """
    Re-propagate every finished match of a knockout stage, in match id order.

    Returns:
        Dict with:
        - matches_processed: finished matches visited
        - teams_advanced: slots written
        - undecided: finished matches without a decisive winner
        - conflicts: slot conflicts found
        - unknown_before / unknown_after: matches with an empty team slot

    Idempotent: a second call advances nothing.
    """
    stage = _get_stage(session, stage_id)
    if stage.kind != STAGE_KNOCKOUT:
        raise InvalidInputError(f"Stage {stage.id} is not a knockout stage")

    def count_unknown() -> int:
        rows = session.exec(select(Match).where(Match.stage_id == stage_id)).all()
        return sum(1 for m in rows if m.team_a_id is None or m.team_b_id is None)

    unknown_before = count_unknown()
    finished = session.exec(
        select(Match).where(Match.stage_id == stage_id, Match.status == MATCH_FINISHED).order_by(Match.id)
    ).all()

    teams_advanced = 0
    undecided = 0
    conflicts: List[SlotConflict] = []
    for match in finished:
        try:
            result = apply_propagation(session, compute_propagation(session, match))
        except UndecidedMatchError as exc:
            logger.warning("Skipping propagation: %s", exc)
            undecided += 1
            continue
        teams_advanced += len(result.updates)
        conflicts.extend(result.conflicts)

    session.expire_all()
    return {
        "matches_processed": len(finished),
        "teams_advanced": teams_advanced,
        "undecided": undecided,
        "conflicts": [c.to_dict() for c in conflicts],
        "unknown_before": unknown_before,
        "unknown_after": count_unknown(),
    }


def load_bracket(session: Session, stage_id: int) -> BracketGraph:
    stage = _get_stage(session, stage_id)
    if stage.kind != STAGE_KNOCKOUT:
        raise InvalidInputError(f"Stage {stage.id} is not a knockout stage")
    matches = session.exec(select(Match).where(Match.stage_id == stage_id).order_by(Match.id)).all()
    graph = BracketGraph(BracketMatch.from_model(m) for m in matches)
    graph.validate()
    return graph


# ============================================================================
# Knockout seeding from a finished table stage
# ============================================================================


def _next_knockout_stage(session: Session, source: Stage) -> Optional[Stage]:
    later = session.exec(
        select(Stage)
        .where(Stage.tournament_id == source.tournament_id, Stage.ordering > source.ordering)
        .order_by(Stage.ordering, Stage.id)
    ).all()
    for stage in later:
        if stage.kind == STAGE_KNOCKOUT and (stage.config or {}).get("from_stage_id") == source.id:
            return stage
    return None


def _ranked_team_ids(session: Session, stage: Stage) -> List[List[int]]:
    """Current table order per group (group ordering), or one list for a league."""
    rows = session.exec(
        select(StageStanding).where(StageStanding.stage_id == stage.id).order_by(StageStanding.rank)
    ).all()
    if stage.kind == STAGE_LEAGUE:
        return [[r.team_id for r in rows if r.group_id is None]]

    groups = session.exec(
        select(StageGroup).where(StageGroup.stage_id == stage.id).order_by(StageGroup.ordering, StageGroup.id)
    ).all()
    return [[r.team_id for r in rows if r.group_id == g.id] for g in groups]


def _insert_plan(session: Session, target: Stage, plan: List[PlannedMatch]) -> List[Match]:
    """Insert planned matches round by round, turning (round, pos) pointers into match ids."""
    ids: Dict[tuple, int] = {}
    created: List[Match] = []
    for p in sorted(plan, key=lambda x: (x.round_number, x.bracket_pos)):
        match = Match(
            tournament_id=target.tournament_id,
            stage_id=target.id,
            round_number=p.round_number,
            bracket_pos=p.bracket_pos,
            team_a_id=p.team_a_id,
            team_b_id=p.team_b_id,
            status=MATCH_SCHEDULED,
            source_match_a_id=ids[p.source_a] if p.source_a else None,
            source_a_outcome=OUTCOME_WINNER if p.source_a else None,
            source_match_b_id=ids[p.source_b] if p.source_b else None,
            source_b_outcome=OUTCOME_WINNER if p.source_b else None,
        )
        session.add(match)
        session.flush()
        ids[(p.round_number, p.bracket_pos)] = match.id
        created.append(match)
    return created


def _clear_stage_matches(session: Session, stage_id: int) -> None:
    matches = session.exec(select(Match).where(Match.stage_id == stage_id)).all()
    # drop links first so rows can go in any order
    for m in matches:
        m.source_match_a_id = None
        m.source_match_b_id = None
        session.add(m)
    session.flush()
    for m in matches:
        session.delete(m)
    session.flush()


def seed_next_knockout(session: Session, source_stage_id: int, reseed: bool = False) -> Optional[int]:
    """
    Build the knockout stage whose config names this stage as `from_stage_id`.

    Entrants come from the current standings:
    - groups: top `advancers_per_group` of each group, `semis_cross` for the 2x2 case
    - league: top `advancers_total` (or `standalone_bracket_size`, default 8)

    Returns the knockout stage id when matches were created, else None.
    A knockout that already has matches is left alone unless `reseed` is set;
    a knockout with a finished match is never reseeded.
    """
    source = _get_stage(session, source_stage_id)
    if not source.is_table_stage:
        raise InvalidInputError(f"Stage {source.id} is a {source.kind} stage and cannot seed a knockout")

    target = _next_knockout_stage(session, source)
    if target is None:
        return None

    existing = session.exec(select(Match).where(Match.stage_id == target.id)).all()
    if existing:
        if not reseed:
            return None
        if any(m.status == MATCH_FINISHED for m in existing):
            raise InvalidInputError(f"Knockout stage {target.id} has finished matches and cannot be reseeded")
        _clear_stage_matches(session, target.id)

    recompute_stage_standings(session, source.id)

    config = target.config or {}
    ranked = _ranked_team_ids(session, source)
    if source.kind == STAGE_GROUPS:
        plan = plan_knockout_from_groups(
            ranked,
            advancers_per_group=int(config.get("advancers_per_group") or DEFAULT_ADVANCERS_PER_GROUP),
            semis_cross=config.get("semis_cross") or SEMIS_A1_B2,
        )
    else:
        total = max(
            2,
            int(config.get("advancers_total") or config.get("standalone_bracket_size") or DEFAULT_LEAGUE_ADVANCERS),
        )
        plan = plan_knockout(ranked[0][:total])

    if not plan:
        session.commit()
        logger.info("Stage %s has too few ranked teams to seed knockout stage %s", source.id, target.id)
        return None

    created = _insert_plan(session, target, plan)
    session.commit()
    logger.info("Seeded knockout stage %s from stage %s with %d match(es)", target.id, source.id, len(created))
    return target.id


def _stage_complete(session: Session, stage_id: int) -> bool:
    matches = session.exec(select(Match).where(Match.stage_id == stage_id)).all()
    return bool(matches) and all(m.status in (MATCH_FINISHED, MATCH_CANCELED) for m in matches)


# ============================================================================
# Tournament completion
# ============================================================================


def _champion(session: Session, tournament: Tournament) -> Optional[int]:
    stages = session.exec(
        select(Stage).where(Stage.tournament_id == tournament.id).order_by(Stage.ordering, Stage.id)
    ).all()
    if not stages:
        return None
    last = stages[-1]

    if last.kind == STAGE_KNOCKOUT:
        roots = load_bracket(session, last.id).roots()
        if not roots:
            return None
        try:
            winner, _ = decide_outcome(roots[0])
        except (UndecidedMatchError, InvalidInputError):
            return None
        return winner

    if last.kind == STAGE_LEAGUE:
        top = session.exec(
            select(StageStanding).where(
                StageStanding.stage_id == last.id, StageStanding.group_id.is_(None), StageStanding.rank == 1
            )
        ).first()
        return top.team_id if top else None
    return None


def maybe_complete_tournament(session: Session, tournament_id: int) -> bool:
    """Mark the tournament completed once every stage has matches and all are finished or canceled.

    An already completed tournament gets its champion recomputed, so a
    corrected final result moves the title.
    """
    tournament = session.get(Tournament, tournament_id)
    if not tournament or tournament.status == "archived":
        return False

    stages = session.exec(select(Stage).where(Stage.tournament_id == tournament_id)).all()
    if not stages or not all(_stage_complete(session, s.id) for s in stages):
        return False

    champion = _champion(session, tournament)
    if tournament.status == "completed":
        if tournament.winner_team_id != champion:
            logger.info(
                "Tournament %s champion corrected: %s -> %s", tournament_id, tournament.winner_team_id, champion
            )
            tournament.winner_team_id = champion
            session.add(tournament)
            session.commit()
        return True

    tournament.status = "completed"
    tournament.winner_team_id = champion
    session.add(tournament)
    session.commit()
    logger.info("Tournament %s completed (winner: %s)", tournament_id, tournament.winner_team_id)
    return True


# ============================================================================
# Entrypoints
# ============================================================================


def progress_after_match(session: Session, match_id: int) -> ProgressionReport:
    """Run every consequence of a finished match. Safe to call again for the same match."""
    match = _get_match(session, match_id)
    if match.status != MATCH_FINISHED:
        raise InvalidInputError(f"Match {match_id} is not finished (status '{match.status}')")
    stage = _get_stage(session, match.stage_id)
    report = ProgressionReport(match_id=match.id)

    if stage.is_table_stage:
        result = recompute_scope_standings(session, stage, match.group_id)
        report.standings.append(
            {"stage_id": stage.id, "group_id": match.group_id if stage.kind == STAGE_GROUPS else None,
             "rows": len(result.rows)}
        )
        report.warnings.extend(result.warnings)
    elif stage.kind == STAGE_KNOCKOUT:
        try:
            proposed = compute_propagation(session, match)
        except UndecidedMatchError as exc:
            logger.warning("Knockout match %s not propagated: %s", match.id, exc)
            report.warnings.append(IntegrityWarning("undecided_knockout", str(exc), match.id))
        else:
            report.propagation = apply_propagation(session, proposed)

    if stage.is_table_stage and _stage_complete(session, stage.id):
        report.seeded_stage_id = seed_next_knockout(session, stage.id)

    report.tournament_completed = maybe_complete_tournament(session, match.tournament_id)
    return report


def _check_progression_inputs(session: Session, match: Match) -> None:
    """Reject a finalization whose progression would fail, before anything is written."""
    stage = _get_stage(session, match.stage_id)
    if stage.is_table_stage:
        config = stage.config or {}
        parse_tiebreakers(config.get("tiebreakers"))
        PointsRule.from_config(config)
        group_id = None if stage.kind == STAGE_LEAGUE else match.group_id
        if not list_participants(session, stage).get(group_id):
            raise EmptyParticipantsError(
                f"No participants for stage {stage.id} group {group_id}; cannot record match {match.id}"
            )
    elif stage.kind == STAGE_KNOCKOUT:
        source = BracketMatch.from_model(match)
        for dependent in _dependents(session, match.id):
            for side, link in dependent.links():
                if link.match_id == match.id:
                    validate_link(source, dependent, side, link)


def finalize_match(
    session: Session,
    match_id: int,
    team_a_score: int,
    team_b_score: int,
    winner_team_id: Optional[int] = None,
) -> ProgressionReport:
    """
    Record a final score and run progression.

    The score decides the winner. On a level score an explicit winner_team_id
    (e.g. decided on penalties) is kept; without one the match is a draw.
    A finished match may be finalized again to correct its score.
    """
    match = _get_match(session, match_id)
    if match.status == MATCH_CANCELED:
        raise InvalidInputError(f"Match {match_id} is canceled")
    if match.team_a_id is None or match.team_b_id is None:
        raise InvalidInputError(f"Match {match_id} has an unresolved team slot")
    if match.team_a_id == match.team_b_id:
        raise InvalidInputError(f"Match {match_id} has the same team in both slots")
    if team_a_score is None or team_b_score is None or team_a_score < 0 or team_b_score < 0:
        raise InvalidInputError("Scores must be non-negative integers")

    if team_a_score > team_b_score:
        decided = match.team_a_id
    elif team_b_score > team_a_score:
        decided = match.team_b_id
    else:
        decided = None

    if winner_team_id is not None:
        if winner_team_id not in (match.team_a_id, match.team_b_id):
            raise InvalidInputError(f"Team {winner_team_id} did not play match {match_id}")
        if decided is not None and decided != winner_team_id:
            raise InvalidInputError(f"winner_team_id {winner_team_id} contradicts the score")
        decided = winner_team_id

    _check_progression_inputs(session, match)

    match.team_a_score = team_a_score
    match.team_b_score = team_b_score
    match.winner_team_id = decided
    match.status = MATCH_FINISHED
    match.completed_at = datetime.utcnow()
    session.add(match)

    tournament = session.get(Tournament, match.tournament_id)
    if tournament and tournament.status == "scheduled":
        tournament.status = "running"
        session.add(tournament)
    session.commit()

    logger.info("Match %s finalized %s-%s (winner: %s)", match_id, team_a_score, team_b_score, decided)
    return progress_after_match(session, match_id)
