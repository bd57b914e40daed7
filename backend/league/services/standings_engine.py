"""
Standings Engine: ranked tables for a league or a single group.

Pure function of an explicit snapshot:
- finished matches of one (stage, group) scope
- the participating team ids
- an ordered tie-break list (closed set of criteria)
- optional card counts for fair play

Nothing is cached between calls; every call rebuilds the table from scratch.
Head-to-head is evaluated lazily for the pair being compared during the sort,
never as a table for all pairs. Under a three-way head-to-head cycle the
comparator is not transitive; the stable sort settles such ties using the
remaining criteria and the team id fallback.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from functools import cmp_to_key
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from league.services.errors import (
    EmptyParticipantsError,
    IntegrityWarning,
    InvalidInputError,
    UnknownCriterionError,
)

logger = logging.getLogger(__name__)

FINISHED = "finished"


class Criterion(str, Enum):
    points = "points"
    goal_diff = "goal_diff"
    goals_for = "goals_for"
    h2h_points = "h2h_points"
    h2h_goal_diff = "h2h_goal_diff"
    fair_play = "fair_play"


DEFAULT_TIEBREAKERS: Tuple[Criterion, ...] = (
    Criterion.points,
    Criterion.goal_diff,
    Criterion.goals_for,
    Criterion.h2h_points,
    Criterion.h2h_goal_diff,
    Criterion.fair_play,
)


def parse_tiebreakers(raw: Optional[Iterable[Any]]) -> List[Criterion]:
    """Validate a configured tie-break list.

    None or an empty list yields the default order. Unknown names are
    rejected rather than skipped.
    """
    if not raw:
        return list(DEFAULT_TIEBREAKERS)
    if isinstance(raw, str):
        raise UnknownCriterionError(f"tiebreakers must be a list, got string '{raw}'")

    criteria: List[Criterion] = []
    for item in raw:
        if isinstance(item, Criterion):
            criteria.append(item)
            continue
        try:
            criteria.append(Criterion(str(item)))
        except ValueError:
            allowed = ", ".join(c.value for c in Criterion)
            raise UnknownCriterionError(f"Unknown tie-break criterion '{item}' (allowed: {allowed})")
    return criteria


@dataclass(frozen=True)
class PointsRule:
    win: int = 3
    draw: int = 1
    loss: int = 0

    @classmethod
    def from_config(cls, config: Optional[Mapping[str, Any]]) -> "PointsRule":
        """Read {"points": {"win": .., "draw": .., "loss": ..}} from a stage config."""
        overrides = (config or {}).get("points") or {}
        default = cls()
        try:
            return cls(
                win=int(overrides.get("win", default.win)),
                draw=int(overrides.get("draw", default.draw)),
                loss=int(overrides.get("loss", default.loss)),
            )
        except (AttributeError, TypeError, ValueError):
            raise InvalidInputError(f"Invalid points configuration: {overrides!r}")


# Head-to-head always replays with the historical 3/1/0 table
H2H_POINTS = PointsRule()


@dataclass(frozen=True)
class CardCounts:
    yellow: int = 0
    red: int = 0
    blue: int = 0

    @property
    def penalty(self) -> int:
        return self.yellow * 1 + self.red * 3 + self.blue * 2


@dataclass(frozen=True)
class StandingsScope:
    stage_id: int
    group_id: Optional[int] = None


@dataclass(frozen=True)
class MatchResult:
    """Minimal finished-match snapshot. ORM Match rows expose the same attributes."""

    team_a_id: Optional[int]
    team_b_id: Optional[int]
    team_a_score: Optional[int]
    team_b_score: Optional[int]
    status: str = FINISHED
    id: Optional[int] = None


@dataclass
class StandingRow:
    stage_id: int
    group_id: Optional[int]
    team_id: int
    played: int = 0
    wins: int = 0
    draws: int = 0
    losses: int = 0
    goals_for: int = 0
    goals_against: int = 0
    points: int = 0
    rank: int = 0

    @property
    def goal_diff(self) -> int:
        return self.goals_for - self.goals_against

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stage_id": self.stage_id,
            "group_id": self.group_id,
            "team_id": self.team_id,
            "played": self.played,
            "wins": self.wins,
            "draws": self.draws,
            "losses": self.losses,
            "goals_for": self.goals_for,
            "goals_against": self.goals_against,
            "goal_diff": self.goal_diff,
            "points": self.points,
            "rank": self.rank,
        }


@dataclass
class StandingsResult:
    rows: List[StandingRow]
    warnings: List[IntegrityWarning] = field(default_factory=list)


def _valid_matches(
    matches: Iterable[Any], participants: set, warnings: List[IntegrityWarning]
) -> List[Any]:
    """Keep finished matches that can be aggregated; report the rest as warnings."""
    valid: List[Any] = []
    for m in matches:
        if getattr(m, "status", None) != FINISHED:
            continue
        match_id = getattr(m, "id", None)
        a, b = m.team_a_id, m.team_b_id
        if a is None or b is None:
            warnings.append(IntegrityWarning("missing_team", f"Finished match {match_id} has an empty team slot", match_id))
            continue
        if a == b:
            warnings.append(IntegrityWarning("same_team", f"Finished match {match_id} pits team {a} against itself", match_id))
            continue
        if m.team_a_score is None or m.team_b_score is None:
            warnings.append(IntegrityWarning("missing_score", f"Finished match {match_id} is missing a score", match_id))
            continue
        if m.team_a_score < 0 or m.team_b_score < 0:
            warnings.append(IntegrityWarning("negative_score", f"Finished match {match_id} has a negative score", match_id))
            continue
        if a not in participants or b not in participants:
            warnings.append(
                IntegrityWarning(
                    "team_not_in_scope",
                    f"Finished match {match_id} involves a team outside this table ({a} vs {b})",
                    match_id,
                )
            )
            continue
        valid.append(m)
    return valid


def _head_to_head(matches: Sequence[Any], x: int, y: int) -> Tuple[int, int, int]:
    """Replay only the mutual matches of x and y.

    Returns (x_points, y_points, x_goal_diff). A pair that never met returns (0, 0, 0).
    """
    x_pts = y_pts = x_gd = 0
    for m in matches:
        if m.team_a_id == x and m.team_b_id == y:
            xs, ys = m.team_a_score, m.team_b_score
        elif m.team_a_id == y and m.team_b_id == x:
            xs, ys = m.team_b_score, m.team_a_score
        else:
            continue
        x_gd += xs - ys
        if xs > ys:
            x_pts += H2H_POINTS.win
            y_pts += H2H_POINTS.loss
        elif ys > xs:
            y_pts += H2H_POINTS.win
            x_pts += H2H_POINTS.loss
        else:
            x_pts += H2H_POINTS.draw
            y_pts += H2H_POINTS.draw
    return x_pts, y_pts, x_gd


def compute_standings(
    scope: StandingsScope,
    finished_matches: Iterable[Any],
    participant_team_ids: Iterable[int],
    tie_breakers: Optional[Iterable[Any]] = None,
    card_counts: Optional[Mapping[int, Any]] = None,
    points_rule: Optional[PointsRule] = None,
) -> StandingsResult:
    """Build the ranked table for one scope.

    Every participant appears exactly once, ranks are 1..N with no gaps.
    Bad match rows are skipped and reported; only an empty participant set
    or an unknown criterion raises.
    """
    criteria = parse_tiebreakers(tie_breakers)
    participants = list(dict.fromkeys(participant_team_ids))
    if not participants:
        raise EmptyParticipantsError(
            f"No participants for stage {scope.stage_id} group {scope.group_id}; cannot compute standings"
        )
    rule = points_rule or PointsRule()
    cards = card_counts or {}

    warnings: List[IntegrityWarning] = []
    matches = _valid_matches(finished_matches, set(participants), warnings)

    rows: Dict[int, StandingRow] = {
        tid: StandingRow(stage_id=scope.stage_id, group_id=scope.group_id, team_id=tid) for tid in participants
    }

    for m in matches:
        row_a = rows[m.team_a_id]
        row_b = rows[m.team_b_id]
        a_score, b_score = m.team_a_score, m.team_b_score

        row_a.played += 1
        row_b.played += 1
        row_a.goals_for += a_score
        row_a.goals_against += b_score
        row_b.goals_for += b_score
        row_b.goals_against += a_score

        if a_score > b_score:
            row_a.wins += 1
            row_a.points += rule.win
            row_b.losses += 1
            row_b.points += rule.loss
        elif b_score > a_score:
            row_b.wins += 1
            row_b.points += rule.win
            row_a.losses += 1
            row_a.points += rule.loss
        else:
            row_a.draws += 1
            row_b.draws += 1
            row_a.points += rule.draw
            row_b.points += rule.draw

    def penalty(team_id: int) -> int:
        counts = cards.get(team_id)
        if counts is None:
            return 0
        if isinstance(counts, Mapping):
            counts = CardCounts(**counts)
        return counts.penalty

    def compare(a: StandingRow, b: StandingRow) -> int:
        for criterion in criteria:
            if criterion is Criterion.points:
                diff = b.points - a.points
            elif criterion is Criterion.goal_diff:
                diff = b.goal_diff - a.goal_diff
            elif criterion is Criterion.goals_for:
                diff = b.goals_for - a.goals_for
            elif criterion is Criterion.h2h_points:
                a_pts, b_pts, _ = _head_to_head(matches, a.team_id, b.team_id)
                diff = b_pts - a_pts
            elif criterion is Criterion.h2h_goal_diff:
                _, _, a_gd = _head_to_head(matches, a.team_id, b.team_id)
                # b's mutual goal difference is -a_gd
                diff = -a_gd - a_gd
            else:
                # fair play: lower penalty ranks higher
                diff = penalty(a.team_id) - penalty(b.team_id)
            if diff:
                return diff
        return a.team_id - b.team_id

    ordered = sorted(rows.values(), key=cmp_to_key(compare))
    for index, row in enumerate(ordered, start=1):
        row.rank = index

    if warnings:
        logger.warning(
            "Standings for stage %s group %s may be incomplete: %d match(es) skipped",
            scope.stage_id,
            scope.group_id,
            len(warnings),
        )
    logger.debug(
        "Computed standings for stage %s group %s: %d rows from %d matches",
        scope.stage_id,
        scope.group_id,
        len(ordered),
        len(matches),
    )
    return StandingsResult(rows=ordered, warnings=warnings)
