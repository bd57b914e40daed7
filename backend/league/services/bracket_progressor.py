"""
Bracket Progressor: move winners/losers of a finished knockout match into the
team slots of the matches that reference it.

The knockout stage is a DAG keyed by match id whose edges are source-match
links (slot A/B <- earlier match, winner|loser). Propagation is a single-hop
relaxation: only immediate dependents of the finished match are touched.
Later hops happen when those dependents are themselves played and finalized.

Nothing here writes anything. The caller applies the returned updates as
conditional "write if still null" operations and surfaces the conflicts.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from league.services.errors import InvalidInputError, SourceLinkError, UndecidedMatchError

logger = logging.getLogger(__name__)

SLOT_A = "A"
SLOT_B = "B"
OUTCOME_WINNER = "winner"
OUTCOME_LOSER = "loser"
FINISHED = "finished"


@dataclass(frozen=True)
class SourceLink:
    match_id: int
    outcome: str = OUTCOME_WINNER  # "winner" | "loser"


@dataclass
class BracketMatch:
    """Snapshot of one match as the progressor sees it."""

    id: int
    tournament_id: int
    round_number: Optional[int]
    bracket_pos: Optional[int] = None
    team_a_id: Optional[int] = None
    team_b_id: Optional[int] = None
    team_a_score: Optional[int] = None
    team_b_score: Optional[int] = None
    status: str = "scheduled"
    winner_team_id: Optional[int] = None
    source_a: Optional[SourceLink] = None
    source_b: Optional[SourceLink] = None

    @classmethod
    def from_model(cls, m: Any) -> "BracketMatch":
        source_a = None
        if m.source_match_a_id is not None:
            source_a = SourceLink(m.source_match_a_id, m.source_a_outcome or OUTCOME_WINNER)
        source_b = None
        if m.source_match_b_id is not None:
            source_b = SourceLink(m.source_match_b_id, m.source_b_outcome or OUTCOME_WINNER)
        return cls(
            id=m.id,
            tournament_id=m.tournament_id,
            round_number=m.round_number,
            bracket_pos=m.bracket_pos,
            team_a_id=m.team_a_id,
            team_b_id=m.team_b_id,
            team_a_score=m.team_a_score,
            team_b_score=m.team_b_score,
            status=m.status,
            winner_team_id=m.winner_team_id,
            source_a=source_a,
            source_b=source_b,
        )

    def slot(self, side: str) -> Optional[int]:
        return self.team_a_id if side == SLOT_A else self.team_b_id

    def other_slot(self, side: str) -> Optional[int]:
        return self.team_b_id if side == SLOT_A else self.team_a_id

    def link(self, side: str) -> Optional[SourceLink]:
        return self.source_a if side == SLOT_A else self.source_b

    def links(self) -> List[Tuple[str, SourceLink]]:
        return [(side, link) for side, link in ((SLOT_A, self.source_a), (SLOT_B, self.source_b)) if link]


@dataclass
class SlotUpdate:
    match_id: int
    slot: str
    team_id: int

    def to_dict(self):
        return {"match_id": self.match_id, "slot": self.slot, "team_id": self.team_id}


CONFLICT_OCCUPIED = "occupied"
CONFLICT_SAME_TEAM = "same_team"


@dataclass
class SlotConflict:
    """A refused slot write.

    occupied: the slot already holds another team (`existing`).
    same_team: the opposite slot already holds the attempted team (`existing`).
    """

    match_id: int
    slot: str
    existing: int
    attempted: int
    reason: str = CONFLICT_OCCUPIED

    def to_dict(self):
        return {
            "match_id": self.match_id,
            "slot": self.slot,
            "existing": self.existing,
            "attempted": self.attempted,
            "reason": self.reason,
        }


@dataclass
class PropagationResult:
    updates: List[SlotUpdate] = field(default_factory=list)
    conflicts: List[SlotConflict] = field(default_factory=list)

    def to_dict(self):
        return {
            "updates": [u.to_dict() for u in self.updates],
            "conflicts": [c.to_dict() for c in self.conflicts],
        }


def decide_outcome(match: BracketMatch) -> Tuple[int, int]:
    """Return (winner_id, loser_id) of a finished match.

    The score decides; a level score falls back to a recorded winner
    (e.g. after penalties). Anything else is undecided.
    """
    if match.status != FINISHED:
        raise InvalidInputError(f"Match {match.id} is not finished (status '{match.status}')")
    a, b = match.team_a_id, match.team_b_id
    if a is None or b is None:
        raise UndecidedMatchError(match.id, f"Match {match.id} finished with an unresolved team slot")
    if a == b:
        raise InvalidInputError(f"Match {match.id} has the same team {a} in both slots")

    winner: Optional[int] = None
    if match.team_a_score is not None and match.team_b_score is not None and match.team_a_score != match.team_b_score:
        winner = a if match.team_a_score > match.team_b_score else b
    elif match.winner_team_id in (a, b):
        winner = match.winner_team_id

    if winner is None:
        raise UndecidedMatchError(match.id)
    return winner, (b if winner == a else a)


class BracketGraph:
    """Knockout matches keyed by id, with edges source -> dependent slot."""

    def __init__(self, matches: Iterable[BracketMatch]):
        self.matches: Dict[int, BracketMatch] = {m.id: m for m in matches}
        self._dependents: Dict[int, List[Tuple[int, str, str]]] = defaultdict(list)
        for m in sorted(self.matches.values(), key=lambda x: x.id):
            for side, link in m.links():
                self._dependents[link.match_id].append((m.id, side, link.outcome))

    def validate(self) -> None:
        """Every link must point at a known, strictly earlier match of the same tournament."""
        for m in self.matches.values():
            for side, link in m.links():
                source = self.matches.get(link.match_id)
                if source is None:
                    raise SourceLinkError(f"Match {m.id} slot {side} links to unknown match {link.match_id}")
                validate_link(source, m, side, link)

    def dependents_of(self, match_id: int) -> List[Tuple[int, str, str]]:
        """(dependent_match_id, slot, outcome) edges leaving match_id, ordered by dependent id."""
        return list(self._dependents.get(match_id, []))

    def is_ready(self, match_id: int) -> bool:
        m = self.matches[match_id]
        return m.team_a_id is not None and m.team_b_id is not None

    def roots(self) -> List[BracketMatch]:
        """Matches no other match draws from (the final, plus any placement matches)."""
        return sorted(
            (m for mid, m in self.matches.items() if mid not in self._dependents),
            key=lambda m: (-(m.round_number or 0), m.bracket_pos or 0, m.id),
        )

    def tree(self) -> List[Dict[str, Any]]:
        """Nested {match, a, b} nodes from each root upwards along source links."""

        def node(m: BracketMatch) -> Dict[str, Any]:
            children = {}
            for side, link in m.links():
                source = self.matches.get(link.match_id)
                children[side.lower()] = node(source) if source else None
            return {"match_id": m.id, "round_number": m.round_number, "bracket_pos": m.bracket_pos,
                    "a": children.get("a"), "b": children.get("b")}

        return [node(r) for r in self.roots()]

    def rounds(self) -> List[Tuple[int, List[BracketMatch]]]:
        by_round: Dict[int, List[BracketMatch]] = defaultdict(list)
        for m in self.matches.values():
            by_round[m.round_number or 0].append(m)
        return [
            (r, sorted(ms, key=lambda m: (m.bracket_pos or 0, m.id)))
            for r, ms in sorted(by_round.items())
        ]


def validate_link(source: BracketMatch, dependent: BracketMatch, side: str, link: SourceLink) -> None:
    if link.outcome not in (OUTCOME_WINNER, OUTCOME_LOSER):
        raise SourceLinkError(f"Match {dependent.id} slot {side} has unknown outcome selector '{link.outcome}'")
    if source.tournament_id != dependent.tournament_id:
        raise SourceLinkError(
            f"Match {dependent.id} slot {side} links to match {source.id} of another tournament"
        )
    if source.round_number is None or dependent.round_number is None or source.round_number >= dependent.round_number:
        raise SourceLinkError(
            f"Match {dependent.id} (round {dependent.round_number}) slot {side} links to match {source.id} "
            f"(round {source.round_number}); source must be in an earlier round"
        )


def propagate_match_result(finished_match: BracketMatch, dependent_matches: Iterable[BracketMatch]) -> PropagationResult:
    """Compute slot writes for the immediate dependents of a finished match.

    - only linked slots are considered; direct team ids are never touched
    - a slot already holding the value is a silent no-op (idempotent re-runs)
    - a slot holding a different team is a conflict and is not written
    - a write that would put the same team in both slots is a conflict

    Raises UndecidedMatchError when the match has no decisive winner.
    """
    winner, loser = decide_outcome(finished_match)

    result = PropagationResult()
    for dependent in sorted(dependent_matches, key=lambda m: m.id):
        planned: Dict[str, int] = {}
        for side, link in dependent.links():
            if link.match_id != finished_match.id:
                continue
            validate_link(finished_match, dependent, side, link)

            attempted = winner if link.outcome == OUTCOME_WINNER else loser
            existing = dependent.slot(side)
            opponent = planned.get(SLOT_B if side == SLOT_A else SLOT_A, dependent.other_slot(side))
            if existing is None and opponent == attempted:
                result.conflicts.append(
                    SlotConflict(
                        match_id=dependent.id,
                        slot=side,
                        existing=opponent,
                        attempted=attempted,
                        reason=CONFLICT_SAME_TEAM,
                    )
                )
                logger.warning(
                    "Propagation conflict: match %s already has team %s in its other slot, not writing slot %s",
                    dependent.id,
                    attempted,
                    side,
                )
            elif existing is None:
                result.updates.append(SlotUpdate(match_id=dependent.id, slot=side, team_id=attempted))
                planned[side] = attempted
            elif existing != attempted:
                result.conflicts.append(
                    SlotConflict(match_id=dependent.id, slot=side, existing=existing, attempted=attempted)
                )
                logger.warning(
                    "Propagation conflict: match %s slot %s holds team %s, match %s produced team %s",
                    dependent.id,
                    side,
                    existing,
                    finished_match.id,
                    attempted,
                )

    logger.debug(
        "Propagated match %s: %d update(s), %d conflict(s)",
        finished_match.id,
        len(result.updates),
        len(result.conflicts),
    )
    return result
