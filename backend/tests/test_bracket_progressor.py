"""
Tests for knockout propagation: single-hop slot writes, idempotency, conflicts, link validation.
"""

import pytest

from league.services.bracket_progressor import (
    OUTCOME_LOSER,
    OUTCOME_WINNER,
    SLOT_A,
    SLOT_B,
    BracketGraph,
    BracketMatch,
    SourceLink,
    decide_outcome,
    propagate_match_result,
)
from league.services.errors import InvalidInputError, SourceLinkError, UndecidedMatchError

TEAM_A, TEAM_B, TEAM_C, TEAM_D = 11, 12, 13, 14


def _finished(match_id, a, b, a_score, b_score, round_number=1, pos=1, winner=None, tournament_id=1):
    return BracketMatch(
        id=match_id,
        tournament_id=tournament_id,
        round_number=round_number,
        bracket_pos=pos,
        team_a_id=a,
        team_b_id=b,
        team_a_score=a_score,
        team_b_score=b_score,
        status="finished",
        winner_team_id=winner,
    )


def _pending(match_id, source_a=None, source_b=None, round_number=2, pos=1, team_a=None, team_b=None,
             tournament_id=1):
    return BracketMatch(
        id=match_id,
        tournament_id=tournament_id,
        round_number=round_number,
        bracket_pos=pos,
        team_a_id=team_a,
        team_b_id=team_b,
        source_a=source_a,
        source_b=source_b,
    )


@pytest.fixture
def round_of_four():
    """Match1: A 3-1 B, Match2: C 2-2 D (no winner), Match3: winners of 1 and 2."""
    m1 = _finished(1, TEAM_A, TEAM_B, 3, 1, pos=1)
    m2 = _finished(2, TEAM_C, TEAM_D, 2, 2, pos=2)
    m3 = _pending(3, source_a=SourceLink(1, OUTCOME_WINNER), source_b=SourceLink(2, OUTCOME_WINNER))
    return m1, m2, m3


class TestDecideOutcome:
    def test_score_decides(self):
        assert decide_outcome(_finished(1, TEAM_A, TEAM_B, 0, 2)) == (TEAM_B, TEAM_A)

    def test_level_score_uses_recorded_winner(self):
        match = _finished(1, TEAM_A, TEAM_B, 1, 1, winner=TEAM_B)
        assert decide_outcome(match) == (TEAM_B, TEAM_A)

    def test_level_score_without_winner_is_undecided(self):
        with pytest.raises(UndecidedMatchError) as exc_info:
            decide_outcome(_finished(5, TEAM_A, TEAM_B, 2, 2))
        assert exc_info.value.match_id == 5

    def test_recorded_winner_must_have_played(self):
        with pytest.raises(UndecidedMatchError):
            decide_outcome(_finished(1, TEAM_A, TEAM_B, 0, 0, winner=TEAM_C))

    def test_not_finished_is_invalid(self):
        match = _pending(1, round_number=1, team_a=TEAM_A, team_b=TEAM_B)
        with pytest.raises(InvalidInputError):
            decide_outcome(match)

    def test_empty_slot_is_undecided(self):
        with pytest.raises(UndecidedMatchError):
            decide_outcome(_finished(1, TEAM_A, None, 1, 0))

    def test_same_team_is_invalid(self):
        with pytest.raises(InvalidInputError):
            decide_outcome(_finished(1, TEAM_A, TEAM_A, 1, 0))


class TestPropagation:
    def test_round_of_four_scenario(self, round_of_four):
        m1, m2, m3 = round_of_four

        result = propagate_match_result(m1, [m3])
        assert [u.to_dict() for u in result.updates] == [{"match_id": 3, "slot": SLOT_A, "team_id": TEAM_A}]
        assert result.conflicts == []

        # Match2 is a draw with no recorded winner: nothing propagates
        m3.team_a_id = TEAM_A
        with pytest.raises(UndecidedMatchError):
            propagate_match_result(m2, [m3])
        assert m3.team_b_id is None

    def test_propagation_after_correction(self, round_of_four):
        _, m2, m3 = round_of_four
        m2.winner_team_id = TEAM_D  # decided on penalties

        result = propagate_match_result(m2, [m3])
        assert [(u.match_id, u.slot, u.team_id) for u in result.updates] == [(3, SLOT_B, TEAM_D)]

    def test_idempotent(self, round_of_four):
        m1, _, m3 = round_of_four
        first = propagate_match_result(m1, [m3])
        for upd in first.updates:
            m3.team_a_id = upd.team_id

        second = propagate_match_result(m1, [m3])
        assert second.updates == []
        assert second.conflicts == []

    def test_conflict_is_reported_not_written(self):
        source = _finished(1, 9, 8, 2, 0)
        dependent = _pending(2, source_a=SourceLink(1), team_a=7)

        result = propagate_match_result(source, [dependent])
        assert result.updates == []
        assert [c.to_dict() for c in result.conflicts] == [
            {"match_id": 2, "slot": SLOT_A, "existing": 7, "attempted": 9, "reason": "occupied"}
        ]

    def test_same_team_in_both_slots_is_a_conflict(self):
        # slot B was filled directly with the team that then wins the source match
        source = _finished(1, TEAM_A, TEAM_B, 2, 0)
        dependent = _pending(2, source_a=SourceLink(1), team_b=TEAM_A)

        result = propagate_match_result(source, [dependent])
        assert result.updates == []
        assert [c.to_dict() for c in result.conflicts] == [
            {"match_id": 2, "slot": SLOT_A, "existing": TEAM_A, "attempted": TEAM_A, "reason": "same_team"}
        ]

    def test_both_slots_linked_to_same_winner(self):
        source = _finished(1, TEAM_A, TEAM_B, 1, 0)
        dependent = _pending(2, source_a=SourceLink(1), source_b=SourceLink(1))

        result = propagate_match_result(source, [dependent])
        assert [(u.slot, u.team_id) for u in result.updates] == [(SLOT_A, TEAM_A)]
        assert [(c.slot, c.reason) for c in result.conflicts] == [(SLOT_B, "same_team")]

    def test_direct_slot_never_touched(self):
        # bye: team C sits in slot B directly, slot A comes from match 1
        source = _finished(1, TEAM_A, TEAM_B, 1, 0)
        dependent = _pending(2, source_a=SourceLink(1), team_b=TEAM_C)

        result = propagate_match_result(source, [dependent])
        assert [(u.slot, u.team_id) for u in result.updates] == [(SLOT_A, TEAM_A)]

    def test_loser_outcome(self):
        # semi-final loser goes to the third-place match
        semi = _finished(1, TEAM_A, TEAM_B, 0, 1)
        final = _pending(2, source_a=SourceLink(1, OUTCOME_WINNER))
        third_place = _pending(3, source_a=SourceLink(1, OUTCOME_LOSER))

        result = propagate_match_result(semi, [third_place, final])
        assert [(u.match_id, u.team_id) for u in result.updates] == [(2, TEAM_B), (3, TEAM_A)]

    def test_only_links_to_this_match_are_considered(self):
        source = _finished(1, TEAM_A, TEAM_B, 1, 0)
        dependent = _pending(3, source_a=SourceLink(2), source_b=SourceLink(1))

        result = propagate_match_result(source, [dependent])
        assert [(u.slot, u.team_id) for u in result.updates] == [(SLOT_B, TEAM_A)]

    def test_no_dependents(self):
        result = propagate_match_result(_finished(1, TEAM_A, TEAM_B, 1, 0), [])
        assert result.to_dict() == {"updates": [], "conflicts": []}

    def test_cross_tournament_link_rejected(self):
        source = _finished(1, TEAM_A, TEAM_B, 1, 0, tournament_id=1)
        dependent = _pending(2, source_a=SourceLink(1), tournament_id=2)

        with pytest.raises(SourceLinkError):
            propagate_match_result(source, [dependent])

    def test_link_to_same_round_rejected(self):
        source = _finished(1, TEAM_A, TEAM_B, 1, 0, round_number=2)
        dependent = _pending(2, source_a=SourceLink(1), round_number=2)

        with pytest.raises(SourceLinkError):
            propagate_match_result(source, [dependent])

    def test_unknown_outcome_rejected(self):
        source = _finished(1, TEAM_A, TEAM_B, 1, 0)
        dependent = _pending(2, source_a=SourceLink(1, "runner_up"))

        with pytest.raises(SourceLinkError):
            propagate_match_result(source, [dependent])


class TestBracketGraph:
    def _bracket(self):
        return BracketGraph(
            [
                _finished(1, TEAM_A, TEAM_B, 2, 0, pos=1),
                _pending(2, round_number=1, pos=2, team_a=TEAM_C, team_b=TEAM_D),
                _pending(3, source_a=SourceLink(1), source_b=SourceLink(2), team_a=TEAM_A),
            ]
        )

    def test_dependents_and_readiness(self):
        graph = self._bracket()
        graph.validate()

        assert graph.dependents_of(1) == [(3, SLOT_A, OUTCOME_WINNER)]
        assert graph.dependents_of(3) == []
        assert graph.is_ready(2)
        assert not graph.is_ready(3)

    def test_roots_and_tree(self):
        graph = self._bracket()

        assert [m.id for m in graph.roots()] == [3]
        (final,) = graph.tree()
        assert final["match_id"] == 3
        assert final["a"]["match_id"] == 1
        assert final["b"]["match_id"] == 2
        assert final["a"]["a"] is None

    def test_rounds(self):
        rounds = self._bracket().rounds()
        assert [(r, [m.id for m in ms]) for r, ms in rounds] == [(1, [1, 2]), (2, [3])]

    def test_validate_unknown_source(self):
        graph = BracketGraph([_pending(3, source_a=SourceLink(42))])
        with pytest.raises(SourceLinkError):
            graph.validate()
