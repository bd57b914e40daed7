"""
Tests for the standings engine: aggregation, tie-break chain, data-integrity warnings.
"""

import pytest

from league.services.errors import EmptyParticipantsError, UnknownCriterionError
from league.services.standings_engine import (
    DEFAULT_TIEBREAKERS,
    CardCounts,
    Criterion,
    MatchResult,
    PointsRule,
    StandingsScope,
    compute_standings,
    parse_tiebreakers,
)

SCOPE = StandingsScope(stage_id=1, group_id=None)


def _m(match_id, a, b, a_score, b_score, status="finished"):
    return MatchResult(
        id=match_id, team_a_id=a, team_b_id=b, team_a_score=a_score, team_b_score=b_score, status=status
    )


def _order(result):
    return [r.team_id for r in result.rows]


class TestAggregation:
    """Points, goals and played counts from finished matches."""

    def test_default_points_example(self):
        # A beats B 2-0, B beats C 1-0, A draws C 1-1
        matches = [_m(1, 1, 2, 2, 0), _m(2, 2, 3, 1, 0), _m(3, 1, 3, 1, 1)]
        result = compute_standings(SCOPE, matches, [1, 2, 3])

        assert _order(result) == [1, 2, 3]
        a, b, c = result.rows
        assert (a.played, a.points, a.goal_diff) == (2, 4, 2)
        assert (b.played, b.points, b.goal_diff) == (2, 3, -1)
        assert (c.played, c.points, c.goal_diff) == (2, 1, -1)
        assert (a.wins, a.draws, a.losses) == (1, 1, 0)
        assert result.warnings == []

    def test_conservation(self):
        matches = [
            _m(1, 1, 2, 3, 1),
            _m(2, 3, 4, 0, 0),
            _m(3, 1, 3, 2, 2),
            _m(4, 2, 4, 0, 5),
            _m(5, 1, 4, 1, 0),
        ]
        result = compute_standings(SCOPE, matches, [1, 2, 3, 4])

        decisive = sum(1 for m in matches if m.team_a_score != m.team_b_score)
        drawn = len(matches) - decisive
        assert sum(r.wins for r in result.rows) == decisive
        assert sum(r.losses for r in result.rows) == decisive
        assert sum(r.draws for r in result.rows) == 2 * drawn
        assert sum(r.goals_for for r in result.rows) == sum(r.goals_against for r in result.rows)
        assert sum(r.played for r in result.rows) == 2 * len(matches)

    def test_participant_without_matches_is_listed(self):
        result = compute_standings(SCOPE, [_m(1, 1, 2, 1, 0)], [1, 2, 3])

        assert _order(result) == [1, 3, 2]
        idle = result.rows[1]
        assert idle.played == 0
        assert idle.points == 0

    def test_ranks_are_contiguous(self):
        matches = [_m(1, 1, 2, 0, 0), _m(2, 3, 4, 0, 0)]
        result = compute_standings(SCOPE, matches, [4, 3, 2, 1, 5])

        assert [r.rank for r in result.rows] == [1, 2, 3, 4, 5]
        assert sorted(_order(result)) == [1, 2, 3, 4, 5]

    def test_duplicate_participants_counted_once(self):
        result = compute_standings(SCOPE, [_m(1, 1, 2, 1, 0)], [1, 2, 2, 1])
        assert _order(result) == [1, 2]

    def test_custom_points_rule(self):
        matches = [_m(1, 1, 2, 1, 0), _m(2, 3, 4, 0, 0)]
        result = compute_standings(SCOPE, matches, [1, 2, 3, 4], points_rule=PointsRule(win=2, draw=1, loss=0))

        points = {r.team_id: r.points for r in result.rows}
        assert points == {1: 2, 2: 0, 3: 1, 4: 1}

    def test_non_finished_matches_ignored_silently(self):
        matches = [_m(1, 1, 2, 5, 0, status="live"), _m(2, 1, 2, None, None, status="scheduled")]
        result = compute_standings(SCOPE, matches, [1, 2])

        assert all(r.played == 0 for r in result.rows)
        assert result.warnings == []

    def test_scope_is_copied_onto_rows(self):
        scope = StandingsScope(stage_id=7, group_id=3)
        result = compute_standings(scope, [], [1])

        row = result.rows[0]
        assert (row.stage_id, row.group_id) == (7, 3)
        assert row.to_dict()["goal_diff"] == 0


class TestDeterminism:
    def test_same_input_same_output(self):
        matches = [_m(1, 1, 2, 1, 1), _m(2, 2, 3, 2, 2), _m(3, 3, 1, 0, 0)]
        first = compute_standings(SCOPE, matches, [3, 1, 2])
        second = compute_standings(SCOPE, matches, [3, 1, 2])

        assert [r.to_dict() for r in first.rows] == [r.to_dict() for r in second.rows]

    def test_full_tie_falls_back_to_team_id(self):
        result = compute_standings(SCOPE, [], [9, 4, 6])
        assert _order(result) == [4, 6, 9]

    def test_head_to_head_cycle_still_ranks_everyone(self):
        # each team beats one other 1-0: level on every criterion
        matches = [_m(1, 1, 2, 1, 0), _m(2, 2, 3, 1, 0), _m(3, 3, 1, 1, 0)]
        first = compute_standings(SCOPE, matches, [1, 2, 3])
        second = compute_standings(SCOPE, list(reversed(matches)), [1, 2, 3])

        assert [r.rank for r in first.rows] == [1, 2, 3]
        assert _order(first) == _order(second)


class TestTieBreakers:
    def test_head_to_head_points(self):
        # X=5 and Y=2 level on points/GD/GF, X beat Y
        matches = [
            _m(1, 5, 2, 1, 0),  # X beats Y
            _m(2, 3, 5, 1, 0),  # Z beats X
            _m(3, 2, 4, 1, 0),  # Y beats W
        ]
        result = compute_standings(SCOPE, matches, [2, 3, 4, 5])

        assert _order(result) == [3, 5, 2, 4]

    def test_head_to_head_goal_diff(self):
        # two mutual matches: 1 wins 3-0, 2 wins 1-0; h2h points level, h2h GD favours 1
        matches = [
            _m(1, 1, 2, 3, 0),
            _m(2, 2, 1, 1, 0),
            _m(3, 3, 1, 3, 0),
            _m(4, 2, 3, 2, 0),
        ]
        criteria = [Criterion.points, Criterion.h2h_points, Criterion.h2h_goal_diff]
        result = compute_standings(SCOPE, matches, [1, 2, 3], tie_breakers=criteria)

        # points: 1 -> 3, 2 -> 6, 3 -> 3; 1 and 3 split by h2h (3 beat 1)
        assert _order(result) == [2, 3, 1]

        # drop points: 1 vs 2 h2h points 3-3, h2h goal diff +2 for team 1
        result = compute_standings(
            SCOPE, matches[:2], [1, 2], tie_breakers=[Criterion.h2h_points, Criterion.h2h_goal_diff]
        )
        assert _order(result) == [1, 2]

    def test_head_to_head_uses_standard_points(self):
        # a custom rule that rewards draws does not change the head-to-head replay
        matches = [_m(1, 2, 1, 1, 0)]
        result = compute_standings(
            SCOPE,
            matches,
            [1, 2],
            tie_breakers=[Criterion.h2h_points],
            points_rule=PointsRule(win=0, draw=5, loss=0),
        )
        assert _order(result) == [2, 1]

    def test_fair_play_lower_penalty_ranks_higher(self):
        # 1-1 draw leaves both teams level on everything numeric
        matches = [_m(1, 1, 2, 1, 1)]
        cards = {1: CardCounts(red=1), 2: CardCounts(yellow=2)}
        result = compute_standings(SCOPE, matches, [1, 2], card_counts=cards)

        assert _order(result) == [2, 1]

    def test_fair_play_weights(self):
        assert CardCounts(yellow=1, red=1, blue=1).penalty == 6
        assert CardCounts(blue=2).penalty == 4
        assert CardCounts().penalty == 0

    def test_fair_play_accepts_plain_dicts(self):
        cards = {1: {"yellow": 0, "red": 0, "blue": 2}, 2: {"yellow": 3, "red": 0, "blue": 0}}
        result = compute_standings(SCOPE, [_m(1, 1, 2, 0, 0)], [1, 2], card_counts=cards)

        assert _order(result) == [2, 1]

    def test_custom_order_goals_for_first(self):
        matches = [_m(1, 1, 3, 1, 0), _m(2, 2, 3, 4, 4)]
        result = compute_standings(SCOPE, matches, [1, 2, 3], tie_breakers=["goals_for", "points"])

        assert _order(result) == [2, 3, 1]


class TestParseTiebreakers:
    def test_default_when_missing(self):
        assert parse_tiebreakers(None) == list(DEFAULT_TIEBREAKERS)
        assert parse_tiebreakers([]) == list(DEFAULT_TIEBREAKERS)

    def test_strings_are_converted(self):
        assert parse_tiebreakers(["fair_play", "points"]) == [Criterion.fair_play, Criterion.points]

    def test_unknown_criterion_rejected(self):
        with pytest.raises(UnknownCriterionError):
            parse_tiebreakers(["points", "coin_toss"])

    def test_plain_string_rejected(self):
        with pytest.raises(UnknownCriterionError):
            parse_tiebreakers("points")

    def test_unknown_criterion_rejects_compute(self):
        with pytest.raises(UnknownCriterionError):
            compute_standings(SCOPE, [], [1, 2], tie_breakers=["alphabetical"])

    def test_points_rule_from_config(self):
        assert PointsRule.from_config(None) == PointsRule(3, 1, 0)
        assert PointsRule.from_config({"points": {"win": 2}}) == PointsRule(2, 1, 0)


class TestIntegrityWarnings:
    def test_empty_participants_raises(self):
        with pytest.raises(EmptyParticipantsError):
            compute_standings(SCOPE, [], [])

    @pytest.mark.parametrize(
        "match, code",
        [
            (_m(10, 1, 2, None, 1), "missing_score"),
            (_m(11, 1, 2, -1, 0), "negative_score"),
            (_m(12, 1, None, 1, 0), "missing_team"),
            (_m(13, 1, 1, 1, 0), "same_team"),
            (_m(14, 1, 99, 1, 0), "team_not_in_scope"),
        ],
    )
    def test_bad_rows_are_skipped_and_reported(self, match, code):
        result = compute_standings(SCOPE, [match, _m(1, 1, 2, 2, 0)], [1, 2])

        assert [w.code for w in result.warnings] == [code]
        assert result.warnings[0].match_id == match.id
        points = {r.team_id: r.points for r in result.rows}
        assert points == {1: 3, 2: 0}
