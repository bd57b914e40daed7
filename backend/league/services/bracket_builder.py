"""
Knockout bracket planning from seeded entrants.

Plans are pure: each PlannedMatch names its slots either as a direct team id
or as a (round, bracket_pos) pointer to an earlier planned match. The caller
inserts them round by round and turns pointers into source_match ids.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple, Union

SEMIS_A1_B2 = "A1-B2"
SEMIS_A1_B1 = "A1-B1"

# (round_number, bracket_pos) of the match whose winner fills the slot
Pointer = Tuple[int, int]


@dataclass
class PlannedMatch:
    round_number: int
    bracket_pos: int
    team_a_id: Optional[int] = None
    team_b_id: Optional[int] = None
    source_a: Optional[Pointer] = None
    source_b: Optional[Pointer] = None


def next_power_of_two(n: int) -> int:
    p = 1
    while p < n:
        p *= 2
    return p


def seed_order(n: int) -> List[int]:
    """Standard seeded bracket order for *n* (a power of two).

    Consecutive pairs meet in round 1 and, if chalk holds, seed 1 meets seed 2 in the final:
      4  -> [1, 4, 2, 3]
      8  -> [1, 8, 4, 5, 2, 7, 3, 6]
    """
    if n == 1:
        return [1]
    out: List[int] = []
    for s in seed_order(n // 2):
        out.append(s)
        out.append(n + 1 - s)
    return out


Entry = Union[int, Pointer, None]


def _place(entry: Entry) -> Tuple[Optional[int], Optional[Pointer]]:
    if isinstance(entry, tuple):
        return None, entry
    return entry, None


def plan_knockout(entrant_team_ids: Sequence[int]) -> List[PlannedMatch]:
    """Seeded single-elimination plan for any number of entrants (seed order = list order).

    Round 1 only holds real-vs-real pairings; a seed facing a bye goes
    straight into its round 2 slot as a direct team id.
    """
    n = len(entrant_team_ids)
    if n < 2:
        return []

    size = next_power_of_two(n)
    by_seed = {i + 1: team_id for i, team_id in enumerate(entrant_team_ids)}
    slots: List[Entry] = [by_seed.get(seed) for seed in seed_order(size)]

    plan: List[PlannedMatch] = []
    carried: List[Entry] = []
    for pos in range(1, size // 2 + 1):
        a, b = slots[2 * (pos - 1)], slots[2 * (pos - 1) + 1]
        if a is not None and b is not None:
            plan.append(PlannedMatch(round_number=1, bracket_pos=pos, team_a_id=a, team_b_id=b))
            carried.append((1, pos))
        else:
            carried.append(a if a is not None else b)

    round_number = 2
    while len(carried) >= 2:
        next_round: List[Entry] = []
        for pos in range(1, len(carried) // 2 + 1):
            team_a, source_a = _place(carried[2 * (pos - 1)])
            team_b, source_b = _place(carried[2 * (pos - 1) + 1])
            plan.append(
                PlannedMatch(
                    round_number=round_number,
                    bracket_pos=pos,
                    team_a_id=team_a,
                    team_b_id=team_b,
                    source_a=source_a,
                    source_b=source_b,
                )
            )
            next_round.append((round_number, pos))
        carried = next_round
        round_number += 1

    return plan


def plan_knockout_from_groups(
    per_group_ranked: Sequence[Sequence[int]],
    advancers_per_group: int = 2,
    semis_cross: str = SEMIS_A1_B2,
) -> List[PlannedMatch]:
    """Plan the knockout fed by group tables (each list ordered by rank).

    Two groups with two advancers each get semis plus a final:
      A1-B2: (A1 v B2), (B1 v A2)     A1-B1: (A1 v B1), (A2 v B2)
    Any other shape is tiered (all group winners, then all runners-up, ...)
    and seeded through plan_knockout.
    """
    advancers_per_group = max(1, advancers_per_group)
    top = [list(ranked[:advancers_per_group]) for ranked in per_group_ranked]

    if len(top) == 2 and advancers_per_group == 2 and len(top[0]) >= 2 and len(top[1]) >= 2:
        (a1, a2), (b1, b2) = top[0][:2], top[1][:2]
        if semis_cross == SEMIS_A1_B1:
            semis = [(a1, b1), (a2, b2)]
        else:
            semis = [(a1, b2), (b1, a2)]
        return [
            PlannedMatch(round_number=1, bracket_pos=1, team_a_id=semis[0][0], team_b_id=semis[0][1]),
            PlannedMatch(round_number=1, bracket_pos=2, team_a_id=semis[1][0], team_b_id=semis[1][1]),
            PlannedMatch(round_number=2, bracket_pos=1, source_a=(1, 1), source_b=(1, 2)),
        ]

    entrants: List[int] = []
    for tier in range(advancers_per_group):
        for ranked in top:
            if tier < len(ranked):
                entrants.append(ranked[tier])
    return plan_knockout(entrants)
