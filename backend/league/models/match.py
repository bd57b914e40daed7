from datetime import datetime
from typing import Optional

from sqlmodel import Field, SQLModel

MATCH_SCHEDULED = "scheduled"
MATCH_LIVE = "live"
MATCH_FINISHED = "finished"
MATCH_POSTPONED = "postponed"
MATCH_CANCELED = "canceled"
MATCH_STATUSES = (MATCH_SCHEDULED, MATCH_LIVE, MATCH_FINISHED, MATCH_POSTPONED, MATCH_CANCELED)

OUTCOME_WINNER = "winner"
OUTCOME_LOSER = "loser"


class Match(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    tournament_id: int = Field(foreign_key="tournament.id", index=True)
    stage_id: int = Field(foreign_key="stage.id", index=True)
    group_id: Optional[int] = Field(default=None, foreign_key="stage_group.id", index=True)
    matchday: Optional[int] = Field(default=None)
    round_number: Optional[int] = Field(default=None)  # knockout round (1 = first)
    bracket_pos: Optional[int] = Field(default=None)  # 1-based position within round

    # Team slots (nullable - knockout slots start unresolved)
    team_a_id: Optional[int] = Field(default=None, foreign_key="team.id")
    team_b_id: Optional[int] = Field(default=None, foreign_key="team.id")
    team_a_score: Optional[int] = Field(default=None)
    team_b_score: Optional[int] = Field(default=None)

    status: str = Field(default=MATCH_SCHEDULED)  # scheduled | live | finished | postponed | canceled
    # null on a finished match means a draw
    winner_team_id: Optional[int] = Field(default=None, foreign_key="team.id")

    # Upstream match -> team slot, filled on finalization of the source
    source_match_a_id: Optional[int] = Field(default=None, foreign_key="match.id")
    source_a_outcome: Optional[str] = Field(default=None)  # "winner" | "loser"
    source_match_b_id: Optional[int] = Field(default=None, foreign_key="match.id")
    source_b_outcome: Optional[str] = Field(default=None)

    created_at: datetime = Field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = Field(default=None)
