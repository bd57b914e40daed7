from datetime import datetime
from typing import Optional

from sqlmodel import Field, SQLModel


class StageStanding(SQLModel, table=True):
    """Cached table row for one (stage, group, team). Replaced wholesale on every recompute."""

    __tablename__ = "stage_standing"

    id: Optional[int] = Field(default=None, primary_key=True)
    stage_id: int = Field(foreign_key="stage.id", index=True)
    group_id: Optional[int] = Field(default=None, foreign_key="stage_group.id", index=True)  # null for league
    team_id: int = Field(foreign_key="team.id")
    played: int = Field(default=0)
    won: int = Field(default=0)
    drawn: int = Field(default=0)
    lost: int = Field(default=0)
    goals_for: int = Field(default=0)
    goals_against: int = Field(default=0)
    goal_diff: int = Field(default=0)
    points: int = Field(default=0)
    rank: int
    updated_at: datetime = Field(default_factory=datetime.utcnow)
