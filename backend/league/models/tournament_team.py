from typing import Optional

from sqlalchemy import UniqueConstraint as SAUniqueConstraint
from sqlmodel import Field, SQLModel


class TournamentTeam(SQLModel, table=True):
    """Team participation in a tournament, optionally pinned to a stage and group."""

    __table_args__ = (
        SAUniqueConstraint("tournament_id", "stage_id", "team_id", name="uq_tournament_stage_team"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    tournament_id: int = Field(foreign_key="tournament.id", index=True)
    team_id: int = Field(foreign_key="team.id")
    stage_id: Optional[int] = Field(default=None, foreign_key="stage.id", index=True)
    group_id: Optional[int] = Field(default=None, foreign_key="stage_group.id")
    seed: Optional[int] = Field(default=None)  # 1-based, 1 = highest
