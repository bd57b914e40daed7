from typing import Optional

from sqlalchemy import UniqueConstraint as SAUniqueConstraint
from sqlmodel import Field, SQLModel


class MatchDiscipline(SQLModel, table=True):
    """Card totals one team collected in one match."""

    __table_args__ = (SAUniqueConstraint("match_id", "team_id", name="uq_discipline_match_team"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    match_id: int = Field(foreign_key="match.id", index=True)
    team_id: int = Field(foreign_key="team.id")
    yellow_cards: int = Field(default=0)
    red_cards: int = Field(default=0)
    blue_cards: int = Field(default=0)
