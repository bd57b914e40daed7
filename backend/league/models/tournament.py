from datetime import datetime
from typing import TYPE_CHECKING, List, Optional

from sqlmodel import Field, Relationship, SQLModel

if TYPE_CHECKING:
    from league.models.stage import Stage

TOURNAMENT_STATUSES = ("scheduled", "running", "completed", "archived")
TOURNAMENT_FORMATS = ("league", "groups", "knockout", "mixed")


class Tournament(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    slug: str = Field(index=True, unique=True)
    season: Optional[str] = Field(default=None)
    status: str = Field(default="scheduled")  # scheduled | running | completed | archived
    format: str = Field(default="league")  # league | groups | knockout | mixed
    winner_team_id: Optional[int] = Field(default=None, foreign_key="team.id")
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow, sa_column_kwargs={"onupdate": datetime.utcnow})

    # Relationships
    stages: List["Stage"] = Relationship(back_populates="tournament")
