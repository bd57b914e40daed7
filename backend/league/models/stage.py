from typing import TYPE_CHECKING, Any, Dict, List, Optional

from sqlalchemy import JSON
from sqlmodel import Column, Field, Relationship, SQLModel

if TYPE_CHECKING:
    from league.models.tournament import Tournament

STAGE_LEAGUE = "league"
STAGE_GROUPS = "groups"
STAGE_KNOCKOUT = "knockout"


class Stage(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    tournament_id: int = Field(foreign_key="tournament.id", index=True)
    name: str
    kind: str  # "league" | "groups" | "knockout"
    ordering: int = Field(default=1)
    # tiebreakers, points overrides, from_stage_id and knockout seeding knobs
    config: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON, nullable=True))

    # Relationships
    tournament: "Tournament" = Relationship(back_populates="stages")
    groups: List["StageGroup"] = Relationship(back_populates="stage")

    @property
    def is_table_stage(self) -> bool:
        return self.kind in (STAGE_LEAGUE, STAGE_GROUPS)


class StageGroup(SQLModel, table=True):
    __tablename__ = "stage_group"

    id: Optional[int] = Field(default=None, primary_key=True)
    stage_id: int = Field(foreign_key="stage.id", index=True)
    name: str
    ordering: int = Field(default=1)

    stage: "Stage" = Relationship(back_populates="groups")
