"""Initial schema: teams, tournaments, stages, groups, matches, discipline, standings

Revision ID: 001_initial
Revises:
Create Date: 2026-10-17 00:00:00.000000

"""

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision = "001_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "team",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("logo_url", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name"),
    )

    op.create_table(
        "tournament",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("slug", sa.String(), nullable=False),
        sa.Column("season", sa.String(), nullable=True),
        sa.Column("status", sa.String(), nullable=False, server_default="scheduled"),
        sa.Column("format", sa.String(), nullable=False, server_default="league"),
        sa.Column("winner_team_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["winner_team_id"], ["team.id"]),
        sa.UniqueConstraint("slug"),
    )

    op.create_table(
        "stage",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tournament_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("kind", sa.String(), nullable=False),
        sa.Column("ordering", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("config", sa.JSON(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["tournament_id"], ["tournament.id"]),
    )
    op.create_index("ix_stage_tournament_id", "stage", ["tournament_id"])

    op.create_table(
        "stage_group",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("stage_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("ordering", sa.Integer(), nullable=False, server_default="1"),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["stage_id"], ["stage.id"]),
    )
    op.create_index("ix_stage_group_stage_id", "stage_group", ["stage_id"])

    op.create_table(
        "tournamentteam",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tournament_id", sa.Integer(), nullable=False),
        sa.Column("team_id", sa.Integer(), nullable=False),
        sa.Column("stage_id", sa.Integer(), nullable=True),
        sa.Column("group_id", sa.Integer(), nullable=True),
        sa.Column("seed", sa.Integer(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["tournament_id"], ["tournament.id"]),
        sa.ForeignKeyConstraint(["team_id"], ["team.id"]),
        sa.ForeignKeyConstraint(["stage_id"], ["stage.id"]),
        sa.ForeignKeyConstraint(["group_id"], ["stage_group.id"]),
        sa.UniqueConstraint("tournament_id", "stage_id", "team_id", name="uq_tournament_stage_team"),
    )

    op.create_table(
        "match",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tournament_id", sa.Integer(), nullable=False),
        sa.Column("stage_id", sa.Integer(), nullable=False),
        sa.Column("group_id", sa.Integer(), nullable=True),
        sa.Column("matchday", sa.Integer(), nullable=True),
        sa.Column("round_number", sa.Integer(), nullable=True),
        sa.Column("bracket_pos", sa.Integer(), nullable=True),
        sa.Column("team_a_id", sa.Integer(), nullable=True),
        sa.Column("team_b_id", sa.Integer(), nullable=True),
        sa.Column("team_a_score", sa.Integer(), nullable=True),
        sa.Column("team_b_score", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(), nullable=False, server_default="scheduled"),
        sa.Column("winner_team_id", sa.Integer(), nullable=True),
        sa.Column("source_match_a_id", sa.Integer(), nullable=True),
        sa.Column("source_a_outcome", sa.String(), nullable=True),
        sa.Column("source_match_b_id", sa.Integer(), nullable=True),
        sa.Column("source_b_outcome", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["tournament_id"], ["tournament.id"]),
        sa.ForeignKeyConstraint(["stage_id"], ["stage.id"]),
        sa.ForeignKeyConstraint(["group_id"], ["stage_group.id"]),
        sa.ForeignKeyConstraint(["team_a_id"], ["team.id"]),
        sa.ForeignKeyConstraint(["team_b_id"], ["team.id"]),
        sa.ForeignKeyConstraint(["winner_team_id"], ["team.id"]),
        sa.ForeignKeyConstraint(["source_match_a_id"], ["match.id"]),
        sa.ForeignKeyConstraint(["source_match_b_id"], ["match.id"]),
    )
    op.create_index("ix_match_tournament_id", "match", ["tournament_id"])
    op.create_index("ix_match_stage_id", "match", ["stage_id"])
    op.create_index("ix_match_group_id", "match", ["group_id"])

    op.create_table(
        "matchdiscipline",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("match_id", sa.Integer(), nullable=False),
        sa.Column("team_id", sa.Integer(), nullable=False),
        sa.Column("yellow_cards", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("red_cards", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("blue_cards", sa.Integer(), nullable=False, server_default="0"),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["match_id"], ["match.id"]),
        sa.ForeignKeyConstraint(["team_id"], ["team.id"]),
        sa.UniqueConstraint("match_id", "team_id", name="uq_discipline_match_team"),
    )

    op.create_table(
        "stage_standing",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("stage_id", sa.Integer(), nullable=False),
        sa.Column("group_id", sa.Integer(), nullable=True),
        sa.Column("team_id", sa.Integer(), nullable=False),
        sa.Column("played", sa.Integer(), nullable=False),
        sa.Column("won", sa.Integer(), nullable=False),
        sa.Column("drawn", sa.Integer(), nullable=False),
        sa.Column("lost", sa.Integer(), nullable=False),
        sa.Column("goals_for", sa.Integer(), nullable=False),
        sa.Column("goals_against", sa.Integer(), nullable=False),
        sa.Column("goal_diff", sa.Integer(), nullable=False),
        sa.Column("points", sa.Integer(), nullable=False),
        sa.Column("rank", sa.Integer(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["stage_id"], ["stage.id"]),
        sa.ForeignKeyConstraint(["group_id"], ["stage_group.id"]),
        sa.ForeignKeyConstraint(["team_id"], ["team.id"]),
    )
    op.create_index("ix_stage_standing_stage_id", "stage_standing", ["stage_id"])
    op.create_index("ix_stage_standing_group_id", "stage_standing", ["group_id"])


def downgrade() -> None:
    op.drop_table("stage_standing")
    op.drop_table("matchdiscipline")
    op.drop_index("ix_match_group_id", table_name="match")
    op.drop_index("ix_match_stage_id", table_name="match")
    op.drop_index("ix_match_tournament_id", table_name="match")
    op.drop_table("match")
    op.drop_table("tournamentteam")
    op.drop_table("stage_group")
    op.drop_table("stage")
    op.drop_table("tournament")
    op.drop_table("team")
