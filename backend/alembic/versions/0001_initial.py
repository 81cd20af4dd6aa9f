from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def _json():
    return sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def upgrade():
    op.create_table(
        "team",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("code", sa.String(), nullable=False, unique=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("short_name", sa.String(length=3), nullable=False),
        sa.Column("group", sa.String(length=1), nullable=True),
        sa.Column("captain_id", sa.String(), nullable=True),
        sa.Column("coach", sa.String(), nullable=True),
        sa.Column("deleted_at", sa.DateTime(), nullable=True),
        sa.Column("matches_played", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("matches_won", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("matches_lost", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("matches_tied", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("matches_no_result", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("net_run_rate", sa.Float(), nullable=False, server_default="0"),
        sa.Column("runs_scored", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("balls_faced", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("runs_conceded", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("balls_bowled", sa.Integer(), nullable=False, server_default="0"),
    )
    op.create_table(
        "player",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("team_id", sa.String(), sa.ForeignKey("team.id"), nullable=True),
        sa.Column("role", sa.String(), nullable=True),
        sa.Column("jersey_number", sa.Integer(), nullable=True),
        sa.Column("batting_stats", sa.JSON(), nullable=False, server_default="{}"),
        sa.Column("bowling_stats", sa.JSON(), nullable=False, server_default="{}"),
        sa.Column("deleted_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_player_team_id", "player", ["team_id"])
    op.create_table(
        "match",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("code", sa.String(), nullable=False, unique=True),
        sa.Column("match_number", sa.Integer(), nullable=False),
        sa.Column("team1_id", sa.String(), sa.ForeignKey("team.id"), nullable=False),
        sa.Column("team2_id", sa.String(), sa.ForeignKey("team.id"), nullable=False),
        sa.Column("venue", sa.String(), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("start_time", sa.String(), nullable=False),
        sa.Column("match_type", sa.String(), nullable=False, server_default="group"),
        sa.Column("overs", sa.Integer(), nullable=False, server_default="20"),
        sa.Column("status", sa.String(), nullable=False, server_default="scheduled"),
        sa.Column("toss_winner_id", sa.String(), sa.ForeignKey("team.id"), nullable=True),
        sa.Column("toss_decision", sa.String(), nullable=True),
        sa.Column("current_innings", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("innings", _json(), nullable=False, server_default="[]"),
        sa.Column("result", _json(), nullable=True),
        sa.Column("stream_link", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column("deleted_at", sa.DateTime(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
    )
    op.create_index("ix_match_status", "match", ["status"])
    op.create_index("ix_match_date_start", "match", ["date", "start_time"])
    op.create_index("ix_match_teams", "match", ["team1_id", "team2_id"])
    op.create_table(
        "match_audit_log",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column(
            "match_id",
            sa.String(),
            sa.ForeignKey("match.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("actor_role", sa.String(), nullable=True),
        sa.Column("actor", sa.String(), nullable=True),
        sa.Column("action", sa.String(), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_match_audit_log_match_id", "match_audit_log", ["match_id"])


def downgrade():
    op.drop_index("ix_match_audit_log_match_id", table_name="match_audit_log")
    op.drop_table("match_audit_log")
    op.drop_index("ix_match_teams", table_name="match")
    op.drop_index("ix_match_date_start", table_name="match")
    op.drop_index("ix_match_status", table_name="match")
    op.drop_table("match")
    op.drop_index("ix_player_team_id", table_name="player")
    op.drop_table("player")
    op.drop_table("team")
