from sqlalchemy import (
    Column,
    String,
    DateTime,
    ForeignKey,
    JSON,
    Integer,
    Float,
    Index,
    Date,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func
from .db import Base


def _json():
    return JSON().with_variant(JSONB, "postgresql")


class Team(Base):
    __tablename__ = "team"
    id = Column(String, primary_key=True)
    code = Column(String, nullable=False, unique=True)  # e.g. "MPGB"
    name = Column(String, nullable=False)
    short_name = Column(String(3), nullable=False)
    group = Column(String(1), nullable=True)  # "A" | "B" | "C" | "D"
    captain_id = Column(String, nullable=True)
    coach = Column(String, nullable=True)
    deleted_at = Column(DateTime, nullable=True)

    # standings, recomputed from completed matches
    matches_played = Column(Integer, nullable=False, default=0)
    matches_won = Column(Integer, nullable=False, default=0)
    matches_lost = Column(Integer, nullable=False, default=0)
    matches_tied = Column(Integer, nullable=False, default=0)
    matches_no_result = Column(Integer, nullable=False, default=0)
    points = Column(Integer, nullable=False, default=0)
    net_run_rate = Column(Float, nullable=False, default=0.0)
    runs_scored = Column(Integer, nullable=False, default=0)
    balls_faced = Column(Integer, nullable=False, default=0)
    runs_conceded = Column(Integer, nullable=False, default=0)
    balls_bowled = Column(Integer, nullable=False, default=0)


class Player(Base):
    __tablename__ = "player"
    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    team_id = Column(String, ForeignKey("team.id"), nullable=True)
    role = Column(String, nullable=True)  # batsman | bowler | all-rounder | wicket-keeper
    jersey_number = Column(Integer, nullable=True)
    batting_stats = Column(JSON, nullable=False, default=dict)
    bowling_stats = Column(JSON, nullable=False, default=dict)
    deleted_at = Column(DateTime, nullable=True)

    __table_args__ = (Index("ix_player_team_id", "team_id"),)


class Match(Base):
    __tablename__ = "match"
    id = Column(String, primary_key=True)
    code = Column(String, nullable=False, unique=True)  # e.g. "M001"
    match_number = Column(Integer, nullable=False)
    team1_id = Column(String, ForeignKey("team.id"), nullable=False)
    team2_id = Column(String, ForeignKey("team.id"), nullable=False)
    venue = Column(String, nullable=False)
    date = Column(Date, nullable=False)
    start_time = Column(String, nullable=False)
    match_type = Column(String, nullable=False, default="group")
    overs = Column(Integer, nullable=False, default=20)
    status = Column(String, nullable=False, default="scheduled")
    toss_winner_id = Column(String, ForeignKey("team.id"), nullable=True)
    toss_decision = Column(String, nullable=True)  # "bat" | "bowl"
    current_innings = Column(Integer, nullable=False, default=1)
    innings = Column(_json(), nullable=False, default=list)
    result = Column(_json(), nullable=True)
    stream_link = Column(String, nullable=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)
    deleted_at = Column(DateTime, nullable=True)
    version = Column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("ix_match_status", "status"),
        Index("ix_match_date_start", "date", "start_time"),
        Index("ix_match_teams", "team1_id", "team2_id"),
    )


class MatchAuditLog(Base):
    __tablename__ = "match_audit_log"
    id = Column(String, primary_key=True)
    match_id = Column(String, ForeignKey("match.id", ondelete="CASCADE"), nullable=False)
    actor_role = Column(String, nullable=True)
    actor = Column(String, nullable=True)
    action = Column(String, nullable=False)
    metadata_json = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)

    __table_args__ = (Index("ix_match_audit_log_match_id", "match_id"),)
