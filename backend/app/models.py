from sqlalchemy import (
    Column,
    String,
    DateTime,
    ForeignKey,
    JSON,
    Integer,
    Index,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func
from .db import Base


class Team(Base):
    __tablename__ = "team"
    id = Column(String, primary_key=True)
    name = Column(String, nullable=False, unique=True)


class RuleSet(Base):
    __tablename__ = "ruleset"
    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    # camelCase keys: pointsTo, decidingPointsTo, winBy, bestOf, ...
    config = Column(JSON, nullable=False)


class Player(Base):
    __tablename__ = "player"
    id = Column(String, primary_key=True)
    team_id = Column(String, ForeignKey("team.id"), nullable=True)
    name = Column(String, nullable=False)
    number = Column(Integer, nullable=True)
    role = Column(String, nullable=True)  # "S" | "OH" | "OP" | "MB" | "L" ...
    first_name = Column(String, nullable=True)
    last_name = Column(String, nullable=True)
    nickname = Column(String, nullable=True)
    deleted_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("ix_player_team_id", "team_id"),
    )


class Match(Base):
    __tablename__ = "match"
    id = Column(String, primary_key=True)
    team_id = Column(String, ForeignKey("team.id"), nullable=True)
    ruleset_id = Column(String, ForeignKey("ruleset.id"), nullable=True)
    opponent_name = Column(String, nullable=False)
    home_away = Column(String, nullable=False, default="home")  # our side
    best_of = Column(Integer, nullable=True)
    status = Column(String, nullable=False, default="planned")
    result = Column(String, nullable=True)
    actions = Column(
        JSON().with_variant(JSONB, "postgresql"), nullable=False, default=list
    )
    played_at = Column(DateTime, nullable=True)
    location = Column(String, nullable=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime, nullable=True)
    deleted_at = Column(DateTime, nullable=True)


class MatchConvocation(Base):
    __tablename__ = "match_convocation"
    id = Column(String, primary_key=True)
    match_id = Column(String, ForeignKey("match.id"), nullable=False)
    player_id = Column(String, ForeignKey("player.id"), nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "match_id",
            "player_id",
            name="uq_match_convocation_match_id_player_id",
        ),
    )
