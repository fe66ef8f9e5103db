from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, Integer, String, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.sql import func
from .db import Base


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    # SQLite hands timestamps back naive; they are stored as UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class User(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    display_name = Column(String(100), nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    password_hash = Column(String(255), nullable=False)
    is_admin = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class Gameweek(Base):
    __tablename__ = "gameweeks"
    id = Column(Integer, primary_key=True)
    week_number = Column(Integer, nullable=False)
    season = Column(String(20), index=True, nullable=False)
    deadline = Column(DateTime(timezone=True), nullable=False)
    is_active = Column(Boolean, nullable=False, default=False)
    is_completed = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (UniqueConstraint("week_number", "season", name="uq_gameweek_week_season"),)

    def deadline_passed(self, now: datetime | None = None) -> bool:
        return as_utc(self.deadline) <= (now or utc_now())


class Fixture(Base):
    __tablename__ = "fixtures"
    id = Column(Integer, primary_key=True)
    gameweek_id = Column(Integer, ForeignKey("gameweeks.id"), index=True, nullable=False)
    home_team = Column(String(255), nullable=False)
    away_team = Column(String(255), nullable=False)
    kickoff_time = Column(DateTime(timezone=True), nullable=False)
    home_score = Column(Integer, nullable=True)
    away_score = Column(Integer, nullable=True)
    fixture_order = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (UniqueConstraint("gameweek_id", "fixture_order", name="uq_fixture_gameweek_order"),)

    @property
    def is_finalized(self) -> bool:
        return self.home_score is not None and self.away_score is not None


class Prediction(Base):
    __tablename__ = "predictions"
    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=False)
    fixture_id = Column(Integer, ForeignKey("fixtures.id"), index=True, nullable=False)
    home_score_prediction = Column(Integer, nullable=False)
    away_score_prediction = Column(Integer, nullable=False)
    points_awarded = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (UniqueConstraint("user_id", "fixture_id", name="uq_prediction_user_fixture"),)


class GameweekScore(Base):
    __tablename__ = "gameweek_scores"
    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=False)
    gameweek_id = Column(Integer, ForeignKey("gameweeks.id"), index=True, nullable=False)
    total_points = Column(Integer, nullable=False, default=0)
    exact_scores = Column(Integer, nullable=False, default=0)
    correct_results = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (UniqueConstraint("user_id", "gameweek_id", name="uq_gameweek_score_user_gameweek"),)


class SeasonScore(Base):
    __tablename__ = "season_scores"
    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=False)
    season = Column(String(20), index=True, nullable=False)
    total_points = Column(Integer, nullable=False, default=0)
    total_exact_scores = Column(Integer, nullable=False, default=0)
    total_correct_results = Column(Integer, nullable=False, default=0)
    gameweeks_played = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (UniqueConstraint("user_id", "season", name="uq_season_score_user_season"),)
