"""Pytest configuration and fixtures."""

import os
import tempfile
from datetime import datetime, timedelta, timezone

# Settings are read at import time, so point them at a scratch database first.
_tmp_dir = tempfile.mkdtemp(prefix="superior6-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_tmp_dir, 'test.db')}"
os.environ["ADMIN_EMAIL"] = "admin@example.com"
os.environ["ADMIN_PASSWORD"] = "admin-password"
os.environ["LOG_LEVEL"] = "WARNING"

import pytest

from superior6.db import Base, engine, SessionLocal
from superior6.models import User, Gameweek, Fixture, Prediction
from superior6.store import ScoringStore

TEAMS = [
    ("Arsenal", "Chelsea"),
    ("Liverpool", "Everton"),
    ("Leeds", "Fulham"),
    ("Brentford", "Burnley"),
    ("Wolves", "Spurs"),
    ("Newcastle", "Sunderland"),
]


class Factory:
    """Builds committed rows for a test."""

    def __init__(self, db):
        self.db = db
        self._users = 0

    def user(self, display_name, is_admin=False):
        self._users += 1
        user = User(
            name=display_name,
            display_name=display_name,
            email=f"player{self._users}@example.com",
            password_hash="x",
            is_admin=is_admin,
        )
        self.db.add(user)
        self.db.commit()
        return user

    def gameweek(self, week_number=1, season="2024-25", deadline=None, is_active=True):
        gw = Gameweek(
            week_number=week_number,
            season=season,
            deadline=deadline or datetime.now(timezone.utc) + timedelta(days=2),
            is_active=is_active,
        )
        self.db.add(gw)
        self.db.commit()
        return gw

    def fixtures(self, gameweek, results=None):
        """Six fixtures; ``results`` holds a (home, away) pair or None per fixture."""
        results = results or [None] * len(TEAMS)
        kickoff = datetime(2024, 8, 17, 15, 0, tzinfo=timezone.utc)
        fixtures = []
        for order, ((home, away), result) in enumerate(zip(TEAMS, results), start=1):
            fx = Fixture(
                gameweek_id=gameweek.id,
                home_team=home,
                away_team=away,
                kickoff_time=kickoff,
                fixture_order=order,
                home_score=result[0] if result else None,
                away_score=result[1] if result else None,
            )
            self.db.add(fx)
            fixtures.append(fx)
        self.db.commit()
        return fixtures

    def predictions(self, user, fixtures, scores):
        preds = [
            Prediction(user_id=user.id, fixture_id=fx.id,
                       home_score_prediction=home, away_score_prediction=away)
            for fx, (home, away) in zip(fixtures, scores)
        ]
        self.db.add_all(preds)
        self.db.commit()
        return preds


@pytest.fixture(autouse=True)
def fresh_schema():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db():
    with SessionLocal() as session:
        yield session


@pytest.fixture
def store(db):
    return ScoringStore(db)


@pytest.fixture
def factory(db):
    return Factory(db)
