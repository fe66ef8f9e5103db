from sqlalchemy import select, update
from sqlalchemy.orm import Session

from .models import User, Gameweek, Fixture, Prediction, GameweekScore, SeasonScore, utc_now
from .scoring import Standing


class ScoringStore:
    """Reads and writes the scoring passes need, on top of one SQLAlchemy session.

    Writes are flushed straight away so later reads in the same transaction
    see them. Committing is left to whoever owns the session.
    """

    def __init__(self, db: Session):
        self.db = db

    def finalized_fixtures(self, gameweek_id: int) -> list[Fixture]:
        return self.db.execute(
            select(Fixture)
            .where(
                Fixture.gameweek_id == gameweek_id,
                Fixture.home_score.is_not(None),
                Fixture.away_score.is_not(None),
            )
            .order_by(Fixture.fixture_order)
        ).scalars().all()

    def predictions_for_fixtures(self, fixture_ids: list[int]) -> list[Prediction]:
        if not fixture_ids:
            return []
        return self.db.execute(
            select(Prediction).where(Prediction.fixture_id.in_(fixture_ids)).order_by(Prediction.id)
        ).scalars().all()

    def set_prediction_points(self, prediction_id: int, points: int) -> None:
        self.db.execute(
            update(Prediction).where(Prediction.id == prediction_id).values(points_awarded=points)
        )

    def upsert_gameweek_score(self, user_id: int, gameweek_id: int,
                              total_points: int, exact_scores: int, correct_results: int) -> None:
        row = self.db.execute(
            select(GameweekScore).where(GameweekScore.user_id == user_id, GameweekScore.gameweek_id == gameweek_id)
        ).scalar_one_or_none()
        if row is None:
            row = GameweekScore(user_id=user_id, gameweek_id=gameweek_id)
            self.db.add(row)
        row.total_points = total_points
        row.exact_scores = exact_scores
        row.correct_results = correct_results
        row.updated_at = utc_now()
        self.db.flush()

    def season_of(self, gameweek_id: int) -> str:
        return self.db.execute(select(Gameweek.season).where(Gameweek.id == gameweek_id)).scalar_one()

    def gameweek_scores_for_season(self, season: str) -> list[GameweekScore]:
        return self.db.execute(
            select(GameweekScore)
            .join(Gameweek, GameweekScore.gameweek_id == Gameweek.id)
            .where(Gameweek.season == season)
        ).scalars().all()

    def upsert_season_score(self, user_id: int, season: str, total_points: int,
                            total_exact_scores: int, total_correct_results: int, gameweeks_played: int) -> None:
        row = self.db.execute(
            select(SeasonScore).where(SeasonScore.user_id == user_id, SeasonScore.season == season)
        ).scalar_one_or_none()
        if row is None:
            row = SeasonScore(user_id=user_id, season=season)
            self.db.add(row)
        row.total_points = total_points
        row.total_exact_scores = total_exact_scores
        row.total_correct_results = total_correct_results
        row.gameweeks_played = gameweeks_played
        row.updated_at = utc_now()
        self.db.flush()

    def gameweek_ids_for_season(self, season: str) -> list[int]:
        return self.db.execute(
            select(Gameweek.id).where(Gameweek.season == season).order_by(Gameweek.week_number)
        ).scalars().all()

    # ---- leaderboard reads ----

    def players(self) -> list[tuple[int, str]]:
        rows = self.db.execute(
            select(User.id, User.display_name).where(User.is_admin.is_(False)).order_by(User.display_name)
        ).all()
        return [(r.id, r.display_name) for r in rows]

    def gameweek_standings(self, gameweek_id: int) -> list[Standing]:
        rows = self.db.execute(
            select(GameweekScore, User.display_name)
            .join(User, GameweekScore.user_id == User.id)
            .where(GameweekScore.gameweek_id == gameweek_id, User.is_admin.is_(False))
        ).all()
        return [
            Standing(gs.user_id, name, gs.total_points, gs.exact_scores, gs.correct_results)
            for gs, name in rows
        ]

    def season_standings(self, season: str) -> list[Standing]:
        rows = self.db.execute(
            select(SeasonScore, User.display_name)
            .join(User, SeasonScore.user_id == User.id)
            .where(SeasonScore.season == season, User.is_admin.is_(False))
        ).all()
        return [
            Standing(ss.user_id, name, ss.total_points, ss.total_exact_scores, ss.total_correct_results)
            for ss, name in rows
        ]
