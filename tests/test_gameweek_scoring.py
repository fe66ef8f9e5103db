"""Integration tests for the gameweek and season scoring passes."""

import logging

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from superior6.db import SessionLocal, unit_of_work
from superior6.errors import ValidationFailed
from superior6.models import GameweekScore, SeasonScore, Prediction
from superior6.scoring import score_gameweek, update_season_scores, rescore_season
from superior6.store import ScoringStore

PARTIAL_RESULTS = [(2, 1), (0, 0), None, None, None, None]


def gameweek_rows(db):
    rows = db.execute(select(GameweekScore).order_by(GameweekScore.user_id, GameweekScore.gameweek_id)).scalars()
    return [(r.user_id, r.gameweek_id, r.total_points, r.exact_scores, r.correct_results) for r in rows]


def season_rows(db):
    rows = db.execute(select(SeasonScore).order_by(SeasonScore.user_id)).scalars()
    return [(r.user_id, r.season, r.total_points, r.total_exact_scores, r.total_correct_results,
             r.gameweeks_played) for r in rows]


def test_two_finalized_fixtures_predicted_exactly(db, store, factory):
    user = factory.user("Alice")
    gw = factory.gameweek()
    fixtures = factory.fixtures(gw, PARTIAL_RESULTS)
    factory.predictions(user, fixtures, [(2, 1), (0, 0), (1, 0), (1, 1), (0, 3), (2, 2)])

    score_gameweek(store, gw.id)
    db.commit()

    assert gameweek_rows(db) == [(user.id, gw.id, 10, 2, 0)]
    assert season_rows(db) == [(user.id, "2024-25", 10, 2, 0, 1)]
    # unfinalized fixtures are left unscored
    awarded = db.execute(
        select(Prediction.points_awarded).order_by(Prediction.fixture_id)
    ).scalars().all()
    assert awarded == [5, 5, 0, 0, 0, 0]


def test_points_per_player(db, store, factory):
    alice = factory.user("Alice")
    bob = factory.user("Bob")
    gw = factory.gameweek()
    fixtures = factory.fixtures(gw, [(2, 1), (1, 1), (0, 2), (3, 0), (0, 0), (1, 2)])
    # Alice: exact, result, wrong, result, exact, wrong
    factory.predictions(alice, fixtures, [(2, 1), (0, 0), (2, 0), (1, 0), (0, 0), (1, 1)])
    # Bob: wrong everywhere
    factory.predictions(bob, fixtures, [(0, 1), (2, 1), (1, 1), (0, 0), (1, 0), (2, 0)])

    score_gameweek(store, gw.id)
    db.commit()

    assert gameweek_rows(db) == [
        (alice.id, gw.id, 14, 2, 2),
        (bob.id, gw.id, 0, 0, 0),
    ]


def test_players_without_predictions_get_no_row(db, store, factory):
    alice = factory.user("Alice")
    factory.user("Bob")
    gw = factory.gameweek()
    fixtures = factory.fixtures(gw, PARTIAL_RESULTS)
    factory.predictions(alice, fixtures, [(1, 0)] * 6)

    score_gameweek(store, gw.id)
    db.commit()

    assert [row[0] for row in gameweek_rows(db)] == [alice.id]


def test_scoring_twice_gives_the_same_rows(db, store, factory):
    alice = factory.user("Alice")
    bob = factory.user("Bob")
    gw = factory.gameweek()
    fixtures = factory.fixtures(gw, [(2, 1), (1, 1), (0, 2), (3, 0), (0, 0), (1, 2)])
    factory.predictions(alice, fixtures, [(2, 1), (0, 0), (2, 0), (1, 0), (0, 0), (1, 1)])
    factory.predictions(bob, fixtures, [(1, 0)] * 6)

    score_gameweek(store, gw.id)
    db.commit()
    first = (gameweek_rows(db), season_rows(db))

    score_gameweek(store, gw.id)
    db.commit()

    assert (gameweek_rows(db), season_rows(db)) == first
    assert len(db.execute(select(GameweekScore)).scalars().all()) == 2


def test_no_finalized_fixtures_is_a_no_op(db, store, factory):
    alice = factory.user("Alice")
    played = factory.gameweek(week_number=1, is_active=False)
    pending = factory.gameweek(week_number=2)
    factory.predictions(alice, factory.fixtures(played, [(1, 0)] * 6), [(1, 0)] * 6)
    factory.predictions(alice, factory.fixtures(pending), [(2, 2)] * 6)
    score_gameweek(store, played.id)
    db.commit()
    before = (gameweek_rows(db), season_rows(db))

    score_gameweek(store, pending.id)
    db.commit()

    assert (gameweek_rows(db), season_rows(db)) == before
    assert before[1] == [(alice.id, "2024-25", 30, 6, 0, 1)]


def test_season_totals_sum_gameweek_rows(db, store, factory):
    alice = factory.user("Alice")
    bob = factory.user("Bob")
    gw1 = factory.gameweek(week_number=1, is_active=False)
    gw2 = factory.gameweek(week_number=2)
    other_season = factory.gameweek(week_number=1, season="2025-26", is_active=False)

    fx1 = factory.fixtures(gw1, [(1, 0)] * 6)
    factory.predictions(alice, fx1, [(1, 0)] * 3 + [(2, 0)] * 3)   # 3 exact, 3 results
    factory.predictions(bob, fx1, [(0, 1)] * 6)                     # nothing
    fx2 = factory.fixtures(gw2, [(2, 2)] * 6)
    factory.predictions(alice, fx2, [(0, 0)] * 6)                   # 6 results
    fx3 = factory.fixtures(other_season, [(0, 0)] * 6)
    factory.predictions(alice, fx3, [(0, 0)] * 6)

    for gw in (gw1, gw2, other_season):
        score_gameweek(store, gw.id)
    db.commit()

    season = {row[0]: row for row in season_rows(db) if row[1] == "2024-25"}
    assert season[alice.id] == (alice.id, "2024-25", 33, 3, 9, 2)
    assert season[bob.id] == (bob.id, "2024-25", 0, 0, 0, 1)

    for user_id, row in season.items():
        gw_rows = [r for r in gameweek_rows(db) if r[0] == user_id and r[1] in (gw1.id, gw2.id)]
        assert row[2] == sum(r[2] for r in gw_rows)
        assert row[3] == sum(r[3] for r in gw_rows)
        assert row[4] == sum(r[4] for r in gw_rows)
        assert row[5] == len(gw_rows)


def test_update_season_scores_overwrites(db, store, factory):
    alice = factory.user("Alice")
    gw = factory.gameweek()
    db.add(SeasonScore(user_id=alice.id, season="2024-25", total_points=99,
                       total_exact_scores=9, total_correct_results=9, gameweeks_played=9))
    db.add(GameweekScore(user_id=alice.id, gameweek_id=gw.id, total_points=4,
                         exact_scores=0, correct_results=2))
    db.commit()

    update_season_scores(store, "2024-25")
    db.commit()

    assert season_rows(db) == [(alice.id, "2024-25", 4, 0, 2, 1)]


class FailingSeasonStore(ScoringStore):
    def upsert_season_score(self, *args):
        raise OperationalError("INSERT INTO season_scores", {}, Exception("database is locked"))


def test_failure_rolls_back_the_whole_pass(factory):
    alice = factory.user("Alice")
    gw = factory.gameweek()
    factory.predictions(alice, factory.fixtures(gw, [(1, 0)] * 6), [(1, 0)] * 6)

    with pytest.raises(OperationalError):
        with unit_of_work() as session:
            score_gameweek(FailingSeasonStore(session), gw.id)

    with SessionLocal() as fresh:
        assert gameweek_rows(fresh) == []
        assert season_rows(fresh) == []
        assert set(fresh.execute(select(Prediction.points_awarded)).scalars()) == {0}


def test_unit_of_work_commits(factory):
    alice = factory.user("Alice")
    gw = factory.gameweek()
    factory.predictions(alice, factory.fixtures(gw, [(1, 0)] * 6), [(1, 0)] * 6)

    with unit_of_work() as session:
        score_gameweek(ScoringStore(session), gw.id)

    with SessionLocal() as fresh:
        assert gameweek_rows(fresh) == [(alice.id, gw.id, 30, 6, 0)]


def test_rescore_season_rebuilds_caches(db, store, factory):
    alice = factory.user("Alice")
    gw1 = factory.gameweek(week_number=1, is_active=False)
    gw2 = factory.gameweek(week_number=2)
    factory.predictions(alice, factory.fixtures(gw1, [(1, 0)] * 6), [(1, 0)] * 6)
    factory.predictions(alice, factory.fixtures(gw2, PARTIAL_RESULTS), [(3, 1)] * 6)
    for gw in (gw1, gw2):
        score_gameweek(store, gw.id)
    db.commit()
    expected = (gameweek_rows(db), season_rows(db))

    for row in db.execute(select(GameweekScore)).scalars().all():
        db.delete(row)
    for row in db.execute(select(SeasonScore)).scalars().all():
        db.delete(row)
    db.commit()

    assert rescore_season(store, "2024-25") == 2
    db.commit()

    assert (gameweek_rows(db), season_rows(db)) == expected


def test_unit_of_work_logs_validation_errors_without_traceback(caplog):
    caplog.set_level(logging.INFO, logger="superior6.db")

    with pytest.raises(ValidationFailed):
        with unit_of_work():
            raise ValidationFailed("Enter a final score")

    records = [r for r in caplog.records if r.name == "superior6.db"]
    assert [(r.levelno, r.exc_info) for r in records] == [(logging.INFO, None)]
    assert "Enter a final score" in records[0].getMessage()


def test_unit_of_work_logs_storage_errors_with_traceback(caplog):
    caplog.set_level(logging.INFO, logger="superior6.db")

    with pytest.raises(OperationalError):
        with unit_of_work():
            raise OperationalError("SELECT 1", {}, Exception("database is locked"))

    records = [r for r in caplog.records if r.name == "superior6.db"]
    assert len(records) == 1
    assert records[0].levelno == logging.WARNING
    assert records[0].exc_info is not None
