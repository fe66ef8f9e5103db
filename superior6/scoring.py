"""
Scoring and standings for Superior 6.

Points are awarded per prediction once a fixture has both scores set; the
per-gameweek and per-season totals are caches derived from those points and
are always recomputed wholesale, never patched.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterable

logger = logging.getLogger(__name__)

POINTS_EXACT_SCORE = 5
POINTS_CORRECT_RESULT = 2


class Outcome(str, Enum):
    HOME_WIN = "home_win"
    DRAW = "draw"
    AWAY_WIN = "away_win"


def outcome(home: int, away: int) -> Outcome:
    if home > away:
        return Outcome.HOME_WIN
    if home < away:
        return Outcome.AWAY_WIN
    return Outcome.DRAW


def points(act_home: int, act_away: int, pred_home: int, pred_away: int) -> int:
    if act_home == pred_home and act_away == pred_away:
        return POINTS_EXACT_SCORE
    if outcome(act_home, act_away) == outcome(pred_home, pred_away):
        return POINTS_CORRECT_RESULT
    return 0


@dataclass
class Tally:
    total_points: int = 0
    exact_scores: int = 0
    correct_results: int = 0

    def add(self, pts: int) -> None:
        self.total_points += pts
        if pts == POINTS_EXACT_SCORE:
            self.exact_scores += 1
        elif pts == POINTS_CORRECT_RESULT:
            self.correct_results += 1


def tally_gameweek(scored: Iterable[tuple[int, int]]) -> dict[int, Tally]:
    """Fold ``(user_id, points)`` pairs into one Tally per user."""
    totals: dict[int, Tally] = {}
    for user_id, pts in scored:
        totals.setdefault(user_id, Tally()).add(pts)
    return totals


def score_gameweek(store, gameweek_id: int) -> None:
    """
    Award points for every prediction on a finalized fixture of the gameweek,
    upsert each player's gameweek score, then refresh the season totals.

    A gameweek without finalized fixtures is left alone. Storage errors are
    not caught here; run the pass inside ``db.unit_of_work()`` so a failure
    leaves nothing half-written. Re-running on unchanged data is harmless.
    """
    fixtures = {fx.id: fx for fx in store.finalized_fixtures(gameweek_id)}
    if not fixtures:
        logger.info("Gameweek %s has no finalized fixtures, nothing to score", gameweek_id)
        return

    scored = []
    for pred in store.predictions_for_fixtures(list(fixtures)):
        fx = fixtures[pred.fixture_id]
        pts = points(fx.home_score, fx.away_score, pred.home_score_prediction, pred.away_score_prediction)
        store.set_prediction_points(pred.id, pts)
        scored.append((pred.user_id, pts))

    totals = tally_gameweek(scored)
    for user_id, tally in totals.items():
        store.upsert_gameweek_score(
            user_id, gameweek_id, tally.total_points, tally.exact_scores, tally.correct_results
        )
    logger.info(
        "Scored gameweek %s: %d fixtures, %d predictions, %d players",
        gameweek_id, len(fixtures), len(scored), len(totals),
    )

    update_season_scores(store, store.season_of(gameweek_id))


def update_season_scores(store, season: str) -> None:
    totals: dict[int, list[int]] = {}
    for row in store.gameweek_scores_for_season(season):
        acc = totals.setdefault(row.user_id, [0, 0, 0, 0])
        acc[0] += row.total_points
        acc[1] += row.exact_scores
        acc[2] += row.correct_results
        acc[3] += 1

    for user_id, (total_points, exact_scores, correct_results, played) in totals.items():
        store.upsert_season_score(user_id, season, total_points, exact_scores, correct_results, played)
    logger.info("Updated season %s totals for %d players", season, len(totals))


def rescore_season(store, season: str) -> int:
    """Replay the scoring pass over every gameweek of a season. Returns the gameweek count."""
    gameweek_ids = store.gameweek_ids_for_season(season)
    for gameweek_id in gameweek_ids:
        score_gameweek(store, gameweek_id)
    return len(gameweek_ids)


# ---- Standings ----

@dataclass
class Standing:
    user_id: int
    display_name: str
    total_points: int = 0
    exact_scores: int = 0
    correct_results: int = 0
    position: int = 0


def rank(rows: Iterable[Standing], users: Iterable[tuple[int, str]] | None = None) -> list[Standing]:
    """
    Order standings by points, then exact scores (both descending), then
    display name. Positions run 1, 2, 3... in that order, so tied players get
    consecutive positions rather than a shared one.

    ``users`` is the full player population as ``(user_id, display_name)``;
    players missing from ``rows`` are added with zero totals.
    """
    standings = list(rows)
    if users is not None:
        seen = {s.user_id for s in standings}
        standings.extend(Standing(user_id, name) for user_id, name in users if user_id not in seen)

    ordered = sorted(standings, key=lambda s: (-s.total_points, -s.exact_scores, s.display_name))
    return [
        Standing(s.user_id, s.display_name, s.total_points, s.exact_scores, s.correct_results, position)
        for position, s in enumerate(ordered, start=1)
    ]
