import logging
from datetime import datetime, timezone
from pathlib import Path

from fastapi import FastAPI, Request, Form
from fastapi.responses import RedirectResponse, HTMLResponse, PlainTextResponse
from fastapi.templating import Jinja2Templates
from itsdangerous import URLSafeSerializer, BadSignature
from sqlalchemy import select, delete, update, func, and_
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.security import generate_password_hash, check_password_hash

from .config import APP_SECRET, ADMIN_EMAIL, ADMIN_PASSWORD, DEFAULT_SEASON, LOG_LEVEL
from .db import Base, engine, SessionLocal, unit_of_work
from .errors import AppError, NotFound, Forbidden, ValidationFailed, DeadlinePassed, \
    PredictionsAlreadySubmitted, InvalidPrediction
from .logging_config import setup_logging
from .models import User, Gameweek, Fixture, Prediction, GameweekScore, SeasonScore
from .scoring import score_gameweek, rescore_season, rank
from .store import ScoringStore

setup_logging(LOG_LEVEL)
logger = logging.getLogger(__name__)

FIXTURES_PER_GAMEWEEK = 6
MAX_PREDICTED_GOALS = 20


def ensure_admin():
    with SessionLocal() as db:
        if db.execute(select(User).where(User.email == ADMIN_EMAIL)).scalar_one_or_none():
            return
        db.add(User(
            name="admin",
            display_name="Administrator",
            email=ADMIN_EMAIL,
            password_hash=generate_password_hash(ADMIN_PASSWORD),
            is_admin=True,
        ))
        db.commit()
        logger.info("Created administrator account %s", ADMIN_EMAIL)


Base.metadata.create_all(bind=engine)
ensure_admin()

app = FastAPI()
templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))

serializer = URLSafeSerializer(APP_SECRET, salt="superior6-session")


def render(request: Request, name: str, status_code: int = 200, **context):
    return templates.TemplateResponse(request, name, context, status_code=status_code)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    return render(request, "error.html", exc.status_code, error=exc.detail)


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.error("Database error on %s %s", request.method, request.url.path, exc_info=exc)
    return render(request, "error.html", 500, error="Database error")


# ---- Session helpers ----

def get_user(request: Request, db) -> User | None:
    cookie = request.cookies.get("session")
    if not cookie:
        return None
    try:
        data = serializer.loads(cookie)
    except BadSignature:
        return None
    uid = data.get("uid") if isinstance(data, dict) else None
    if uid is None:
        return None
    return db.get(User, uid)


def require_admin(user: User):
    if not user.is_admin:
        raise Forbidden()


def login_response(user: User, target: str) -> RedirectResponse:
    resp = RedirectResponse(target, status_code=302)
    resp.set_cookie("session", serializer.dumps({"uid": user.id}), httponly=True, samesite="lax")
    return resp


def active_gameweek(db) -> Gameweek | None:
    return db.execute(select(Gameweek).where(Gameweek.is_active.is_(True)).limit(1)).scalar_one_or_none()


def gameweek_fixtures(db, gameweek_id: int) -> list[Fixture]:
    return db.execute(
        select(Fixture).where(Fixture.gameweek_id == gameweek_id).order_by(Fixture.fixture_order)
    ).scalars().all()


def parse_score(value, maximum: int | None = None) -> int | None:
    if value is None:
        return None
    value = str(value).strip()
    if not value.isdecimal():
        return None
    score = int(value)
    if maximum is not None and score > maximum:
        return None
    return score


def parse_datetime(value: str) -> datetime:
    try:
        parsed = datetime.fromisoformat(value.strip())
    except ValueError:
        raise ValidationFailed(f"Invalid date: {value!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@app.get("/health", response_class=PlainTextResponse)
def health_check():
    return "Superior 6 is running!"


@app.get("/", response_class=HTMLResponse)
def home(request: Request):
    with SessionLocal() as db:
        user = get_user(request, db)
        gw = active_gameweek(db)
        season = gw.season if gw else DEFAULT_SEASON
        top_players = rank(ScoringStore(db).season_standings(season))[:5]
        return render(request, "home.html", user=user, gameweek=gw, season=season, top_players=top_players)


# ---- Auth ----

@app.get("/register", response_class=HTMLResponse)
def register_page(request: Request):
    with SessionLocal() as db:
        if get_user(request, db):
            return RedirectResponse("/dashboard", status_code=302)
    return render(request, "register.html", error=None)


@app.post("/register")
def register(request: Request, name: str = Form(...), display_name: str = Form(...),
             email: str = Form(...), password: str = Form(...)):
    name, display_name, email = name.strip(), display_name.strip(), email.strip().lower()
    error = None
    if not 2 <= len(name) <= 255:
        error = "Name must be between 2 and 255 characters"
    elif not 2 <= len(display_name) <= 100:
        error = "Display name must be between 2 and 100 characters"
    elif "@" not in email:
        error = "Enter a valid email address"
    elif len(password) < 8:
        error = "Password must be at least 8 characters"
    if error:
        return render(request, "register.html", 400, error=error)

    with SessionLocal() as db:
        if db.execute(select(User).where(User.email == email)).scalar_one_or_none():
            return render(request, "register.html", 409, error="Email already exists")
        user = User(name=name, display_name=display_name, email=email,
                    password_hash=generate_password_hash(password))
        db.add(user)
        db.commit()
        logger.info("Registered player %s", email)
        return login_response(user, "/dashboard")


@app.get("/login", response_class=HTMLResponse)
def login_page(request: Request):
    with SessionLocal() as db:
        if get_user(request, db):
            return RedirectResponse("/dashboard", status_code=302)
    return render(request, "login.html", error=None)


@app.post("/login")
def login(request: Request, email: str = Form(...), password: str = Form(...)):
    with SessionLocal() as db:
        user = db.execute(select(User).where(User.email == email.strip().lower())).scalar_one_or_none()
        if user is None or not check_password_hash(user.password_hash, password):
            return render(request, "login.html", 401, error="Invalid email or password")
        return login_response(user, "/admin" if user.is_admin else "/dashboard")


@app.get("/logout")
def logout():
    resp = RedirectResponse("/login", status_code=302)
    resp.delete_cookie("session")
    return resp


# ---- Player pages ----

@app.get("/dashboard", response_class=HTMLResponse)
def dashboard(request: Request):
    with SessionLocal() as db:
        user = get_user(request, db)
        if not user:
            return RedirectResponse("/login", status_code=302)

        gw = active_gameweek(db)
        season = gw.season if gw else DEFAULT_SEASON
        store = ScoringStore(db)
        standings = rank(store.season_standings(season), store.players())
        position = next((s.position for s in standings if s.user_id == user.id), None)
        season_score = db.execute(
            select(SeasonScore).where(SeasonScore.user_id == user.id, SeasonScore.season == season)
        ).scalar_one_or_none()

        recent = db.execute(
            select(Gameweek, GameweekScore)
            .outerjoin(GameweekScore, and_(GameweekScore.gameweek_id == Gameweek.id, GameweekScore.user_id == user.id))
            .where(Gameweek.season == season)
            .order_by(Gameweek.week_number.desc())
            .limit(5)
        ).all()

        has_predictions = False
        if gw:
            has_predictions = db.execute(
                select(func.count(Prediction.id))
                .join(Fixture, Prediction.fixture_id == Fixture.id)
                .where(Fixture.gameweek_id == gw.id, Prediction.user_id == user.id)
            ).scalar_one() > 0

        return render(request, "dashboard.html", user=user, gameweek=gw, season=season,
                      season_score=season_score, position=position, recent=recent,
                      has_predictions=has_predictions)


@app.get("/predictions", response_class=HTMLResponse)
def predictions_page(request: Request, msg: str | None = None):
    with SessionLocal() as db:
        user = get_user(request, db)
        if not user:
            return RedirectResponse("/login", status_code=302)

        gw = active_gameweek(db)
        if not gw:
            return render(request, "predictions.html", user=user, gameweek=None, fixtures=[],
                          existing={}, msg=msg, error="No active gameweek found")

        fixtures = gameweek_fixtures(db, gw.id)
        error = None
        if len(fixtures) != FIXTURES_PER_GAMEWEEK:
            error = f"This gameweek doesn't have {FIXTURES_PER_GAMEWEEK} fixtures set up yet"
            fixtures = []

        rows = db.execute(
            select(Prediction).where(Prediction.user_id == user.id,
                                     Prediction.fixture_id.in_([fx.id for fx in fixtures]))
        ).scalars().all()
        existing = {p.fixture_id: p for p in rows}

        return render(request, "predictions.html", user=user, gameweek=gw, fixtures=fixtures,
                      existing=existing, deadline_passed=gw.deadline_passed(),
                      already_submitted=len(existing) == FIXTURES_PER_GAMEWEEK,
                      max_goals=MAX_PREDICTED_GOALS, msg=msg, error=error)


@app.post("/predictions/submit")
async def predictions_submit(request: Request):
    form = await request.form()
    with SessionLocal() as db:
        user = get_user(request, db)
        if not user:
            return RedirectResponse("/login", status_code=302)

        gw = active_gameweek(db)
        if not gw:
            raise NotFound("No active gameweek found")
        if gw.deadline_passed():
            raise DeadlinePassed()

        fixtures = gameweek_fixtures(db, gw.id)
        if len(fixtures) != FIXTURES_PER_GAMEWEEK:
            raise InvalidPrediction(f"This gameweek doesn't have {FIXTURES_PER_GAMEWEEK} fixtures set up yet")

        already = db.execute(
            select(func.count(Prediction.id)).where(Prediction.user_id == user.id,
                                                   Prediction.fixture_id.in_([fx.id for fx in fixtures]))
        ).scalar_one()
        if already:
            raise PredictionsAlreadySubmitted()

        for fx in fixtures:
            ph = parse_score(form.get(f"ph_{fx.id}"), MAX_PREDICTED_GOALS)
            pa = parse_score(form.get(f"pa_{fx.id}"), MAX_PREDICTED_GOALS)
            if ph is None or pa is None:
                raise InvalidPrediction(
                    f"Enter a score between 0 and {MAX_PREDICTED_GOALS} for {fx.home_team} v {fx.away_team}"
                )
            db.add(Prediction(user_id=user.id, fixture_id=fx.id,
                              home_score_prediction=ph, away_score_prediction=pa))
        db.commit()
        logger.info("Player %s submitted predictions for gameweek %s", user.id, gw.id)

    return RedirectResponse("/predictions?msg=Predictions saved", status_code=302)


# ---- Leaderboards ----

@app.get("/leaderboard", response_class=HTMLResponse)
def season_leaderboard(request: Request):
    with SessionLocal() as db:
        user = get_user(request, db)
        gw = active_gameweek(db)
        season = gw.season if gw else DEFAULT_SEASON
        store = ScoringStore(db)
        standings = rank(store.season_standings(season), store.players())
        return render(request, "leaderboard.html", user=user, title=f"Season {season}",
                      standings=standings, error=None)


@app.get("/leaderboard/weekly", response_class=HTMLResponse)
def weekly_leaderboard(request: Request):
    with SessionLocal() as db:
        user = get_user(request, db)
        gw = active_gameweek(db)
        if not gw:
            return render(request, "leaderboard.html", user=user, title="Weekly leaderboard",
                          standings=[], error="No active gameweek found")
        store = ScoringStore(db)
        standings = rank(store.gameweek_standings(gw.id), store.players())
        return render(request, "leaderboard.html", user=user,
                      title=f"Gameweek {gw.week_number} ({gw.season})", standings=standings, error=None)


# ---- Admin ----

@app.get("/admin", response_class=HTMLResponse)
def admin_dashboard(request: Request, msg: str | None = None):
    with SessionLocal() as db:
        user = get_user(request, db)
        if not user:
            return RedirectResponse("/login", status_code=302)
        require_admin(user)

        total_players = db.execute(select(func.count(User.id)).where(User.is_admin.is_(False))).scalar_one()
        recent = db.execute(
            select(Gameweek).order_by(Gameweek.season.desc(), Gameweek.week_number.desc()).limit(5)
        ).scalars().all()
        return render(request, "admin/dashboard.html", user=user, gameweek=active_gameweek(db),
                      total_players=total_players, recent_gameweeks=recent, msg=msg)


@app.get("/admin/gameweeks", response_class=HTMLResponse)
def admin_gameweeks(request: Request, msg: str | None = None):
    with SessionLocal() as db:
        user = get_user(request, db)
        if not user:
            return RedirectResponse("/login", status_code=302)
        require_admin(user)
        gameweeks = db.execute(
            select(Gameweek).order_by(Gameweek.season.desc(), Gameweek.week_number.desc())
        ).scalars().all()
        return render(request, "admin/gameweeks.html", user=user, gameweeks=gameweeks, msg=msg)


@app.post("/admin/gameweeks")
def admin_create_gameweek(request: Request, week_number: int = Form(...), season: str = Form(...),
                          deadline: str = Form(...)):
    season = season.strip()
    if week_number < 1:
        raise ValidationFailed("Week number must be positive")
    if not 7 <= len(season) <= 20:
        raise ValidationFailed("Season must look like 2024-25")
    deadline_at = parse_datetime(deadline)

    with SessionLocal() as db:
        user = get_user(request, db)
        if not user:
            return RedirectResponse("/login", status_code=302)
        require_admin(user)

        exists = db.execute(
            select(Gameweek).where(Gameweek.week_number == week_number, Gameweek.season == season)
        ).scalar_one_or_none()
        if exists:
            return RedirectResponse("/admin/gameweeks?msg=Gameweek already exists for this season", status_code=302)

        # only one gameweek is open at a time
        db.execute(update(Gameweek).values(is_active=False))
        db.add(Gameweek(week_number=week_number, season=season, deadline=deadline_at, is_active=True))
        db.commit()
        logger.info("Created gameweek %s of %s", week_number, season)

    return RedirectResponse("/admin/gameweeks?msg=Gameweek created", status_code=302)


@app.get("/admin/fixtures", response_class=HTMLResponse)
def admin_fixtures(request: Request, msg: str | None = None):
    with SessionLocal() as db:
        user = get_user(request, db)
        if not user:
            return RedirectResponse("/login", status_code=302)
        require_admin(user)
        gw = active_gameweek(db)
        fixtures = gameweek_fixtures(db, gw.id) if gw else []
        return render(request, "admin/fixtures.html", user=user, gameweek=gw, fixtures=fixtures,
                      slots=range(1, FIXTURES_PER_GAMEWEEK + 1), msg=msg)


@app.post("/admin/fixtures")
async def admin_set_fixtures(request: Request):
    form = await request.form()
    with SessionLocal() as db:
        user = get_user(request, db)
        if not user:
            return RedirectResponse("/login", status_code=302)
        require_admin(user)

        gw = active_gameweek(db)
        if not gw:
            raise NotFound("No active gameweek found")

        entries = []
        for order in range(1, FIXTURES_PER_GAMEWEEK + 1):
            home = (form.get(f"home_{order}") or "").strip()
            away = (form.get(f"away_{order}") or "").strip()
            kickoff = (form.get(f"kickoff_{order}") or "").strip()
            if not (home and away and kickoff):
                continue
            if not (2 <= len(home) <= 255 and 2 <= len(away) <= 255):
                raise ValidationFailed(f"Team names for fixture {order} must be between 2 and 255 characters")
            entries.append(Fixture(gameweek_id=gw.id, home_team=home, away_team=away,
                                   kickoff_time=parse_datetime(kickoff), fixture_order=order))
        if len(entries) != FIXTURES_PER_GAMEWEEK:
            return RedirectResponse(
                f"/admin/fixtures?msg=You must provide exactly {FIXTURES_PER_GAMEWEEK} fixtures", status_code=302
            )

        predicted = db.execute(
            select(func.count(Prediction.id))
            .join(Fixture, Prediction.fixture_id == Fixture.id)
            .where(Fixture.gameweek_id == gw.id)
        ).scalar_one()
        if predicted:
            raise ValidationFailed("Predictions have already been made against these fixtures")

        # replace the whole set
        db.execute(delete(Fixture).where(Fixture.gameweek_id == gw.id))
        db.add_all(entries)
        db.commit()

    return RedirectResponse("/admin/fixtures?msg=Fixtures saved", status_code=302)


@app.get("/admin/results", response_class=HTMLResponse)
def admin_results(request: Request, msg: str | None = None):
    with SessionLocal() as db:
        user = get_user(request, db)
        if not user:
            return RedirectResponse("/login", status_code=302)
        require_admin(user)
        gw = active_gameweek(db)
        fixtures = gameweek_fixtures(db, gw.id) if gw else []
        return render(request, "admin/results.html", user=user, gameweek=gw, fixtures=fixtures, msg=msg)


@app.post("/admin/results")
async def admin_submit_results(request: Request):
    form = await request.form()
    with unit_of_work() as db:
        user = get_user(request, db)
        if not user:
            return RedirectResponse("/login", status_code=302)
        require_admin(user)

        gw = active_gameweek(db)
        if not gw:
            raise NotFound("No active gameweek found")
        if gw.is_completed:
            raise ValidationFailed("Results have already been submitted for this gameweek")

        fixtures = gameweek_fixtures(db, gw.id)
        if len(fixtures) != FIXTURES_PER_GAMEWEEK:
            raise ValidationFailed(f"This gameweek needs {FIXTURES_PER_GAMEWEEK} fixtures before results")

        for fx in fixtures:
            home = parse_score(form.get(f"home_{fx.id}"))
            away = parse_score(form.get(f"away_{fx.id}"))
            if home is None or away is None:
                raise ValidationFailed(f"Enter a final score for {fx.home_team} v {fx.away_team}")
            fx.home_score, fx.away_score = home, away
        db.flush()

        score_gameweek(ScoringStore(db), gw.id)
        gw.is_completed = True
        gameweek_id = gw.id

    logger.info("Results submitted and gameweek %s scored", gameweek_id)
    return RedirectResponse("/admin/results?msg=Results saved and gameweek scored", status_code=302)


@app.post("/admin/rescore")
def admin_rescore(request: Request):
    with unit_of_work() as db:
        user = get_user(request, db)
        if not user:
            return RedirectResponse("/login", status_code=302)
        require_admin(user)

        gw = active_gameweek(db)
        season = gw.season if gw else DEFAULT_SEASON
        count = rescore_season(ScoringStore(db), season)

    logger.info("Rescored %d gameweeks of season %s", count, season)
    return RedirectResponse(f"/admin?msg=Rescored {count} gameweeks of {season}", status_code=302)
