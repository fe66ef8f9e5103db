import logging
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

from .config import DATABASE_URL
from .errors import AppError

logger = logging.getLogger(__name__)

connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}
engine = create_engine(DATABASE_URL, connect_args=connect_args)
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
Base = declarative_base()


@contextmanager
def unit_of_work():
    """One transaction: commit when the block exits cleanly, roll back otherwise."""
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except AppError as exc:
        logger.info("Rolling back unit of work: %s", exc.detail)
        db.rollback()
        raise
    except Exception:
        logger.warning("Rolling back unit of work", exc_info=True)
        db.rollback()
        raise
    finally:
        db.close()
