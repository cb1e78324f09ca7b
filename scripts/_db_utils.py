from __future__ import annotations

import os
from contextlib import contextmanager

from sqlalchemy.orm import Session

from app.registry.db import build_engine, make_sessionmaker

DEFAULT_DATABASE_URL = "sqlite:///registry.db"


def database_url_from_env(default: str = DEFAULT_DATABASE_URL) -> str:
    return (os.environ.get("DATABASE_URL") or default).strip()


@contextmanager
def script_session(db_url: str):
    """Standalone session for CLI scripts; the engine is disposed on exit."""
    engine = build_engine(db_url)
    s: Session = make_sessionmaker(engine)()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()
        engine.dispose()
