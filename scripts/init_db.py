"""
Create the registry tables (idempotent).

Usage:
    python scripts/init_db.py
"""
from __future__ import annotations

import sys
from pathlib import Path

from dotenv import load_dotenv

# Ensure repo root is on sys.path when running as a script.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.registry.db import build_engine, create_tables  # noqa: E402
from scripts._db_utils import database_url_from_env  # noqa: E402


def init_db(database_url: str | None = None) -> None:
    engine = build_engine(database_url or database_url_from_env())
    try:
        create_tables(engine)
    finally:
        engine.dispose()


def main() -> None:
    load_dotenv()
    init_db()
    print("Tables ready.", flush=True)


if __name__ == "__main__":
    main()
