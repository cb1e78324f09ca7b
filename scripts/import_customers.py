#!/usr/bin/env python3
"""
Import customers from a spreadsheet outside the web app.

Usage:
    python scripts/import_customers.py customers.xlsx [--chunk-size 500] [--json]

Uses DATABASE_URL (or sqlite:///registry.db). Rows already present in the
database fail their chunk; the rest of the file still imports.
"""
from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.registry.audit import record_event  # noqa: E402
from app.registry.modules.customers.importer import DEFAULT_CHUNK_SIZE, import_customers  # noqa: E402
from app.registry.modules.customers.store import CustomerStore  # noqa: E402
from scripts._db_utils import database_url_from_env, script_session  # noqa: E402


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    parser = argparse.ArgumentParser(description="Batch import customers from an .xlsx or .csv file.")
    parser.add_argument("path", help="Spreadsheet to import")
    parser.add_argument("--chunk-size", type=int, default=DEFAULT_CHUNK_SIZE)
    parser.add_argument("--json", action="store_true", help="Print the full result as JSON")
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    )

    path = Path(args.path)
    if not path.is_file():
        print(f"File not found: {path}", file=sys.stderr)
        return 2

    with script_session(database_url_from_env()) as s:
        result = import_customers(
            CustomerStore(s),
            path.read_bytes(),
            path.name,
            chunk_size=args.chunk_size,
            on_chunk=lambda n, m: print(f"chunk {n}/{m} submitted", flush=True),
        )
        if result.ok:
            record_event(
                s,
                action="customer.import",
                entity_type="Customer",
                metadata={"filename": path.name, "success_count": result.success_count, "source": "cli"},
            )

    if args.json:
        print(json.dumps(result.to_dict(), indent=2, ensure_ascii=False))
    elif result.file_error:
        print(f"Import failed: {result.file_error}", file=sys.stderr)
    else:
        print(f"{result.success_count} of {result.total_rows} rows imported.")
        for e in result.errors:
            print(f"  row {e.row_number}: {e.reason}")
        for c in result.chunk_errors:
            print(f"  chunk {c.chunk_number} (rows {c.first_row}-{c.last_row}): {c.reason}")
    return 1 if result.file_error else 0


if __name__ == "__main__":
    sys.exit(main())
