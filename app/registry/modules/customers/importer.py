"""
Spreadsheet batch import for customers.

Pipeline (one invocation, strictly in file order):

    IDLE -> READING -> ROW_VALIDATION -> SUBMITTING -> DONE

- READING: first sheet of an .xlsx (openpyxl) or a .csv, headers on row 1.
  An unreadable file aborts straight to DONE with a single file-level error.
- ROW_VALIDATION: each row becomes exactly one outcome, Accepted or Rejected.
  Row problems are data, never exceptions.
- In-file dedup: the first accepted row per national ID wins; later ones are
  rejected as duplicates so every data row is accounted for in the result.
- SUBMITTING: accepted records go to the store in fixed-size chunks, one at a
  time. A failed chunk is recorded and the next chunk still runs. Uniqueness
  against rows already in the database is enforced by the store.
"""

from __future__ import annotations

import csv
import enum
import io
import logging
import re
import zipfile
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from xml.etree.ElementTree import ParseError
from typing import Any, Callable, Iterable, Sequence, Union

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from app.registry.modules.customers.store import CustomerStore, NewCustomer, StoreError
from app.registry.modules.customers.utils import derive_age, digits_only, normalize_text, validate_national_id

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 500
MIN_BIRTH_YEAR = 1900
MAX_AGE = 150

# Spreadsheet serial day 1 is 1900-01-01 only on paper: the format counts a
# 1900-02-29 that never existed, so the effective epoch is 1899-12-30.
SERIAL_EPOCH = date(1899, 12, 30)

REASON_MISSING_FIELDS = "missing required fields"
REASON_INVALID_ID = "invalid national ID"
REASON_INVALID_BIRTH_DATE = "invalid birth date"
REASON_FUTURE_BIRTH_DATE = "birth date in the future"
REASON_INVALID_AGE = "invalid derived age"
REASON_DUPLICATE_ID = "duplicate national ID in file"

# Normalized header text -> field. Headers are compared after normalize_header().
HEADER_ALIASES: dict[str, tuple[str, ...]] = {
    "full_name": ("name", "full name", "customer name", "nome", "nome completo"),
    "national_id": ("national id", "id number", "cpf"),
    "phone_primary": ("phone", "phone 1", "phone1", "primary phone", "phone primary", "telefone", "telefone 1", "telefone1"),
    "phone_secondary": ("phone 2", "phone2", "secondary phone", "phone secondary", "telefone 2", "telefone2"),
    "birth_date": ("birth date", "birthdate", "date of birth", "dob", "data de nascimento", "data nascimento", "nascimento"),
    "external_note": ("note", "notes", "external note", "wizebot"),
}

REQUIRED_FIELDS = ("full_name", "national_id", "phone_primary", "birth_date")

_FIELD_LABELS = {
    "full_name": "name",
    "national_id": "national ID",
    "phone_primary": "phone",
    "birth_date": "birth date",
}

_BR_DATE_RE = re.compile(r"^(\d{2})/(\d{2})/(\d{4})$")
_ISO_DATE_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")

# lxml parse errors subclass SyntaxError, like ElementTree's ParseError.
_XLSX_READ_ERRORS = (InvalidFileException, zipfile.BadZipFile, KeyError, OSError, ValueError, ParseError, SyntaxError)


class ImportFileError(ValueError):
    pass


class ImportState(enum.Enum):
    IDLE = "idle"
    READING = "reading"
    ROW_VALIDATION = "row_validation"
    SUBMITTING = "submitting"
    DONE = "done"


@dataclass(frozen=True)
class SheetRow:
    row_number: int  # 1-based spreadsheet row; the header is row 1
    raw: dict[str, Any]  # original header text -> cell value
    values: dict[str, Any]  # field -> cell value


@dataclass(frozen=True)
class Accepted:
    row_number: int
    record: NewCustomer
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Rejected:
    row_number: int
    reason: str
    raw: dict[str, Any]


RowOutcome = Union[Accepted, Rejected]


@dataclass(frozen=True)
class RowError:
    row_number: int
    reason: str
    raw: dict[str, Any]

    def to_dict(self) -> dict:
        return {
            "row_number": self.row_number,
            "reason": self.reason,
            "raw_row": {k: _jsonable(v) for k, v in self.raw.items()},
        }


@dataclass(frozen=True)
class ChunkError:
    chunk_number: int  # 1-based
    first_row: int
    last_row: int
    record_count: int
    reason: str

    def to_dict(self) -> dict:
        return {
            "chunk_number": self.chunk_number,
            "first_row": self.first_row,
            "last_row": self.last_row,
            "record_count": self.record_count,
            "reason": self.reason,
        }


@dataclass
class ImportResult:
    total_rows: int = 0
    success_count: int = 0
    errors: list[RowError] = field(default_factory=list)
    chunk_errors: list[ChunkError] = field(default_factory=list)
    file_error: str | None = None

    @property
    def ok(self) -> bool:
        return self.file_error is None

    def to_dict(self) -> dict:
        return {
            "total_rows": self.total_rows,
            "success_count": self.success_count,
            "error_count": len(self.errors),
            "errors": [e.to_dict() for e in self.errors],
            "chunk_errors": [e.to_dict() for e in self.chunk_errors],
            "file_error": self.file_error,
        }


def _jsonable(v: Any) -> Any:
    if v is None or isinstance(v, (str, int, float, bool)):
        return v
    if isinstance(v, (datetime, date, time)):
        return v.isoformat()
    return str(v)


# ---------------------------------------------------------------------------
# Reading
# ---------------------------------------------------------------------------


def normalize_header(h: Any) -> str:
    s = str(h or "").strip().lower().replace("_", " ")
    return re.sub(r"\s+", " ", s)


def map_headers(headers: Sequence[Any]) -> dict[int, str]:
    """Column index -> field, for the headers that match a known alias."""
    col_map: dict[int, str] = {}
    taken: set[str] = set()
    for i, h in enumerate(headers):
        key = normalize_header(h)
        if not key:
            continue
        for field_name, options in HEADER_ALIASES.items():
            if key in options and field_name not in taken:
                col_map[i] = field_name
                taken.add(field_name)
                break
    return col_map


def _is_blank(v: Any) -> bool:
    return v is None or (isinstance(v, str) and not v.strip())


def _build_rows(headers: Sequence[Any], data: Iterable[Sequence[Any]]) -> list[SheetRow]:
    col_map = map_headers(headers)
    labels = [str(h).strip() if h is not None else f"column_{i + 1}" for i, h in enumerate(headers)]
    rows: list[SheetRow] = []
    for idx, vals in enumerate(data, start=2):  # 1 = header
        vals = list(vals)
        if all(_is_blank(v) for v in vals):
            continue
        raw = {labels[i]: vals[i] if i < len(vals) else None for i in range(len(labels))}
        values = {fname: (vals[i] if i < len(vals) else None) for i, fname in col_map.items()}
        rows.append(SheetRow(row_number=idx, raw=raw, values=values))
    return rows


def _read_csv(file_bytes: bytes) -> list[SheetRow]:
    text = file_bytes.decode("utf-8-sig", errors="replace")
    try:
        dialect = csv.Sniffer().sniff(text[:4096], delimiters=",;\t")
    except csv.Error:
        dialect = csv.excel
    reader = csv.reader(io.StringIO(text), dialect)
    headers = next(reader, None)
    if headers is None or all(_is_blank(h) for h in headers):
        raise ImportFileError("The first row has no headers.")
    return _build_rows(headers, reader)


def _read_xlsx(file_bytes: bytes) -> list[SheetRow]:
    try:
        wb = load_workbook(io.BytesIO(file_bytes), read_only=True, data_only=True)
    except _XLSX_READ_ERRORS as e:
        raise ImportFileError(f"Could not read spreadsheet: {e}") from e
    try:
        if not wb.worksheets:
            raise ImportFileError("The spreadsheet has no sheets.")
        # read_only sheets parse their XML lazily, while rows are iterated.
        it = wb.worksheets[0].iter_rows(values_only=True)
        headers = next(it, None)
        if headers is None or all(_is_blank(h) for h in headers):
            raise ImportFileError("The first sheet has no header row.")
        return _build_rows(list(headers), it)
    except ImportFileError:
        raise
    except _XLSX_READ_ERRORS as e:
        raise ImportFileError(f"Could not read spreadsheet: {e}") from e
    finally:
        wb.close()


def read_rows(file_bytes: bytes, filename: str | None = None) -> list[SheetRow]:
    """
    Parse the upload into ordered rows keyed by field.

    Raises ImportFileError for unreadable files, a missing header row, or a
    sheet with no data rows.
    """
    if not file_bytes:
        raise ImportFileError("The file is empty.")
    name = normalize_text(filename).lower()
    if name.endswith(".csv"):
        rows = _read_csv(file_bytes)
    else:
        rows = _read_xlsx(file_bytes)
    if not rows:
        raise ImportFileError("The spreadsheet has no data rows.")
    return rows


# ---------------------------------------------------------------------------
# Row validation
# ---------------------------------------------------------------------------


def serial_to_date(serial: float) -> date:
    """Spreadsheet date serial -> calendar date (serial 1 is 1899-12-31)."""
    return SERIAL_EPOCH + timedelta(days=int(serial))


def parse_birth_date(value: Any) -> date:
    """
    Accepted shapes: DD/MM/YYYY, YYYY-MM-DD, a numeric serial from a
    number cell, or a date/datetime cell. Raises ValueError otherwise,
    including for strings that do not name a real calendar date.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, bool):
        raise ValueError("not a date")
    if isinstance(value, (int, float)):
        return serial_to_date(value)

    s = normalize_text(str(value) if value is not None else "")
    m = _BR_DATE_RE.match(s)
    if m:
        return date(int(m.group(3)), int(m.group(2)), int(m.group(1)))
    m = _ISO_DATE_RE.match(s)
    if m:
        return date(int(m.group(1)), int(m.group(2)), int(m.group(3)))
    raise ValueError(f"unrecognized date {s!r}")


def _cell_text(v: Any) -> str:
    if v is None:
        return ""
    if isinstance(v, float) and v.is_integer():
        v = int(v)
    return str(v).strip()


def _national_id_digits(v: Any) -> str:
    # Numeric cells lose leading zeros; restore them.
    if isinstance(v, (int, float)) and not isinstance(v, bool):
        return digits_only(_cell_text(v)).zfill(11)
    return digits_only(_cell_text(v))


def validate_row(row: SheetRow, today: date | None = None) -> RowOutcome:
    """
    Pure: one spreadsheet row -> Accepted(record) or Rejected(reason).
    Stops at the first failing check.
    """
    today = today or date.today()
    v = row.values

    def reject(reason: str) -> Rejected:
        return Rejected(row.row_number, reason, row.raw)

    missing = [f for f in REQUIRED_FIELDS if _is_blank(v.get(f))]
    if missing:
        return reject(f"{REASON_MISSING_FIELDS}: {', '.join(_FIELD_LABELS[f] for f in missing)}")

    national_id = _national_id_digits(v.get("national_id"))
    if len(national_id) != 11 or not validate_national_id(national_id):
        return reject(REASON_INVALID_ID)

    try:
        birth = parse_birth_date(v.get("birth_date"))
    except (ValueError, OverflowError):
        return reject(REASON_INVALID_BIRTH_DATE)
    if not MIN_BIRTH_YEAR <= birth.year <= today.year + 1:
        return reject(REASON_INVALID_BIRTH_DATE)
    if birth > today:
        return reject(REASON_FUTURE_BIRTH_DATE)

    age = derive_age(birth, today)
    if not 0 <= age <= MAX_AGE:
        return reject(REASON_INVALID_AGE)

    phone_primary = digits_only(_cell_text(v.get("phone_primary")))
    if not phone_primary:
        return reject(f"{REASON_MISSING_FIELDS}: phone")
    phone_secondary = digits_only(_cell_text(v.get("phone_secondary"))) or None

    return Accepted(
        row.row_number,
        NewCustomer(
            full_name=_cell_text(v.get("full_name")),
            national_id=national_id,
            age=age,
            phone_primary=phone_primary,
            phone_secondary=phone_secondary,
            external_note=_cell_text(v.get("external_note")) or None,
            birth_date=birth.isoformat(),
        ),
        row.raw,
    )


def deduplicate(outcomes: Sequence[RowOutcome]) -> list[RowOutcome]:
    """First accepted row per national ID wins; later ones become duplicates."""
    seen: set[str] = set()
    out: list[RowOutcome] = []
    for o in outcomes:
        if isinstance(o, Accepted):
            nid = o.record.national_id
            if nid in seen:
                o = Rejected(o.row_number, REASON_DUPLICATE_ID, o.raw)
            else:
                seen.add(nid)
        out.append(o)
    return out


def chunked(items: Sequence[Any], size: int) -> list[Sequence[Any]]:
    if size < 1:
        raise ValueError("chunk size must be positive")
    return [items[i : i + size] for i in range(0, len(items), size)]


# ---------------------------------------------------------------------------
# Orchestration
# ---------------------------------------------------------------------------


class BatchImport:
    """
    One import run. Not reusable: create a new instance per upload.

    on_progress(fraction) fires after every validated row (0 < fraction <= 1).
    on_chunk(n, m) fires after each submitted chunk, successful or not.
    """

    def __init__(
        self,
        store: CustomerStore,
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        today: date | None = None,
        on_progress: Callable[[float], None] | None = None,
        on_chunk: Callable[[int, int], None] | None = None,
    ) -> None:
        if chunk_size < 1:
            raise ValueError("chunk_size must be positive")
        self.store = store
        self.chunk_size = chunk_size
        self.today = today or date.today()
        self.on_progress = on_progress
        self.on_chunk = on_chunk
        self.state = ImportState.IDLE

    def run(self, file_bytes: bytes, filename: str | None = None) -> ImportResult:
        if self.state is not ImportState.IDLE:
            raise RuntimeError("BatchImport instances run once.")
        result = ImportResult()

        self.state = ImportState.READING
        try:
            rows = read_rows(file_bytes, filename)
        except ImportFileError as e:
            logger.warning("Customer import aborted (file=%s): %s", filename, e)
            result.file_error = str(e)
            self.state = ImportState.DONE
            return result
        result.total_rows = len(rows)
        logger.info("Customer import started (file=%s, rows=%d)", filename, len(rows))

        self.state = ImportState.ROW_VALIDATION
        outcomes: list[RowOutcome] = []
        for i, row in enumerate(rows, start=1):
            outcomes.append(validate_row(row, self.today))
            if self.on_progress:
                self.on_progress(i / len(rows))

        accepted: list[Accepted] = []
        for o in deduplicate(outcomes):
            if isinstance(o, Accepted):
                accepted.append(o)
            else:
                result.errors.append(RowError(o.row_number, o.reason, o.raw))

        self.state = ImportState.SUBMITTING
        self._submit(accepted, result)

        self.state = ImportState.DONE
        logger.info(
            "Customer import finished (file=%s): %d inserted, %d row errors, %d failed chunks",
            filename,
            result.success_count,
            len(result.errors),
            len(result.chunk_errors),
        )
        return result

    def _submit(self, accepted: list[Accepted], result: ImportResult) -> None:
        chunks = chunked(accepted, self.chunk_size)
        for n, chunk in enumerate(chunks, start=1):
            try:
                self.store.insert([a.record for a in chunk])
                result.success_count += len(chunk)
            except StoreError as e:
                logger.warning("Import chunk %d/%d failed (%d records): %s", n, len(chunks), len(chunk), e)
                result.chunk_errors.append(
                    ChunkError(
                        chunk_number=n,
                        first_row=chunk[0].row_number,
                        last_row=chunk[-1].row_number,
                        record_count=len(chunk),
                        reason=str(e),
                    )
                )
            if self.on_chunk:
                self.on_chunk(n, len(chunks))


def import_customers(
    store: CustomerStore,
    file_bytes: bytes,
    filename: str | None = None,
    *,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    today: date | None = None,
    on_progress: Callable[[float], None] | None = None,
    on_chunk: Callable[[int, int], None] | None = None,
) -> ImportResult:
    return BatchImport(
        store,
        chunk_size=chunk_size,
        today=today,
        on_progress=on_progress,
        on_chunk=on_chunk,
    ).run(file_bytes, filename)
