from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any

from app.registry.modules.customers.importer import parse_birth_date
from app.registry.modules.customers.models import Customer
from app.registry.modules.customers.store import (
    AnyOf,
    CustomerStore,
    Eq,
    ILike,
    In,
    NewCustomer,
    Range,
    birth_day_pattern,
    birth_month_pattern,
)
from app.registry.modules.customers.utils import derive_age, digits_only, normalize_text, validate_national_id

SEARCH_KINDS = ("national_id", "phone")
BATCH_SEARCH_KINDS = ("national_id", "phone", "all")

# Area codes tried when a searched phone number comes without one.
COMMON_AREA_CODES = ("11", "21", "31", "41", "51", "61", "71", "81", "85")

_TERM_SPLIT_RE = re.compile(r"[\n,]")


@dataclass(frozen=True)
class ValidationError:
    field: str
    message: str


def validate_customer_payload(payload: dict[str, Any], *, today: date | None = None) -> list[ValidationError]:
    today = today or date.today()
    errs: list[ValidationError] = []
    if not normalize_text(payload.get("full_name")):
        errs.append(ValidationError("full_name", "Name is required."))
    if not validate_national_id(payload.get("national_id")):
        errs.append(ValidationError("national_id", "National ID is invalid."))
    if not digits_only(payload.get("phone_primary")):
        errs.append(ValidationError("phone_primary", "Primary phone is required."))

    raw_birth = normalize_text(payload.get("birth_date"))
    if not raw_birth:
        errs.append(ValidationError("birth_date", "Birth date is required."))
    else:
        try:
            birth = parse_birth_date(raw_birth)
        except (ValueError, OverflowError):
            errs.append(ValidationError("birth_date", "Birth date must be YYYY-MM-DD or DD/MM/YYYY."))
        else:
            if birth > today:
                errs.append(ValidationError("birth_date", "Birth date cannot be in the future."))
            elif birth.year < 1900:
                errs.append(ValidationError("birth_date", "Birth date is out of range."))
    return errs


def create_customer(store: CustomerStore, payload: dict[str, Any], *, today: date | None = None) -> Customer:
    """
    Insert one customer. Call validate_customer_payload() first.
    Age is derived from the birth date at submission time.
    """
    today = today or date.today()
    birth = parse_birth_date(normalize_text(payload.get("birth_date")))
    record = NewCustomer(
        full_name=normalize_text(payload.get("full_name")),
        national_id=digits_only(payload.get("national_id")),
        age=derive_age(birth, today),
        phone_primary=digits_only(payload.get("phone_primary")),
        phone_secondary=digits_only(payload.get("phone_secondary")) or None,
        external_note=normalize_text(payload.get("external_note")) or None,
        birth_date=birth.isoformat(),
    )
    (c,) = store.insert([record])
    return c


def get_customer_by_id(store: CustomerStore, customer_id: str) -> Customer | None:
    return store.get(customer_id)


def delete_customer(store: CustomerStore, customer_id: str) -> bool:
    return store.delete(customer_id)


def find_customers(store: CustomerStore, kind: str, term: str) -> list[Customer]:
    """Point lookup by national ID, or by phone on either phone column."""
    if kind not in SEARCH_KINDS:
        raise ValueError(f"search type must be one of: {', '.join(SEARCH_KINDS)}")
    clean = digits_only(term)
    if not clean:
        raise ValueError("Search term is required.")
    if kind == "national_id":
        return store.select(Eq("national_id", clean))
    return store.select(AnyOf(Eq("phone_primary", clean), Eq("phone_secondary", clean)))


def split_search_terms(text: str) -> list[str]:
    """Digits of each newline/comma separated term, blanks dropped, order kept."""
    terms = [digits_only(t) for t in _TERM_SPLIT_RE.split(text or "")]
    return list(dict.fromkeys(t for t in terms if t))


def expand_phone_patterns(phone: str) -> list[str]:
    """
    Candidate stored values for a searched phone:
    - the number as typed
    - without its area code, when longer than 9 digits
    - with each common area code prepended, when 9 digits or fewer
    """
    patterns = [phone]
    if len(phone) > 9:
        patterns.append(phone[2:])
    else:
        patterns.extend(code + phone for code in COMMON_AREA_CODES)
    return patterns


def batch_search(store: CustomerStore, kind: str, text: str = "") -> list[Customer]:
    if kind not in BATCH_SEARCH_KINDS:
        raise ValueError(f"search type must be one of: {', '.join(BATCH_SEARCH_KINDS)}")
    if kind == "all":
        return store.select()

    terms = split_search_terms(text)
    if not terms:
        raise ValueError("Enter at least one valid search term (one per line or comma separated).")

    if kind == "national_id":
        ids = [t for t in terms if len(t) == 11]
        if not ids:
            return []
        return store.select(In("national_id", ids))

    patterns: list[str] = []
    for t in terms:
        patterns.extend(expand_phone_patterns(t))
    patterns = list(dict.fromkeys(patterns))
    return store.select(AnyOf(In("phone_primary", patterns), In("phone_secondary", patterns)))


def parse_month(raw: str | int | None, *, default: int) -> int:
    s = normalize_text(str(raw) if raw is not None else "")
    if not s:
        return default
    try:
        month = int(s)
    except ValueError:
        raise ValueError("month must be a number between 1 and 12")
    if not 1 <= month <= 12:
        raise ValueError("month must be a number between 1 and 12")
    return month


def _birth_day(c: Customer) -> int:
    try:
        return int(c.birth_date[8:10])
    except (TypeError, ValueError):
        return 0


def birthdays_in_month(store: CustomerStore, month: int) -> list[Customer]:
    """Customers born in `month` (any year), ordered by day of month then name."""
    rows = store.select(ILike("birth_date", birth_month_pattern(month)), order_by=("full_name",))
    return sorted(rows, key=lambda c: (_birth_day(c), c.full_name.lower()))


def birthdays_today(store: CustomerStore, today: date | None = None) -> list[Customer]:
    today = today or date.today()
    return store.select(ILike("birth_date", birth_day_pattern(today.month, today.day)))


def dashboard_stats(store: CustomerStore, today: date | None = None) -> dict[str, int]:
    today = today or date.today()
    return {
        "total_customers": store.count(),
        "registered_this_year": store.count(Range("created_at", gte=datetime(today.year, 1, 1))),
        "birthdays_today": store.count(ILike("birth_date", birth_day_pattern(today.month, today.day))),
        "birthdays_this_month": store.count(ILike("birth_date", birth_month_pattern(today.month))),
    }
