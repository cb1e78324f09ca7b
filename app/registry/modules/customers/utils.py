from __future__ import annotations

import re
from datetime import date, datetime

_NON_DIGITS = re.compile(r"\D")


def normalize_text(s: object) -> str:
    return ("" if s is None else str(s)).strip()


def digits_only(raw: str | None) -> str:
    return _NON_DIGITS.sub("", str(raw or ""))


def validate_national_id(raw: str | None) -> bool:
    """
    Checksum validation for the 11-digit national ID.

    Algorithm:
    1. Strip every non-digit character; exactly 11 digits must remain.
    2. Reject numbers made of one repeated digit (e.g. 111.111.111-11).
    3. Check digit 1: digits[0..8] weighted 10 down to 2, d1 = 11 - (sum % 11), 0 when >= 10.
    4. Check digit 2: digits[0..9] weighted 11 down to 2, same reduction.
    5. Valid iff digits[9] == d1 and digits[10] == d2.

    Examples:
        >>> validate_national_id("529.982.247-25")
        True
        >>> validate_national_id("12345678900")
        False

    Never raises; anything that is not a well-formed ID yields False.
    """
    clean = digits_only(raw)
    if len(clean) != 11:
        return False
    if len(set(clean)) == 1:
        return False

    nums = [int(c) for c in clean]

    total = sum(n * w for n, w in zip(nums[:9], range(10, 1, -1)))
    d1 = 11 - (total % 11)
    if d1 >= 10:
        d1 = 0

    total = sum(n * w for n, w in zip(nums[:10], range(11, 1, -1)))
    d2 = 11 - (total % 11)
    if d2 >= 10:
        d2 = 0

    return nums[9] == d1 and nums[10] == d2


def format_national_id(raw: str | None) -> str:
    """
    Progressive mask DDD.DDD.DDD-DD. Safe on partial input (live formatting).
    """
    d = digits_only(raw)[:11]
    if len(d) <= 3:
        return d
    if len(d) <= 6:
        return f"{d[:3]}.{d[3:]}"
    if len(d) <= 9:
        return f"{d[:3]}.{d[3:6]}.{d[6:]}"
    return f"{d[:3]}.{d[3:6]}.{d[6:9]}-{d[9:]}"


def format_phone(raw: str | None) -> str:
    """
    Progressive mask (DD) DDDD-DDDD for landlines, (DD) DDDDD-DDDD for 11-digit mobiles.
    """
    d = digits_only(raw)[:11]
    if not d:
        return ""
    if len(d) <= 2:
        return f"({d}"
    if len(d) <= 6:
        return f"({d[:2]}) {d[2:]}"
    if len(d) <= 10:
        return f"({d[:2]}) {d[2:6]}-{d[6:]}"
    return f"({d[:2]}) {d[2:7]}-{d[7:]}"


def derive_age(birth_date: date, today: date | None = None) -> int:
    """Whole years between birth_date and today (one less until this year's birthday)."""
    today = today or date.today()
    age = today.year - birth_date.year
    if (today.month, today.day) < (birth_date.month, birth_date.day):
        age -= 1
    return age


def format_date_br(value: date | datetime | str | None) -> str:
    if value is None or value == "":
        return ""
    if isinstance(value, datetime):
        value = value.date()
    if isinstance(value, str):
        try:
            value = date.fromisoformat(value[:10])
        except ValueError:
            return value
    return value.strftime("%d/%m/%Y")
