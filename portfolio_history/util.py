from __future__ import annotations

import csv
import datetime as dt
import re
from typing import Any, Iterable


_MONEY_RE = re.compile(r"[-+]?\d[\d,]*\.?\d*")
_MDY_RE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{2}|\d{4})$")


def sniff_delimiter(text: str) -> str:
    sample = "\n".join((text or "").splitlines()[:30])
    if not sample:
        return ","
    try:
        dialect = csv.Sniffer().sniff(sample, delimiters=",\t;")
        return getattr(dialect, "delimiter", ",") or ","
    except Exception:
        return ","


def parse_date(value: Any) -> dt.date | None:
    if value is None:
        return None
    if isinstance(value, dt.datetime):
        return value.date()
    if isinstance(value, dt.date):
        return value
    s = str(value).strip()
    if not s:
        return None
    # Common ISO-like.
    try:
        return dt.date.fromisoformat(s[:10])
    except Exception:
        pass
    return parse_mdy_date(s)


def parse_mdy_date(value: Any) -> dt.date | None:
    """
    Brokerage activity dates: month/day/year with a 2- or 4-digit year.

    Two-digit years are taken as 20xx.
    """
    if value is None:
        return None
    s = str(value).strip().split(" ")[0]
    m = _MDY_RE.match(s)
    if not m:
        return None
    month, day, year = int(m.group(1)), int(m.group(2)), int(m.group(3))
    if year < 100:
        year += 2000
    try:
        return dt.date(year, month, day)
    except ValueError:
        return None


def parse_money(value: Any) -> float | None:
    if value is None:
        return None
    if isinstance(value, (int, float)):
        try:
            return float(value)
        except Exception:
            return None
    s = str(value).strip()
    if not s:
        return None
    neg = False
    # Formats like "(123.45)".
    if s.startswith("(") and s.endswith(")"):
        neg = True
        s = s[1:-1]
    m = _MONEY_RE.search(s.replace("$", "").replace("*", "").replace(" ", ""))
    if not m:
        return None
    try:
        x = abs(float(m.group(0).replace(",", "")))
    except Exception:
        return None
    # "-$18,000.00" and "-18000" are both negative.
    if not neg and re.search(r"-\$?\d", s):
        neg = True
    return -x if neg else x


def uniq_sorted(xs: Iterable[str]) -> list[str]:
    return sorted({str(x).strip() for x in xs if str(x).strip()})


def round_or_none(x: float | None, ndigits: int = 2) -> float | None:
    if x is None:
        return None
    return round(float(x), ndigits)
