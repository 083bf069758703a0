from __future__ import annotations

import re


_EQUITY_RE = re.compile(r"^[A-Z]{1,5}$")

_INVALID_TICKERS: set[str] = {
    "TOTAL",
    "UNKNOWN",
}

# Broker shorthands that Yahoo spells differently.
_PROVIDER_ALIASES: dict[str, str] = {
    "BRKA": "BRK-A",
    "BRKB": "BRK-B",
}


def sanitize_ticker(ticker: str) -> str:
    """
    Filename-safe canonicalization.

    Examples:
    - "BRK-B" -> "BRK_B"
    - "BRK.B" -> "BRK_B"
    """
    t = (ticker or "").strip().upper()
    t = re.sub(r"[^A-Z0-9]+", "_", t)
    t = re.sub(r"_+", "_", t).strip("_")
    return t or "UNKNOWN"


def is_equity_ticker(symbol: str | None, *, cash_sweep_symbol: str | None = None) -> bool:
    """
    Equity-ticker shape check: 1-5 uppercase letters, never the cash-sweep vehicle.
    """
    s = (symbol or "").strip()
    if not s or s in _INVALID_TICKERS:
        return False
    if cash_sweep_symbol and s == cash_sweep_symbol.strip().upper():
        return False
    return bool(_EQUITY_RE.match(s))


def provider_ticker(symbol: str) -> str:
    """
    Map an internal ticker to the spelling the price provider expects.

    - Class shares: "BRK.B" -> "BRK-B"
    - Broker shorthand: "BRKB" -> "BRK-B"
    """
    t = (symbol or "").strip().upper()
    if t in _PROVIDER_ALIASES:
        return _PROVIDER_ALIASES[t]
    if "." in t and not t.endswith(".") and not t.startswith("."):
        return t.replace(".", "-")
    return t
