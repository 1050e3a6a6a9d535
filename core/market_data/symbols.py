"""Canonical symbol handling.

Canonical symbols are uppercase base+quote with no separator (``BTCUSDT``).
Venue spellings are produced and parsed here and nowhere else.
"""

from __future__ import annotations

QUOTE_ASSETS: tuple[str, ...] = ("USDT", "USDC", "BUSD", "BTC", "ETH")


def normalize_symbol(symbol: str) -> str:
    """Normalize any user/venue spelling to the canonical form.

    ``btc/usdt``, ``BTC-USDT``, ``btc_usdt`` and ``BTCUSDT`` all map to
    ``BTCUSDT``. A bare base asset (``BTC``) gets the USDT quote.
    """
    s = symbol.strip().upper().replace("/", "").replace("-", "").replace("_", "").replace(":", "")
    if not s:
        raise ValueError("symbol is required")
    if not s.isalnum():
        raise ValueError(f"invalid symbol: {symbol!r}")
    if s.endswith("USD") and not s.endswith(("USDT", "BUSD")):
        s = s[:-3] + "USDT"
    if not any(s.endswith(q) and len(s) > len(q) for q in QUOTE_ASSETS):
        s = s + "USDT"
    return s


def split_symbol(symbol: str) -> tuple[str, str]:
    """Split a canonical symbol into (base, quote)."""
    s = normalize_symbol(symbol)
    for quote in QUOTE_ASSETS:
        if s.endswith(quote) and len(s) > len(quote):
            return s[: -len(quote)], quote
    raise ValueError(f"cannot determine quote asset for {symbol!r}")


def to_okx_inst_id(symbol: str) -> str:
    """``BTCUSDT`` -> ``BTC-USDT``."""
    base, quote = split_symbol(symbol)
    return f"{base}-{quote}"


def from_okx_inst_id(inst_id: str) -> str:
    """``BTC-USDT`` -> ``BTCUSDT``."""
    return inst_id.replace("-", "").upper()


def to_okx_swap_id(symbol: str) -> str:
    """``BTCUSDT`` -> ``BTC-USDT-SWAP`` (perpetual instrument)."""
    return f"{to_okx_inst_id(symbol)}-SWAP"
