"""Default scan universe."""

from __future__ import annotations

from typing import Iterable, Optional

from core.market_data.symbols import normalize_symbol

# Ranked by liquidity
DEFAULT_UNIVERSE: tuple[str, ...] = (
    "BTCUSDT", "ETHUSDT", "BNBUSDT", "SOLUSDT", "XRPUSDT",
    "ADAUSDT", "DOGEUSDT", "TONUSDT", "AVAXUSDT", "LINKUSDT",
    "DOTUSDT", "TRXUSDT", "MATICUSDT", "ATOMUSDT", "APTUSDT",
    "ARBUSDT", "NEARUSDT", "FILUSDT", "SUIUSDT", "INJUSDT",
    "TIAUSDT", "OPUSDT", "SEIUSDT", "PEPEUSDT", "WIFUSDT",
    "BONKUSDT", "RUNEUSDT", "PYTHUSDT", "FTMUSDT", "AAVEUSDT",
    "ETCUSDT", "XLMUSDT", "HBARUSDT", "ALGOUSDT", "IMXUSDT",
    "ICPUSDT", "GRTUSDT", "SANDUSDT", "MANAUSDT", "AXSUSDT",
    "JTOUSDT", "JUPUSDT", "ONDOUSDT", "BEAMXUSDT", "NOTUSDT",
    "ORDIUSDT", "BLASTUSDT", "ENAUSDT", "RENDERUSDT", "WLDUSDT",
)


def resolve_universe(requested: Optional[Iterable[str]], cap: int) -> list[str]:
    """Normalize and dedupe a requested universe, or fall back to the default one.

    The result keeps submission order and holds at most `cap` symbols.
    """
    source = DEFAULT_UNIVERSE if requested is None else requested
    symbols = list(dict.fromkeys(normalize_symbol(s) for s in source))
    return symbols[: max(0, cap)]
