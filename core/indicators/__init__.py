from __future__ import annotations

from .atr import atr_percent, atr_series, compute_atr, true_ranges
from .ema import compute_ema, ema, ema_series
from .rsi import compute_rsi, rsi_series

__all__ = [
    "atr_percent",
    "atr_series",
    "compute_atr",
    "compute_ema",
    "compute_rsi",
    "ema",
    "ema_series",
    "rsi_series",
    "true_ranges",
]
