"""EMA crossover backtest endpoint."""

from __future__ import annotations

from typing import Literal, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field, model_validator

from api.deps import get_backtest_service
from core.backtest import BacktestParams, BacktestService

router = APIRouter(prefix="/backtest", tags=["backtest"])


class EmaBacktestRequest(BaseModel):
    symbol: str = Field(..., min_length=1)
    fast_period: int = Field(12, ge=1, le=500)
    slow_period: int = Field(26, ge=2, le=1000)
    interval: Literal["1m", "5m", "15m", "1h", "4h", "1d"] = "1h"
    limit: int = Field(500, ge=10, le=1000)
    venue: Optional[str] = None
    min_rsi: Optional[float] = Field(None, ge=0, le=100)
    max_rsi: Optional[float] = Field(None, ge=0, le=100)

    @model_validator(mode="after")
    def _check_periods(self) -> "EmaBacktestRequest":
        if self.fast_period >= self.slow_period:
            raise ValueError("fast_period must be smaller than slow_period")
        if self.min_rsi is not None and self.max_rsi is not None and self.min_rsi > self.max_rsi:
            raise ValueError("min_rsi must not exceed max_rsi")
        return self


@router.post("/ema")
async def run_ema_backtest(
    request: EmaBacktestRequest,
    service: BacktestService = Depends(get_backtest_service),
):
    params = BacktestParams(
        symbol=request.symbol,
        fast_period=request.fast_period,
        slow_period=request.slow_period,
        interval=request.interval,
        limit=request.limit,
        venue=request.venue,
        min_rsi=request.min_rsi,
        max_rsi=request.max_rsi,
    )
    report = await service.run(params)
    return report.to_dict()
