"""Forecast, verification and accuracy endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from marketpulse.api.deps import get_service
from marketpulse.forecast.service import ForecastService

router = APIRouter()


class PredictRequest(BaseModel):
    symbol: str = Field(min_length=1)
    includeHistory: bool = False


class VerifyRequest(BaseModel):
    force: bool = False


@router.post("/predict")
async def predict(
    body: PredictRequest,
    service: ForecastService = Depends(get_service),
) -> dict:
    """Forecast a symbol and persist the prediction.

    A storage failure does not fail the request; it is reported in
    ``storageError`` next to the forecast.
    """
    symbol = body.symbol.strip()
    if not symbol:
        raise HTTPException(status_code=400, detail="Symbol is required")
    return await service.predict(symbol, include_history=body.includeHistory)


@router.post("/verify")
async def verify(
    body: VerifyRequest | None = None,
    service: ForecastService = Depends(get_service),
) -> dict:
    """Run one verification batch. ``force`` ignores the staleness threshold."""
    force = body.force if body is not None else False
    return await service.verify(force_all=force)


@router.get("/accuracy")
def accuracy(
    symbol: str | None = None,
    limit: int = Query(100, ge=1, le=1000),
    service: ForecastService = Depends(get_service),
) -> dict:
    return service.stats(symbol=symbol, limit=limit)


@router.get("/sentiment/{symbol}")
def sentiment(
    symbol: str,
    days: int = Query(30, ge=1, le=365),
    service: ForecastService = Depends(get_service),
) -> dict:
    """Time-decayed sentiment report for a symbol."""
    return service.sentiment(symbol, window_days=days)


@router.get("/quote/{symbol}")
async def quote(symbol: str, service: ForecastService = Depends(get_service)) -> dict:
    data = await service.quote(symbol)
    if data is None:
        raise HTTPException(status_code=404, detail="Stock not found in any provider")
    return data
