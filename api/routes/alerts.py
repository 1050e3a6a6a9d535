"""Alert management endpoints."""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from api.deps import get_alert_checker, get_alert_store
from core.alerts import (
    Alert,
    AlertChecker,
    AlertCondition,
    AlertKind,
    AlertState,
    InMemoryAlertStore,
    parse_compound,
)
from core.alerts.models import InvalidTransition
from core.market_data.symbols import normalize_symbol

router = APIRouter(prefix="/alerts", tags=["alerts"])


class CreateAlertRequest(BaseModel):
    symbol: str = Field(..., min_length=1)
    kind: AlertKind = AlertKind.PRICE_CROSS
    condition: AlertCondition = AlertCondition.ABOVE
    target: float = Field(0.0, ge=0)
    owner: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


@router.get("")
async def list_alerts(
    state: Optional[AlertState] = Query(None),
    store: InMemoryAlertStore = Depends(get_alert_store),
):
    alerts = await store.list(state)
    return {"alerts": [a.to_dict() for a in alerts], "count": len(alerts)}


@router.post("", status_code=201)
async def create_alert(request: CreateAlertRequest, store: InMemoryAlertStore = Depends(get_alert_store)):
    if request.kind is AlertKind.COMPOUND:
        try:
            parse_compound(request.metadata)
        except (TypeError, ValueError) as e:
            raise HTTPException(status_code=422, detail=f"Invalid compound alert: {e}") from e

    alert = Alert(
        id=store.new_id(),
        symbol=normalize_symbol(request.symbol),
        kind=request.kind,
        condition=request.condition,
        target=request.target,
        owner=request.owner,
        metadata=request.metadata,
    )
    await store.add(alert)
    return alert.to_dict()


@router.delete("/{alert_id}")
async def delete_alert(alert_id: str, store: InMemoryAlertStore = Depends(get_alert_store)):
    await store.delete(alert_id)
    return {"success": True}


@router.post("/{alert_id}/{action}")
async def change_alert_state(alert_id: str, action: str, store: InMemoryAlertStore = Depends(get_alert_store)):
    """Apply a state transition: reset, suppress or resume."""
    alert = await store.get(alert_id)
    transitions = {"reset": alert.reset, "suppress": alert.suppress, "resume": alert.resume}
    transition = transitions.get(action)
    if transition is None:
        raise HTTPException(status_code=404, detail=f"Unknown action: {action}")
    try:
        transition()
    except InvalidTransition as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    await store.save(alert)
    return alert.to_dict()


@router.post("/check")
async def check_alerts(checker: AlertChecker = Depends(get_alert_checker)):
    """Evaluate every armed alert now."""
    results = await checker.check_all()
    return {
        "results": [r.to_dict() for r in results],
        "checked": len(results),
        "triggered": sum(1 for r in results if r.triggered),
    }
