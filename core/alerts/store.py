from __future__ import annotations

import asyncio
import uuid
from typing import Optional, Protocol

from core.alerts.models import Alert, AlertState
from core.errors import NotFound


class AlertStore(Protocol):
    async def add(self, alert: Alert) -> Alert: ...

    async def get(self, alert_id: str) -> Alert: ...

    async def list(self, state: Optional[AlertState] = None) -> list[Alert]: ...

    async def save(self, alert: Alert) -> None: ...

    async def delete(self, alert_id: str) -> None: ...


class InMemoryAlertStore:
    """Process-local alert store."""

    def __init__(self) -> None:
        self._alerts: dict[str, Alert] = {}
        self._lock = asyncio.Lock()

    @staticmethod
    def new_id() -> str:
        return uuid.uuid4().hex

    async def add(self, alert: Alert) -> Alert:
        async with self._lock:
            self._alerts[alert.id] = alert
        return alert

    async def get(self, alert_id: str) -> Alert:
        async with self._lock:
            alert = self._alerts.get(alert_id)
        if alert is None:
            raise NotFound(f"alert {alert_id} not found")
        return alert

    async def list(self, state: Optional[AlertState] = None) -> list[Alert]:
        async with self._lock:
            alerts = list(self._alerts.values())
        if state is not None:
            alerts = [a for a in alerts if a.state is state]
        return sorted(alerts, key=lambda a: a.created_at)

    async def save(self, alert: Alert) -> None:
        async with self._lock:
            if alert.id not in self._alerts:
                raise NotFound(f"alert {alert.id} not found")
            self._alerts[alert.id] = alert

    async def delete(self, alert_id: str) -> None:
        async with self._lock:
            if self._alerts.pop(alert_id, None) is None:
                raise NotFound(f"alert {alert_id} not found")
