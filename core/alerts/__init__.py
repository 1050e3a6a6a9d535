"""Price and indicator alerts."""

from core.alerts.checker import AlertCheckResult, AlertChecker
from core.alerts.models import (
    Alert,
    AlertCondition,
    AlertKind,
    AlertState,
    CompoundMode,
    CompoundRule,
    parse_compound,
)
from core.alerts.notifier import LoggingNotifier, Notifier
from core.alerts.store import AlertStore, InMemoryAlertStore

__all__ = [
    "Alert",
    "AlertCheckResult",
    "AlertChecker",
    "AlertCondition",
    "AlertKind",
    "AlertState",
    "AlertStore",
    "CompoundMode",
    "CompoundRule",
    "InMemoryAlertStore",
    "LoggingNotifier",
    "Notifier",
    "parse_compound",
]
