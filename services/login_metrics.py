"""Prometheus counters for login attempts."""

from __future__ import annotations

from prometheus_client import Counter

from core.auth.constants import LoginFlow
from core.logging import get_logger

logger = get_logger(__name__)

_LOGIN_COUNTER = Counter(
    "chooser_login_total",
    "Count of login attempts grouped by flow, provider and outcome.",
    ("flow", "provider", "result"),
)


def record_login(flow: LoginFlow, provider_id: str, success: bool) -> None:
    result = "success" if success else "failure"
    _LOGIN_COUNTER.labels(flow=flow, provider=provider_id or "local", result=result).inc()
    logger.debug("login flow=%s provider=%s result=%s", flow, provider_id, result)


__all__ = ["record_login"]
