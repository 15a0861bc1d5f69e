"""Alert rule API routes.

The caller is identified by the ``X-User-Id`` header (default user if absent).

GET    /api/alerts              — The caller's active rules, newest first.
POST   /api/alerts              — Create a rule (201).
GET    /api/alerts/stats        — Rule counts for the caller.
GET    /api/alerts/{alert_id}   — One rule.
PUT    /api/alerts/{alert_id}   — Partial update.
DELETE /api/alerts/{alert_id}   — Delete (204).
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Response

from Crypto_Monitor.models.alerts import AlertRule, AlertRuleCreate, AlertRuleUpdate, AlertStats
from Crypto_Monitor.services.alerts import AlertService
from Crypto_Monitor.web.deps import get_alert_service, get_user_id

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/alerts", tags=["alerts"])


@router.get("", response_model=list[AlertRule])
async def list_alerts(
    service: Annotated[AlertService, Depends(get_alert_service)],
    user_id: Annotated[str, Depends(get_user_id)],
) -> list[AlertRule]:
    return await service.list_alerts(user_id)


@router.post("", status_code=201, response_model=AlertRule)
async def create_alert(
    body: AlertRuleCreate,
    service: Annotated[AlertService, Depends(get_alert_service)],
    user_id: Annotated[str, Depends(get_user_id)],
) -> AlertRule:
    """Create an alert rule owned by the caller."""
    return await service.create_alert(user_id, body)


@router.get("/stats", response_model=AlertStats)
async def get_alert_stats(
    service: Annotated[AlertService, Depends(get_alert_service)],
    user_id: Annotated[str, Depends(get_user_id)],
) -> AlertStats:
    return await service.get_alert_stats(user_id)


@router.get("/{alert_id}", response_model=AlertRule)
async def get_alert(
    alert_id: int,
    service: Annotated[AlertService, Depends(get_alert_service)],
    user_id: Annotated[str, Depends(get_user_id)],
) -> AlertRule:
    return await service.get_alert(alert_id, user_id)


@router.put("/{alert_id}", response_model=AlertRule)
async def update_alert(
    alert_id: int,
    body: AlertRuleUpdate,
    service: Annotated[AlertService, Depends(get_alert_service)],
    user_id: Annotated[str, Depends(get_user_id)],
) -> AlertRule:
    """Apply a partial update; 422 if the result has the wrong threshold."""
    return await service.update_alert(alert_id, body, user_id)


@router.delete("/{alert_id}", status_code=204)
async def delete_alert(
    alert_id: int,
    service: Annotated[AlertService, Depends(get_alert_service)],
    user_id: Annotated[str, Depends(get_user_id)],
) -> Response:
    await service.delete_alert(alert_id, user_id)
    return Response(status_code=204)
