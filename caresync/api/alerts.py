"""Alert check, read, acknowledge and resolve endpoints."""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, Response
from pydantic import BaseModel, Field

from caresync.alerting.checker import AlertChecker
from caresync.alerting.fanout import NotificationFanout
from caresync.dependencies import get_alert_checker, get_current_user_id, get_fanout
from caresync.models.alerts import AlertStatus
from caresync.models.glucose import GLUCOSE_MAX, GLUCOSE_MIN

router = APIRouter(tags=["alerts"])


class AcknowledgeRequest(BaseModel):
    message: Optional[str] = Field(None, description="Optional note shown to the care network")


class AlertCheckRequest(BaseModel):
    glucose_value: int = Field(..., ge=GLUCOSE_MIN, le=GLUCOSE_MAX, description="Reading to evaluate in mg/dL")


@router.post("/check")
async def check_alert(
    body: AlertCheckRequest,
    response: Response,
    user_id: str = Depends(get_current_user_id),
    checker: AlertChecker = Depends(get_alert_checker)
) -> Dict[str, Any]:
    """Evaluate a reading for the caller without storing it."""
    alert = await checker.check_glucose_alert(user_id, body.glucose_value)
    if alert is None:
        return {"status": "success", "data": {"alert": None, "notified_count": 0}}
    response.status_code = 201
    return {
        "status": "success",
        "data": {"alert": alert.model_dump(mode="json"), "notified_count": len(alert.notified_recipients)},
    }


@router.get("")
async def list_alerts(
    limit: int = Query(20, ge=1, le=100),
    status: Optional[AlertStatus] = None,
    user_id: str = Depends(get_current_user_id),
    fanout: NotificationFanout = Depends(get_fanout)
) -> Dict[str, Any]:
    """Alerts the caller owns or was notified about, newest first."""
    alerts = fanout.list_alerts(user_id, limit, status)
    return {"status": "success", "data": [a.model_dump(mode="json") for a in alerts]}


@router.get("/active")
async def active_alert_count(
    user_id: str = Depends(get_current_user_id),
    fanout: NotificationFanout = Depends(get_fanout)
) -> Dict[str, Any]:
    return {"status": "success", "data": {"active_count": fanout.count_active(user_id)}}


@router.get("/{alert_id}")
async def get_alert(
    alert_id: str,
    user_id: str = Depends(get_current_user_id),
    fanout: NotificationFanout = Depends(get_fanout)
) -> Dict[str, Any]:
    alert = fanout.get_alert(alert_id, viewer_id=user_id)
    return {"status": "success", "data": alert.model_dump(mode="json")}


@router.post("/{alert_id}/acknowledge")
async def acknowledge_alert(
    alert_id: str,
    body: Optional[AcknowledgeRequest] = None,
    user_id: str = Depends(get_current_user_id),
    fanout: NotificationFanout = Depends(get_fanout)
) -> Dict[str, Any]:
    alert = await fanout.acknowledge(alert_id, user_id, body.message if body else None)
    return {"status": "success", "data": alert.model_dump(mode="json")}


@router.post("/{alert_id}/resolve")
async def resolve_alert(
    alert_id: str,
    user_id: str = Depends(get_current_user_id),
    fanout: NotificationFanout = Depends(get_fanout)
) -> Dict[str, Any]:
    alert = await fanout.resolve(alert_id, user_id)
    return {"status": "success", "data": alert.model_dump(mode="json")}
