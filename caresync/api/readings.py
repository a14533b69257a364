"""API endpoints for submitting and retrieving blood glucose readings."""

from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from caresync.data.glucose_repository import GlucoseReadingRepository, get_glucose_repository
from caresync.dependencies import get_current_user_id, get_ingestion_service
from caresync.ingestion import IngestionService
from caresync.models.glucose import GLUCOSE_MAX, GLUCOSE_MIN, TrendDirection
from caresync.utils.normalization import parse_iso_timestamp
from caresync.utils.timestamps import utc_now

router = APIRouter(tags=["glucose"])


class ManualReadingRequest(BaseModel):
    value: int = Field(..., ge=GLUCOSE_MIN, le=GLUCOSE_MAX, description="Blood glucose value in mg/dL")
    timestamp: Optional[datetime] = Field(None, description="When the reading was taken; defaults to now")
    trend: TrendDirection = TrendDirection.STABLE


def parse_iso_datetime(date_string: Optional[str]) -> Optional[datetime]:
    if not date_string:
        return None
    parsed = parse_iso_timestamp(date_string)
    if parsed is None:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid date format: {date_string}. Expected ISO 8601 format (YYYY-MM-DDTHH:MM:SS+HH:MM)."
        )
    return parsed


@router.post("", status_code=201)
async def submit_reading(
    body: ManualReadingRequest,
    user_id: str = Depends(get_current_user_id),
    ingestion: IngestionService = Depends(get_ingestion_service)
) -> Dict[str, Any]:
    """Store a manually entered reading and run the alert check on it."""
    reading, alert = await ingestion.submit_manual_reading(user_id, body.value, body.timestamp, body.trend)
    return {
        "status": "success",
        "data": {
            "reading": reading.model_dump(mode="json"),
            "alert": alert.model_dump(mode="json") if alert else None,
        },
    }


@router.get("")
async def get_readings(
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    user_id: str = Depends(get_current_user_id),
    repository: GlucoseReadingRepository = Depends(get_glucose_repository)
) -> Dict[str, Any]:
    """
    Get the caller's readings, oldest first.

    Args:
        start_date: Optional start (ISO 8601); defaults to 24 hours ago
        end_date: Optional end (ISO 8601); defaults to now
    """
    end = parse_iso_datetime(end_date) or utc_now()
    start = parse_iso_datetime(start_date) or end - timedelta(days=1)
    if start > end:
        raise HTTPException(status_code=400, detail="start_date must be before end_date")
    readings = repository.find_readings(user_id, start, end)
    return {
        "status": "success",
        "data": [r.model_dump(mode="json") for r in readings],
        "count": len(readings),
    }
