"""Models for blood glucose readings."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from caresync.utils.timestamps import ensure_utc, parse_storage_timestamp, to_storage_timestamp

GLUCOSE_MIN = 20
GLUCOSE_MAX = 600


class TrendDirection(str, Enum):
    """Canonical trend vocabulary shared by every provider."""

    RISING_FAST = "rising_fast"
    RISING = "rising"
    STABLE = "stable"
    FALLING = "falling"
    FALLING_FAST = "falling_fast"


TREND_ARROWS = {
    TrendDirection.RISING_FAST: "↑↑",
    TrendDirection.RISING: "↑",
    TrendDirection.STABLE: "→",
    TrendDirection.FALLING: "↓",
    TrendDirection.FALLING_FAST: "↓↓",
}


class ReadingSource(str, Enum):
    """Where a reading was ingested from."""

    MANUAL = "manual"
    SHARE = "provider-share"
    OAUTH = "provider-oauth"
    NIGHTSCOUT = "provider-nightscout"
    OTHER = "other"


class GlucoseReading(BaseModel):
    """An immutable blood glucose reading."""

    model_config = ConfigDict(frozen=True)

    user_id: str = Field(..., description="Owner whose glucose this is")
    value: int = Field(..., description="Blood glucose value in mg/dL", ge=GLUCOSE_MIN, le=GLUCOSE_MAX)
    unit: str = Field("mg/dL", description="Unit of glucose measurement")
    trend: TrendDirection = Field(TrendDirection.STABLE, description="Direction of glucose trend")
    trend_arrow: str = Field("→", description="Arrow glyph for display")
    source: ReadingSource = Field(..., description="Source of the reading")
    timestamp: datetime = Field(..., description="Instant of the reading in UTC")

    @model_validator(mode="before")
    @classmethod
    def default_trend_arrow(cls, data: Any) -> Any:
        """Derive the arrow from the trend when the source did not supply one."""
        if isinstance(data, dict) and not data.get("trend_arrow"):
            trend = data.get("trend") or TrendDirection.STABLE
            data = {**data, "trend_arrow": TREND_ARROWS[TrendDirection(trend)]}
        return data

    @field_validator("timestamp")
    @classmethod
    def validate_timestamp(cls, value: datetime) -> datetime:
        """Normalize the timestamp to an aware UTC datetime."""
        return ensure_utc(value)

    def to_dynamodb_item(self) -> Dict[str, Any]:
        """Convert the model to a DynamoDB item."""
        return {
            "user_id": self.user_id,
            "timestamp": to_storage_timestamp(self.timestamp),
            "value": self.value,
            "unit": self.unit,
            "trend": self.trend.value,
            "trend_arrow": self.trend_arrow,
            "source": self.source.value,
        }

    @classmethod
    def from_dynamodb_item(cls, item: Dict[str, Any]) -> "GlucoseReading":
        """Create a GlucoseReading instance from a DynamoDB item."""
        return cls(
            user_id=item["user_id"],
            timestamp=parse_storage_timestamp(item["timestamp"]),
            value=int(item["value"]),
            unit=item.get("unit", "mg/dL"),
            trend=TrendDirection(item.get("trend", TrendDirection.STABLE.value)),
            trend_arrow=item.get("trend_arrow") or "",
            source=ReadingSource(item.get("source", ReadingSource.OTHER.value)),
        )
