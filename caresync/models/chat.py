"""Models for care-network chat entries posted by the core."""

import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from caresync.utils.timestamps import to_storage_timestamp, utc_now


class MessageKind(str, Enum):
    ALERT = "alert"
    SYSTEM = "system"


class ChatMessage(BaseModel):
    message_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    conversation_id: str = Field(..., description="Owner<->recipient conversation (the care relationship id)")
    text: str
    kind: MessageKind
    sender_id: Optional[str] = None
    alert_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)

    def to_dynamodb_item(self) -> Dict[str, Any]:
        item = self.model_dump(mode="json")
        item["sort_key"] = f"{to_storage_timestamp(self.created_at)}#{self.message_id}"
        item["created_at"] = to_storage_timestamp(self.created_at)
        return item
