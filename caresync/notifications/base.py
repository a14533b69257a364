"""Notification collaborator contract used by the alerting core."""

from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, Optional

from caresync.models.care import PushCategory
from caresync.models.chat import ChatMessage, MessageKind


class Notifier(ABC):
    @abstractmethod
    async def post_chat_message(
        self,
        conversation_id: str,
        text: str,
        kind: MessageKind,
        alert_id: Optional[str] = None,
        sender_id: Optional[str] = None
    ) -> ChatMessage:
        """Append an entry to an owner<->recipient conversation."""

    @abstractmethod
    async def send_filtered_push(
        self,
        recipient_ids: Iterable[str],
        title: str,
        body: str,
        data: Dict[str, Any],
        category: Optional[PushCategory] = None
    ) -> int:
        """
        Push to every recipient whose preference for `category` is not
        explicitly off. Returns the number of devices addressed.
        """
