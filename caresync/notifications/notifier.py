import logging
from typing import Any, Dict, Iterable, Optional

from caresync.data.care_repository import ProfileRepository
from caresync.data.chat_repository import ChatMessageRepository
from caresync.models.care import PushCategory
from caresync.models.chat import ChatMessage, MessageKind
from caresync.notifications.base import Notifier
from caresync.notifications.expo import ExpoPushClient, build_message, is_expo_push_token

logger = logging.getLogger(__name__)


class DefaultNotifier(Notifier):
    """Chat entries go to DynamoDB, pushes go to Expo."""

    def __init__(self, chat: ChatMessageRepository, profiles: ProfileRepository, push_client: ExpoPushClient):
        self.chat = chat
        self.profiles = profiles
        self.push_client = push_client

    async def post_chat_message(
        self,
        conversation_id: str,
        text: str,
        kind: MessageKind,
        alert_id: Optional[str] = None,
        sender_id: Optional[str] = None
    ) -> ChatMessage:
        message = ChatMessage(
            conversation_id=conversation_id, text=text, kind=kind, alert_id=alert_id, sender_id=sender_id
        )
        return self.chat.add_message(message)

    async def send_filtered_push(
        self,
        recipient_ids: Iterable[str],
        title: str,
        body: str,
        data: Dict[str, Any],
        category: Optional[PushCategory] = None
    ) -> int:
        recipient_ids = list(dict.fromkeys(recipient_ids))
        if not recipient_ids:
            return 0
        profiles = self.profiles.get_profiles(recipient_ids)
        tokens = [
            p.push_token for p in profiles.values()
            if p.wants_push(category) and is_expo_push_token(p.push_token)
        ]
        category_name = category.value if category else "unfiltered"
        if not tokens:
            logger.info(
                f"No valid push tokens for category {category_name} among {len(recipient_ids)} users",
                extra={"log_type": "push_skipped", "category": category_name},
            )
            return 0
        await self.push_client.send([build_message(token, title, body, data) for token in tokens])
        return len(tokens)
