"""Repository for care-network chat entries written by the core."""

import logging
from typing import Optional

from botocore.exceptions import ClientError

from caresync.data.dynamodb import get_dynamodb_client
from caresync.models.chat import ChatMessage
from caresync.utils.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()


class ChatMessageRepository:
    def __init__(self):
        self.dynamodb = get_dynamodb_client()
        self.table_name = settings.dynamodb_chat_table

    def add_message(self, message: ChatMessage) -> ChatMessage:
        try:
            self.dynamodb.put_item(self.table_name, message.to_dynamodb_item())
            return message
        except ClientError as e:
            logger.error(f"Error adding chat message to {message.conversation_id}: {e}")
            raise


_chat_repository: Optional[ChatMessageRepository] = None


def get_chat_repository() -> ChatMessageRepository:
    global _chat_repository
    if _chat_repository is None:
        _chat_repository = ChatMessageRepository()
    return _chat_repository
