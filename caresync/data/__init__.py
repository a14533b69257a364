"""Data access and persistence layer."""

from caresync.data.dynamodb import get_dynamodb_client
from caresync.data.glucose_repository import get_glucose_repository
from caresync.data.alert_repository import get_alert_repository
from caresync.data.session_repository import get_session_repository
from caresync.data.care_repository import get_care_repository, get_profile_repository
from caresync.data.chat_repository import get_chat_repository

__all__ = [
    "get_dynamodb_client",
    "get_glucose_repository",
    "get_alert_repository",
    "get_session_repository",
    "get_care_repository",
    "get_profile_repository",
    "get_chat_repository",
]
