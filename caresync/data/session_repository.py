"""Repository for per-owner provider session state."""

import logging
from typing import Any, Dict, Iterator, List, Optional, Tuple

from boto3.dynamodb.conditions import Attr
from botocore.exceptions import ClientError

from caresync.data.dynamodb import get_dynamodb_client
from caresync.models.sessions import SESSION_MODELS, ProviderKind, ProviderSession, serialize_session_value
from caresync.utils.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()


class SessionRepository:
    """
    Provider sessions keyed by (user_id, provider).

    Writes are unguarded: two overlapping syncs for the same owner each write
    their own patch and the last write wins.
    """

    def __init__(self):
        self.dynamodb = get_dynamodb_client()
        self.table_name = settings.dynamodb_sessions_table

    def get_session(self, user_id: str, kind: ProviderKind) -> Optional[ProviderSession]:
        """
        Get an owner's session for a provider.

        Returns:
            Optional[ProviderSession]: The provider-specific session model, or None
        """
        try:
            item = self.dynamodb.get_item(self.table_name, {"user_id": user_id, "provider": kind.value})
        except ClientError as e:
            logger.error(f"Error getting {kind.value} session: {e}")
            raise
        if not item:
            return None
        return SESSION_MODELS[kind].from_dynamodb_item(item)

    def save_session(self, user_id: str, kind: ProviderKind, session: ProviderSession) -> ProviderSession:
        """Replace the whole session record."""
        item = session.to_dynamodb_item()
        item.update({"user_id": user_id, "provider": kind.value})
        try:
            self.dynamodb.put_item(self.table_name, item)
            return session
        except ClientError as e:
            logger.error(f"Error saving {kind.value} session: {e}")
            raise

    def update_session_state(self, user_id: str, kind: ProviderKind, patch: Dict[str, Any]) -> None:
        """
        Field-level SET of the given session attributes, creating the record if needed.

        Args:
            user_id: The owner
            kind: The provider
            patch: Attribute name -> new value (None stores a null)
        """
        if not patch:
            return
        names = {}
        values = {}
        assignments = []
        for idx, (field, value) in enumerate(patch.items()):
            names[f"#f{idx}"] = field
            values[f":v{idx}"] = serialize_session_value(value)
            assignments.append(f"#f{idx} = :v{idx}")
        try:
            self.dynamodb.update_item(
                self.table_name,
                key={"user_id": user_id, "provider": kind.value},
                update_expression="SET " + ", ".join(assignments),
                expression_attribute_values=values,
                expression_attribute_names=names,
            )
        except ClientError as e:
            logger.error(f"Error updating {kind.value} session state: {e}")
            raise

    def iter_sessions(self, kind: ProviderKind) -> Iterator[Tuple[str, ProviderSession]]:
        """Every stored (user_id, session) pair for a provider."""
        try:
            for item in self.dynamodb.scan_items(self.table_name, Attr("provider").eq(kind.value)):
                yield item["user_id"], SESSION_MODELS[kind].from_dynamodb_item(item)
        except ClientError as e:
            logger.error(f"Error scanning {kind.value} sessions: {e}")
            raise

    def list_connected_users(self, kind: ProviderKind) -> List[str]:
        """Owners with a connected session for this provider."""
        filter_expression = Attr("provider").eq(kind.value) & Attr("connected").eq(True)
        try:
            return [item["user_id"] for item in self.dynamodb.scan_items(self.table_name, filter_expression)]
        except ClientError as e:
            logger.error(f"Error listing connected {kind.value} users: {e}")
            raise


_session_repository: Optional[SessionRepository] = None


def get_session_repository() -> SessionRepository:
    global _session_repository
    if _session_repository is None:
        _session_repository = SessionRepository()
    return _session_repository
