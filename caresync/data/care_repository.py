"""Read-only repositories for user profiles and care relationships."""

import logging
from typing import Dict, Iterable, List, Optional

from boto3.dynamodb.conditions import Attr, Key
from botocore.exceptions import ClientError

from caresync.data.dynamodb import get_dynamodb_client
from caresync.models.care import CareRelationship, RelationshipStatus, UserProfile
from caresync.utils.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

OWNER_INDEX = "OwnerIndex"


class ProfileRepository:
    """User profiles are owned by the profile-settings service; the core only reads them."""

    def __init__(self):
        self.dynamodb = get_dynamodb_client()
        self.table_name = settings.dynamodb_profiles_table

    def get_profile(self, user_id: str) -> Optional[UserProfile]:
        try:
            item = self.dynamodb.get_item(self.table_name, {"user_id": user_id})
            return UserProfile.from_dynamodb_item(item) if item else None
        except ClientError as e:
            logger.error(f"Error getting profile {user_id}: {e}")
            raise

    def get_profiles(self, user_ids: Iterable[str]) -> Dict[str, UserProfile]:
        """Profiles by user id; unknown ids are omitted."""
        profiles = {}
        for user_id in dict.fromkeys(user_ids):
            profile = self.get_profile(user_id)
            if profile is not None:
                profiles[user_id] = profile
        return profiles


class CareRepository:
    """Care relationships are owned by circle management; the core only reads them."""

    def __init__(self):
        self.dynamodb = get_dynamodb_client()
        self.table_name = settings.dynamodb_care_table

    def list_relationships(
        self,
        owner_id: str,
        status: Optional[RelationshipStatus] = None
    ) -> List[CareRelationship]:
        """
        Relationships in which `owner_id` is the monitored person.

        Args:
            owner_id: The owner
            status: Only relationships in this status

        Returns:
            List[CareRelationship]: Matching relationships
        """
        filter_expression = Attr("status").eq(status.value) if status else None
        try:
            items = self.dynamodb.query_items(
                self.table_name, Key("owner_id").eq(owner_id), index_name=OWNER_INDEX, filter_expression=filter_expression
            )
            return [CareRelationship.from_dynamodb_item(item) for item in items]
        except ClientError as e:
            logger.error(f"Error listing relationships for {owner_id}: {e}")
            raise

    def list_active_relationships(self) -> List[CareRelationship]:
        """Every active relationship across all owners."""
        try:
            items = self.dynamodb.scan_items(self.table_name, Attr("status").eq(RelationshipStatus.ACTIVE.value))
            return [CareRelationship.from_dynamodb_item(item) for item in items]
        except ClientError as e:
            logger.error(f"Error scanning active relationships: {e}")
            raise


_profile_repository: Optional[ProfileRepository] = None
_care_repository: Optional[CareRepository] = None


def get_profile_repository() -> ProfileRepository:
    global _profile_repository
    if _profile_repository is None:
        _profile_repository = ProfileRepository()
    return _profile_repository


def get_care_repository() -> CareRepository:
    global _care_repository
    if _care_repository is None:
        _care_repository = CareRepository()
    return _care_repository
