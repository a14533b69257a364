"""Models for per-owner provider session state."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, SecretStr

from caresync.utils.timestamps import to_storage_timestamp


class ProviderKind(str, Enum):
    """Upstream telemetry providers."""

    SHARE = "share"
    OAUTH = "oauth"
    NIGHTSCOUT = "nightscout"


class ShareRegion(str, Enum):
    US = "us"
    OUS = "ous"


def serialize_session_value(value: Any) -> Any:
    """Convert a session field value into something DynamoDB can store."""
    if isinstance(value, SecretStr):
        return value.get_secret_value()
    if isinstance(value, datetime):
        return to_storage_timestamp(value)
    if isinstance(value, Enum):
        return value.value
    return value


class ProviderSession(BaseModel):
    """Fields common to every provider session."""

    connected: bool = Field(False, description="Whether the owner is connected to this provider")
    last_sync: Optional[datetime] = Field(None, description="Watermark of the last completed sync")

    @property
    def has_tokens(self) -> bool:
        """Whether enough credential state is stored to sync without re-connecting."""
        return False

    def to_dynamodb_item(self) -> Dict[str, Any]:
        """Flatten the session, unwrapping secrets and datetimes."""
        return {name: serialize_session_value(value) for name, value in self}

    @classmethod
    def from_dynamodb_item(cls, item: Dict[str, Any]) -> "ProviderSession":
        fields = {k: v for k, v in item.items() if k in cls.model_fields}
        return cls.model_validate(fields)


class ShareSession(ProviderSession):
    """Session-style provider: username/password -> account id -> session id."""

    username: Optional[str] = None
    encrypted_credential: Optional[str] = Field(None, description="AEAD-encrypted password")
    account_id: Optional[str] = None
    session_id: Optional[str] = None
    region: ShareRegion = ShareRegion.US

    @property
    def has_tokens(self) -> bool:
        return bool(self.encrypted_credential and self.account_id)


class OAuthSession(ProviderSession):
    """Authorization-code / refresh-token provider."""

    access_token: Optional[SecretStr] = None
    refresh_token: Optional[SecretStr] = None
    token_expiry: Optional[datetime] = None

    @property
    def has_tokens(self) -> bool:
        return self.access_token is not None and self.refresh_token is not None


class NightscoutSession(ProviderSession):
    """Self-hosted REST endpoint guarded by a shared secret."""

    endpoint_url: Optional[str] = None
    secret: Optional[SecretStr] = None

    @property
    def has_tokens(self) -> bool:
        return self.endpoint_url is not None


SESSION_MODELS = {
    ProviderKind.SHARE: ShareSession,
    ProviderKind.OAUTH: OAuthSession,
    ProviderKind.NIGHTSCOUT: NightscoutSession,
}
