"""Configuration utilities for the CareSync service."""

import json
import logging
import os
from functools import lru_cache
from typing import Any, Dict, List, Optional, Union

import boto3
from botocore.exceptions import ClientError
from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class AwsSecretsManager:
    """Utility class for retrieving secrets from AWS Secrets Manager."""

    def __init__(self, region_name: Optional[str] = None):
        """
        Initialize AWS Secrets Manager client.

        Args:
            region_name: AWS region name
        """
        self.region_name = region_name or os.environ.get("AWS_REGION", "us-east-1")
        self.client = boto3.client(
            service_name="secretsmanager",
            region_name=self.region_name,
            endpoint_url=os.environ.get("AWS_SECRETSMANAGER_ENDPOINT"),
        )

    def get_secret(self, secret_name: str) -> Dict[str, Any]:
        """
        Retrieve a secret from AWS Secrets Manager.

        Args:
            secret_name: Name or ARN of the secret

        Returns:
            Dict[str, Any]: Secret values as a dictionary

        Raises:
            ClientError: If the secret cannot be retrieved
        """
        try:
            response = self.client.get_secret_value(SecretId=secret_name)
            if "SecretString" in response:
                return json.loads(response["SecretString"])
            raise ValueError("Binary secrets are not supported")
        except ClientError as e:
            if os.environ.get("SERVICE_ENV", "development") == "development":
                logger.warning(f"Could not retrieve secret {secret_name}: {e}")
                return {}
            raise


class Settings(BaseSettings):
    """Application settings loaded from environment variables and secrets."""

    # Service configuration
    service_env: str = Field("development", description="Service environment (development, staging, production)")
    log_level: str = Field("INFO", description="Logging level")
    log_output: str = Field("stdout", description="Log destination: stdout or file")
    log_file_path: Optional[str] = Field(None, description="Log file path when log_output is 'file'")
    cors_origins: List[str] = Field(["*"], description="CORS allowed origins")
    secret_name: Optional[str] = Field(None, description="AWS Secrets Manager secret name")

    # AWS Configuration
    aws_region: str = Field(..., description="AWS region")
    aws_access_key_id: Optional[str] = Field(None, description="AWS access key ID")
    aws_secret_access_key: Optional[SecretStr] = Field(None, description="AWS secret access key")

    # DynamoDB Configuration
    dynamodb_endpoint: Optional[str] = Field(None, description="DynamoDB endpoint URL, primarily for local development")
    dynamodb_readings_table: str = Field("glucose_readings", description="Table for glucose readings")
    dynamodb_alerts_table: str = Field("glucose_alerts", description="Table for alerts")
    dynamodb_sessions_table: str = Field("provider_sessions", description="Table for provider session state")
    dynamodb_care_table: str = Field("care_relationships", description="Table for care relationships")
    dynamodb_profiles_table: str = Field("user_profiles", description="Table for user profiles and settings")
    dynamodb_chat_table: str = Field("chat_messages", description="Table for chat messages")

    # Dexcom OAuth (Individual Access API)
    dexcom_client_id: Optional[str] = Field(None, description="Dexcom API client ID")
    dexcom_client_secret: Optional[SecretStr] = Field(None, description="Dexcom API client secret")
    dexcom_redirect_uri: str = Field(..., description="Dexcom OAuth redirect URI")
    dexcom_api_base_url: str = Field("https://api.dexcom.com", description="Dexcom API base URL")

    # Dexcom Share
    dexcom_share_application_id: str = Field(
        "d89443d2-327c-4a6f-89e5-496bbb0317db", description="Application identifier sent with Share requests"
    )

    # Encryption
    encryption_keys_secret: str = Field("ENCRYPTION_KEYS", description="Secret holding versioned credential keys")

    # Sync / scheduling
    scheduler_enabled: bool = Field(True, description="Run the polling and daily jobs inside the API process")
    poll_interval_seconds: int = Field(300, description="Interval between provider polling ticks")
    daily_summary_cron: str = Field("0 1 * * *", description="Cron expression for the daily recap job")
    request_timeout_seconds: float = Field(15.0, description="HTTP request timeout in seconds")

    # Push notifications
    expo_push_url: str = Field("https://exp.host/--/api/v2/push/send", description="Expo push API endpoint")

    # Auth
    jwt_secret_key: SecretStr = Field(SecretStr("change-me"), description="HS256 secret for request JWTs")
    jwt_issuer: str = Field("caresync", description="Expected JWT issuer")
    jwt_audience: str = Field("caresync-api", description="Expected JWT audience")
    metrics_user: str = Field("metrics", description="Basic auth user for /metrics")
    metrics_pass: SecretStr = Field(SecretStr("metrics"), description="Basic auth password for /metrics")

    @field_validator("cors_origins")
    @classmethod
    def validate_cors_origins(cls, v: List[str]) -> List[str]:
        """
        Validate CORS origins.

        Args:
            v: List of CORS origins

        Returns:
            List[str]: Validated list of CORS origins
        """
        if len(v) == 1 and v[0] == "*":
            return v

        if len(v) == 1 and "," in v[0]:
            v = v[0].split(",")

        validated = []
        for origin in v:
            if not origin.startswith(("http://", "https://")):
                origin = f"https://{origin}"
            validated.append(origin)
        return validated

    @field_validator("aws_region", "dexcom_redirect_uri")
    @classmethod
    def check_required_fields(cls, v: Union[str, None], info: Any) -> str:
        """Validate that required fields are provided."""
        if not v:
            raise ValueError(f"{info.field_name} is required")
        return v

    def _load_secrets(self) -> None:
        """Load secrets from AWS Secrets Manager if configured."""
        if not self.secret_name or self.service_env == "development":
            return

        secrets_manager = AwsSecretsManager(self.aws_region)
        secrets = secrets_manager.get_secret(self.secret_name)

        for key, value in secrets.items():
            key_lower = key.lower()
            if hasattr(self, key_lower):
                field_info = self.__class__.model_fields.get(key_lower)
                if field_info and "SecretStr" in str(field_info.annotation) and isinstance(value, str):
                    value = SecretStr(value)
                setattr(self, key_lower, value)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        env_prefix="",
        extra="ignore",
    )

    def __init__(self, *args, **kwargs):
        """Initialize settings with secrets."""
        super().__init__(*args, **kwargs)
        self._load_secrets()

        if self.service_env == "development" and not self.dynamodb_endpoint:
            self.dynamodb_endpoint = "http://localhost:8000"


@lru_cache()
def get_settings() -> Settings:
    """
    Create and cache settings instance.

    Returns:
        Settings: Application settings
    """
    return Settings()
