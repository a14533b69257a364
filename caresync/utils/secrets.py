"""
Named secret lookup used by the credential key manager.

Environment variables win, so local runs and tests never reach AWS. Outside
development, names missing from the environment are read from the service's
Secrets Manager bundle (``SECRET_NAME``) once and memoized for the process.
Never log secret values.
"""
import os
from typing import Any, Dict, Optional

from caresync.utils.config import AwsSecretsManager, get_settings

_bundle: Optional[Dict[str, Any]] = None


def _secret_bundle() -> Dict[str, Any]:
    global _bundle
    if _bundle is None:
        settings = get_settings()
        if settings.service_env == "development" or not settings.secret_name:
            _bundle = {}
        else:
            _bundle = AwsSecretsManager(settings.aws_region).get_secret(settings.secret_name)
    return _bundle


def get_secret(name: str) -> Any:
    """
    Resolve a secret by name.

    Raises:
        RuntimeError: The name is neither in the environment nor in the bundle
    """
    value = os.environ.get(name) or _secret_bundle().get(name)
    if not value:
        raise RuntimeError(f"Secret '{name}' not found in environment or secrets manager.")
    return value
