"""
KeyManager: versioned keys for encrypting provider credentials at rest.

- Keys are 256-bit, stored urlsafe-base64 encoded, keyed by version ("v1", "v2", ...)
- Development reads/writes the key set as JSON in an environment variable
- Other environments read it from AWS Secrets Manager via get_secret
- CLI entrypoint for manual rotation

Usage:
    python -m caresync.utils.key_manager           # Show current key version and all versions
    python -m caresync.utils.key_manager rotate    # Rotate and set a new key version

Security:
- Never log or print key material
"""
import argparse
import json
import os
import secrets
from datetime import datetime, timezone
from typing import Dict, Optional, Tuple

from caresync.utils.secrets import get_secret

KEYS_SECRET_NAME = os.environ.get("ENCRYPTION_KEYS_SECRET", "ENCRYPTION_KEYS")
CURRENT_KEY_VERSION_ENV = "CURRENT_KEY_VERSION"


def _version_number(version: str) -> int:
    return int(version.lstrip("v") or 0)


class KeyManager:
    def __init__(self, secret_name: Optional[str] = None):
        self.secret_name = secret_name or KEYS_SECRET_NAME
        self.is_dev = os.environ.get("SERVICE_ENV", "development") == "development"

    def _now_iso(self):
        return datetime.now(timezone.utc).isoformat()

    def _migrate_keys(self, keys):
        # Old format: {"v1": "key1"}, new: {"v1": {"key": ..., "created_at": ...}}
        migrated = {}
        for version, value in keys.items():
            if isinstance(value, dict) and "key" in value and "created_at" in value:
                migrated[version] = value
            else:
                migrated[version] = {"key": value, "created_at": self._now_iso()}
        return migrated

    def _load_keys(self) -> Dict[str, Dict[str, str]]:
        """Load all keys from the environment (dev) or the secrets store."""
        if self.is_dev:
            raw = os.environ.get(self.secret_name)
        else:
            raw = get_secret(self.secret_name)
        keys = json.loads(raw) if isinstance(raw, str) and raw else (raw or {})
        return self._migrate_keys(keys)

    def _save_keys(self, keys: Dict[str, Dict[str, str]]):
        """Save keys to env (dev only). In prod, use AWS admin tooling."""
        if self.is_dev:
            os.environ[self.secret_name] = json.dumps(keys)
        else:
            raise NotImplementedError("Saving keys in production must be done via AWS Secrets Manager admin tools.")

    def get_current_key(self) -> Tuple[str, str]:
        """Return (key, version) for the current key."""
        keys = self._load_keys()
        version = os.environ.get(CURRENT_KEY_VERSION_ENV)
        if not version and keys:
            version = max(keys, key=_version_number)
        if not version or version not in keys:
            raise RuntimeError("No current key version set or key missing.")
        return keys[version]["key"], version

    def get_key(self, version: str) -> str:
        keys = self._load_keys()
        if version not in keys:
            raise RuntimeError(f"Key version {version} not found.")
        return keys[version]["key"]

    def list_keys(self) -> Dict[str, Dict[str, str]]:
        keys = self._load_keys()
        return {v: {"created_at": d["created_at"]} for v, d in keys.items()}

    def rotate_key(self) -> Tuple[str, str]:
        """Generate a new key, store it, and set as current. Returns (key, version)."""
        keys = self._load_keys()
        next_number = max((_version_number(v) for v in keys), default=0) + 1
        new_version = f"v{next_number}"
        new_key = secrets.token_urlsafe(32)
        keys[new_version] = {"key": new_key, "created_at": self._now_iso()}
        self._save_keys(keys)
        os.environ[CURRENT_KEY_VERSION_ENV] = new_version
        return new_key, new_version


def main() -> None:
    parser = argparse.ArgumentParser(description="Inspect or rotate credential encryption keys")
    parser.add_argument("command", nargs="?", choices=["show", "rotate"], default="show")
    args = parser.parse_args()

    km = KeyManager()
    if args.command == "rotate":
        _, version = km.rotate_key()
        print(f"[ROTATE] {datetime.now(timezone.utc).isoformat()}: Rotated key. New version: {version}")
        print("Run scripts/reencrypt_credentials.py --apply to move stored credentials onto it.")
    else:
        _, version = km.get_current_key()
        print(f"Current key version: {version}")
        print(f"All key versions: {sorted(km.list_keys(), key=_version_number)}")


if __name__ == "__main__":
    main()
