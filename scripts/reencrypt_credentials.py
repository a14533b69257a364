#!/usr/bin/env python
"""
Re-encrypt stored Share passwords under the current credential key version.

Run after `python -m caresync.utils.key_manager rotate`. Dry run by default:

    python scripts/reencrypt_credentials.py            # report what would change
    python scripts/reencrypt_credentials.py --apply    # write the new ciphertexts
"""

import argparse
import logging
import os
import sys

sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from caresync.data.session_repository import get_session_repository
from caresync.models.sessions import ProviderKind
from caresync.utils.config import get_settings
from caresync.utils.credentials import CredentialCipher
from caresync.utils.error_handling import CredentialError
from caresync.utils.logging_utils import setup_json_logging

settings = get_settings()
setup_json_logging(settings.log_level)
logger = logging.getLogger(__name__)


def reencrypt_share_credentials(sessions, cipher: CredentialCipher, apply: bool = False) -> int:
    """
    Re-encrypt every Share credential not sealed under the current key.

    Returns:
        int: Number of credentials that were (or would be) re-encrypted
    """
    changed = 0
    for user_id, session in sessions.iter_sessions(ProviderKind.SHARE):
        token = session.encrypted_credential
        if not token or not cipher.needs_reencryption(token):
            continue
        try:
            password = cipher.decrypt(token, user_id)
        except CredentialError as e:
            logger.error(f"Cannot decrypt Share credential for {user_id}: {e}")
            continue
        changed += 1
        if apply:
            sessions.update_session_state(
                user_id, ProviderKind.SHARE, {"encrypted_credential": cipher.encrypt(password, user_id)}
            )
            logger.info(f"Re-encrypted Share credential for {user_id}")
        else:
            logger.info(f"[DRY RUN] Would re-encrypt Share credential for {user_id}")
    return changed


def main():
    parser = argparse.ArgumentParser(description="Re-encrypt stored provider credentials")
    parser.add_argument("--apply", action="store_true", help="Write the re-encrypted credentials")
    args = parser.parse_args()

    count = reencrypt_share_credentials(get_session_repository(), CredentialCipher(), apply=args.apply)
    logger.info(f"{'Re-encrypted' if args.apply else 'Would re-encrypt'} {count} credential(s)")


if __name__ == "__main__":
    main()
