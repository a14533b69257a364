"""
Authenticated encryption for provider credentials stored at rest.

Tokens have the form ``<key version>:<urlsafe base64(nonce || ciphertext+tag)>``.
A fresh 96-bit random nonce is drawn for every encryption. The owner id is bound
as associated data, so a ciphertext copied onto another owner fails to decrypt.
"""
import base64
import binascii
import os
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from caresync.utils.error_handling import CredentialError
from caresync.utils.key_manager import KeyManager

NONCE_SIZE = 12


def _decode_key(key: str) -> bytes:
    raw = base64.urlsafe_b64decode(key + "=" * (-len(key) % 4))
    if len(raw) != 32:
        raise CredentialError("Credential keys must be 256-bit")
    return raw


class CredentialCipher:
    def __init__(self, key_manager: Optional[KeyManager] = None):
        self.key_manager = key_manager or KeyManager()

    def encrypt(self, plaintext: str, associated_data: str) -> str:
        key, version = self.key_manager.get_current_key()
        nonce = os.urandom(NONCE_SIZE)
        ciphertext = AESGCM(_decode_key(key)).encrypt(nonce, plaintext.encode("utf-8"), associated_data.encode("utf-8"))
        return f"{version}:{base64.urlsafe_b64encode(nonce + ciphertext).decode('ascii')}"

    def decrypt(self, token: str, associated_data: str) -> str:
        version, _, payload = token.partition(":")
        if not version or not payload:
            raise CredentialError("Malformed credential token")
        try:
            blob = base64.urlsafe_b64decode(payload)
        except (binascii.Error, ValueError) as e:
            raise CredentialError("Malformed credential token") from e
        if len(blob) <= NONCE_SIZE:
            raise CredentialError("Malformed credential token")
        key = _decode_key(self.key_manager.get_key(version))
        try:
            plaintext = AESGCM(key).decrypt(blob[:NONCE_SIZE], blob[NONCE_SIZE:], associated_data.encode("utf-8"))
        except InvalidTag as e:
            raise CredentialError("Credential failed authentication") from e
        return plaintext.decode("utf-8")

    def needs_reencryption(self, token: str) -> bool:
        _, current_version = self.key_manager.get_current_key()
        return token.partition(":")[0] != current_version
