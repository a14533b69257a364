import base64
import os

import pytest

from caresync.utils.credentials import CredentialCipher
from caresync.utils.error_handling import CredentialError


def make_key(seed: int) -> str:
    return base64.urlsafe_b64encode(bytes([seed]) * 32).decode()


class StaticKeyManager:
    def __init__(self, keys, current):
        self.keys = keys
        self.current = current

    def get_current_key(self):
        return self.keys[self.current], self.current

    def get_key(self, version):
        if version not in self.keys:
            raise RuntimeError(f"Key version {version} not found.")
        return self.keys[version]


@pytest.fixture
def cipher():
    return CredentialCipher(StaticKeyManager({"v1": make_key(1), "v2": make_key(2)}, "v1"))


def test_round_trip_and_version_prefix(cipher):
    token = cipher.encrypt("hunter22", "owner1")
    assert token.startswith("v1:")
    assert "hunter22" not in token
    assert cipher.decrypt(token, "owner1") == "hunter22"


def test_fresh_nonce_per_encryption(cipher):
    assert cipher.encrypt("hunter22", "owner1") != cipher.encrypt("hunter22", "owner1")


def test_ciphertext_is_bound_to_owner(cipher):
    token = cipher.encrypt("hunter22", "owner1")
    with pytest.raises(CredentialError):
        cipher.decrypt(token, "owner2")


def test_tampering_is_detected(cipher):
    version, _, payload = cipher.encrypt("hunter22", "owner1").partition(":")
    blob = bytearray(base64.urlsafe_b64decode(payload))
    blob[-1] ^= 0x01
    with pytest.raises(CredentialError):
        cipher.decrypt(f"{version}:{base64.urlsafe_b64encode(bytes(blob)).decode()}", "owner1")


@pytest.mark.parametrize("token", ["", "v1", "v1:", "v1:!!!", "v1:" + base64.urlsafe_b64encode(b"short").decode()])
def test_malformed_tokens(cipher, token):
    with pytest.raises(CredentialError):
        cipher.decrypt(token, "owner1")


def test_old_versions_still_decrypt_after_rotation():
    manager = StaticKeyManager({"v1": make_key(1), "v2": make_key(2)}, "v1")
    cipher = CredentialCipher(manager)
    token = cipher.encrypt("hunter22", "owner1")
    manager.current = "v2"
    assert cipher.needs_reencryption(token)
    assert cipher.decrypt(token, "owner1") == "hunter22"
    assert not cipher.needs_reencryption(cipher.encrypt("hunter22", "owner1"))


def test_short_keys_are_rejected():
    cipher = CredentialCipher(StaticKeyManager({"v1": base64.urlsafe_b64encode(os.urandom(16)).decode()}, "v1"))
    with pytest.raises(CredentialError):
        cipher.encrypt("hunter22", "owner1")


def test_default_key_manager_reads_environment():
    cipher = CredentialCipher()
    token = cipher.encrypt("hunter22", "owner1")
    assert token.startswith("v1:")
    assert cipher.decrypt(token, "owner1") == "hunter22"
