"""
Application-layer field encryption helpers.

Used for Plaid access tokens, which must never be stored in plaintext.

Envelope format:
    enc:v1:<keyId>:<base64url(nonce + ciphertext)>
"""
from __future__ import annotations

import base64
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM


_ENVELOPE_PREFIX = "enc:v1"
_NONCE_SIZE = 12


class EncryptionNotConfiguredError(ValueError):
    """Raised when a secret must be encrypted but no key is configured."""


@dataclass(frozen=True)
class _EncryptionConfig:
    current_key: Optional[bytes]
    previous_key: Optional[bytes]
    key_id: str

    @property
    def enabled(self) -> bool:
        return self.current_key is not None


def _parse_key(raw: str) -> bytes:
    candidate = raw.strip()
    if not candidate:
        raise ValueError("Encryption key cannot be empty.")

    # Support hex keys for operational convenience.
    if all(ch in "0123456789abcdefABCDEF" for ch in candidate) and len(candidate) % 2 == 0:
        decoded = bytes.fromhex(candidate)
        if len(decoded) == 32:
            return decoded

    padded = candidate + ("=" * ((4 - len(candidate) % 4) % 4))
    try:
        decoded = base64.urlsafe_b64decode(padded.encode("utf-8"))
    except ValueError as exc:
        raise ValueError("Invalid base64 data encryption key.") from exc
    if len(decoded) == 32:
        return decoded

    raise ValueError("Data encryption key must decode to exactly 32 bytes.")


@lru_cache(maxsize=1)
def _load_config() -> _EncryptionConfig:
    current_raw = os.getenv("DATA_ENCRYPTION_KEY_CURRENT", "").strip()
    previous_raw = os.getenv("DATA_ENCRYPTION_KEY_PREVIOUS", "").strip()
    key_id = os.getenv("DATA_ENCRYPTION_KEY_ID", "k1").strip() or "k1"

    current_key = _parse_key(current_raw) if current_raw else None
    previous_key = _parse_key(previous_raw) if previous_raw else None

    return _EncryptionConfig(
        current_key=current_key,
        previous_key=previous_key,
        key_id=key_id,
    )


def is_data_encryption_enabled() -> bool:
    return _load_config().enabled


def is_encrypted_envelope(value: Optional[str]) -> bool:
    return bool(value) and value.startswith(f"{_ENVELOPE_PREFIX}:")


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("utf-8").rstrip("=")


def _b64decode(raw: str) -> bytes:
    return base64.urlsafe_b64decode(raw + "=" * (-len(raw) % 4))


def _split_envelope(envelope: str) -> tuple[str, bytes, bytes]:
    """Return (key_id, nonce, ciphertext) from an enc:v1 envelope."""
    parts = envelope.split(":", 3)
    if len(parts) != 4:
        raise ValueError("Invalid encrypted value format.")

    key_id, blob = parts[2], _b64decode(parts[3])
    if len(blob) <= _NONCE_SIZE:
        raise ValueError("Encrypted payload is too short.")
    return key_id, blob[:_NONCE_SIZE], blob[_NONCE_SIZE:]


def _candidate_keys(config: _EncryptionConfig, key_id: str) -> list[bytes]:
    keys = [config.current_key, config.previous_key]
    if key_id != config.key_id:
        # Written before the last rotation.
        keys.reverse()
    return [key for key in keys if key]


def encrypt_value(plaintext: Optional[str]) -> Optional[str]:
    """Encrypt with the current key, or return None when encryption is disabled."""
    if plaintext is None:
        return None

    config = _load_config()
    if not config.enabled:
        return None

    nonce = os.urandom(_NONCE_SIZE)
    sealed = AESGCM(config.current_key).encrypt(nonce, plaintext.encode("utf-8"), None)
    return f"{_ENVELOPE_PREFIX}:{config.key_id}:{_b64encode(nonce + sealed)}"


def decrypt_value(ciphertext: Optional[str]) -> Optional[str]:
    if ciphertext is None:
        return None

    if not is_encrypted_envelope(ciphertext):
        # Legacy plaintext rows pass through unchanged.
        return ciphertext

    key_id, nonce, sealed = _split_envelope(ciphertext)

    config = _load_config()
    if not config.enabled:
        raise EncryptionNotConfiguredError(
            "Encrypted data found but DATA_ENCRYPTION_KEY_CURRENT is not configured."
        )

    for key in _candidate_keys(config, key_id):
        try:
            return AESGCM(key).decrypt(nonce, sealed, None).decode("utf-8")
        except InvalidTag:
            continue

    raise ValueError("Failed to decrypt encrypted value with configured keys.")


def decrypt_with_fallback(ciphertext: Optional[str], plaintext_fallback: Optional[str]) -> Optional[str]:
    if ciphertext:
        try:
            return decrypt_value(ciphertext)
        except ValueError:
            return plaintext_fallback
    return plaintext_fallback


def encrypt_secret(plaintext: str) -> str:
    """
    Encrypt a value that must never be persisted in plaintext.

    Raises:
        EncryptionNotConfiguredError: if no data encryption key is configured
        ValueError: if the value is empty
    """
    if not plaintext or not plaintext.strip():
        raise ValueError("Secret value cannot be empty.")

    encrypted = encrypt_value(plaintext)
    if encrypted is None:
        raise EncryptionNotConfiguredError(
            "DATA_ENCRYPTION_KEY_CURRENT is not configured. Cannot store secrets securely."
        )
    return encrypted


def decrypt_secret(ciphertext: str) -> str:
    """Decrypt a value written by encrypt_secret; plaintext rows are rejected."""
    if not is_encrypted_envelope(ciphertext):
        raise ValueError("Stored secret is not an encrypted envelope.")
    return decrypt_value(ciphertext)


def reset_encryption_config_cache() -> None:
    _load_config.cache_clear()
