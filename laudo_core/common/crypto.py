# laudo_core/common/crypto.py
"""
Reversible encryption for sensitive text fields.

Ciphertext is a Fernet token prefixed with ``enc:``. Values without the prefix are
treated as plaintext, so rows written before encryption was enabled still read back.
"""
from __future__ import annotations

import base64
import hashlib
from functools import lru_cache
from typing import Optional, Sequence

import structlog
from cryptography.fernet import Fernet, InvalidToken, MultiFernet
from django.conf import settings

log = structlog.get_logger(__name__)

ENCRYPTED_PREFIX = "enc:"


class DecodingError(Exception):
    """Ciphertext could not be decrypted (bad token, wrong key, truncated value)."""


def _as_fernet_key(raw: str) -> bytes:
    """
    Accept either a urlsafe base64 Fernet key or an arbitrary secret.
    Arbitrary secrets are stretched with SHA-256 into a valid key.
    """
    candidate = raw.strip().encode("utf-8")
    try:
        if len(base64.urlsafe_b64decode(candidate)) == 32:
            return candidate
    except (ValueError, TypeError):
        pass
    return base64.urlsafe_b64encode(hashlib.sha256(candidate).digest())


class FieldCodec:
    def __init__(self, keys: Sequence[str]):
        if not keys:
            raise ValueError("At least one encryption key is required.")
        self._fernet = MultiFernet([Fernet(_as_fernet_key(k)) for k in keys])

    @staticmethod
    def is_encrypted(value: Optional[str]) -> bool:
        return isinstance(value, str) and value.startswith(ENCRYPTED_PREFIX)

    def _open(self, value: str) -> str:
        token = value[len(ENCRYPTED_PREFIX):].encode("ascii", errors="ignore")
        try:
            return self._fernet.decrypt(token).decode("utf-8")
        except (InvalidToken, UnicodeDecodeError) as exc:
            raise DecodingError("Encrypted value could not be decrypted.") from exc

    def encrypt(self, plaintext: Optional[str]) -> Optional[str]:
        if plaintext is None or plaintext == "":
            return plaintext
        if self.is_encrypted(plaintext):
            # only a token this codec can open counts as already encrypted
            try:
                self._open(plaintext)
                return plaintext
            except DecodingError:
                pass
        token = self._fernet.encrypt(str(plaintext).encode("utf-8"))
        return ENCRYPTED_PREFIX + token.decode("ascii")

    def decrypt(self, ciphertext: Optional[str]) -> Optional[str]:
        if ciphertext is None or ciphertext == "":
            return ciphertext
        if not self.is_encrypted(ciphertext):
            return ciphertext
        return self._open(ciphertext)


@lru_cache(maxsize=1)
def get_codec() -> FieldCodec:
    keys = getattr(settings, "FIELD_ENCRYPTION_KEYS", None) or [settings.SECRET_KEY]
    return FieldCodec(keys)


def encrypt(plaintext: Optional[str]) -> Optional[str]:
    return get_codec().encrypt(plaintext)


def decrypt(ciphertext: Optional[str]) -> Optional[str]:
    return get_codec().decrypt(ciphertext)


def decrypt_or(ciphertext: Optional[str], fallback: str, *, field: str = "") -> Optional[str]:
    """
    Decrypt, substituting ``fallback`` when the value is undecryptable.
    """
    try:
        return decrypt(ciphertext)
    except DecodingError:
        log.warning("crypto.decrypt_failed", field=field or None)
        return fallback
