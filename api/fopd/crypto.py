"""Symmetric encryption, hashing and token helpers for signature handling.

Signature payloads are sealed with AES-256-GCM. The stored form is
``iv:tag:ciphertext`` (all hex) so a row can be inspected without tooling
and rejected early when malformed.
"""
import hashlib
import hmac
import secrets
from datetime import datetime, timezone
from functools import lru_cache

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from .config import SIGNATURE_ENCRYPTION_SECRET

IV_LENGTH = 16
TAG_LENGTH = 16
KEY_LENGTH = 32
KDF_SALT = b"fopd-signature-store"


class DecryptionError(ValueError):
    pass


@lru_cache(maxsize=4)
def _derive_key(secret: str) -> bytes:
    kdf = Scrypt(salt=KDF_SALT, length=KEY_LENGTH, n=2**14, r=8, p=1)
    return kdf.derive(secret.encode("utf-8"))


def encrypt_data(plaintext: str, secret: str = None) -> str:
    """Encrypt ``plaintext`` and return ``iv:tag:ciphertext`` as hex."""
    key = _derive_key(secret or SIGNATURE_ENCRYPTION_SECRET)
    iv = secrets.token_bytes(IV_LENGTH)
    sealed = AESGCM(key).encrypt(iv, plaintext.encode("utf-8"), None)
    ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
    return f"{iv.hex()}:{tag.hex()}:{ciphertext.hex()}"


def decrypt_data(payload: str, secret: str = None) -> str:
    """Reverse :func:`encrypt_data`.

    Raises :class:`DecryptionError` for malformed payloads, a wrong key or a
    tampered ciphertext.
    """
    parts = (payload or "").split(":")
    if len(parts) != 3:
        raise DecryptionError("invalid encrypted data format")
    try:
        iv, tag, ciphertext = (bytes.fromhex(p) for p in parts)
    except ValueError as exc:
        raise DecryptionError("encrypted data is not hex encoded") from exc
    if len(iv) != IV_LENGTH or len(tag) != TAG_LENGTH:
        raise DecryptionError("invalid iv or tag length")
    key = _derive_key(secret or SIGNATURE_ENCRYPTION_SECRET)
    try:
        plain = AESGCM(key).decrypt(iv, ciphertext + tag, None)
    except InvalidTag as exc:
        raise DecryptionError("authentication tag mismatch") from exc
    return plain.decode("utf-8")


def generate_hash(data) -> str:
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.sha256(data).hexdigest()


def generate_secure_token(length: int = 48) -> str:
    return secrets.token_hex(length)


def generate_otp(digits: int = 6) -> str:
    return f"{secrets.randbelow(10 ** digits):0{digits}d}"


def constant_time_equals(a: str, b: str) -> bool:
    return hmac.compare_digest((a or "").encode("utf-8"), (b or "").encode("utf-8"))


def server_timestamp(now: datetime = None) -> str:
    moment = now or datetime.now(timezone.utc).replace(tzinfo=None)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"
