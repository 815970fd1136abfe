from __future__ import annotations

import base64
import os

from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from guildauth.core.config import get_settings


class EncryptionKeyError(RuntimeError):
    pass


def _load_key() -> bytes:
    settings = get_settings()
    raw = settings.ENCRYPTION_KEY_BASE64
    try:
        key = base64.b64decode(raw, validate=True)
    except Exception as e:  # noqa: BLE001
        raise EncryptionKeyError("ENCRYPTION_KEY_BASE64 must be valid base64") from e

    if len(key) != 32:
        raise EncryptionKeyError("ENCRYPTION_KEY_BASE64 must decode to 32 bytes (AES-256)")

    return key


def encrypt_bytes(*, plaintext: bytes, aad: bytes) -> bytes:
    key = _load_key()
    nonce = os.urandom(12)
    aesgcm = AESGCM(key)
    ciphertext = aesgcm.encrypt(nonce, plaintext, aad)
    return nonce + ciphertext


def decrypt_bytes(*, blob: bytes, aad: bytes) -> bytes:
    if len(blob) < 13:
        raise ValueError("Encrypted blob is too short")

    key = _load_key()
    nonce = blob[:12]
    ciphertext = blob[12:]
    aesgcm = AESGCM(key)
    return aesgcm.decrypt(nonce, ciphertext, aad)


def oauth_token_aad(*, user_id: str, kind: str) -> bytes:
    # Binds ciphertext to its owner so a blob copied into another row fails to decrypt.
    return f"users:{user_id}:discord:{kind}".encode()


def encrypt_token(token: str, *, user_id: str, kind: str) -> bytes:
    return encrypt_bytes(plaintext=token.encode("utf-8"), aad=oauth_token_aad(user_id=user_id, kind=kind))


def decrypt_token(blob: bytes, *, user_id: str, kind: str) -> str:
    return decrypt_bytes(blob=blob, aad=oauth_token_aad(user_id=user_id, kind=kind)).decode("utf-8")
