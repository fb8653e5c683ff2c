"""
LINE credential protection.

The channel access token (and channel secret) are stored encrypted with
AES-256-CBC as ``ENC:<iv hex>:<ciphertext hex>``. Values saved before
encryption was introduced are plain strings and are still accepted.
"""

import base64
import hashlib
import hmac
import logging
import os
import secrets
from functools import lru_cache

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

logger = logging.getLogger(__name__)

ENC_PREFIX = "ENC:"
IV_LENGTH = 16
KEY_LENGTH = 32  # 256 bits
MASK = "●●●●●●●●"
ENCRYPTED_LABEL = "🔒 เข้ารหัสแล้ว"

DEFAULT_SECRET = "qa-portal-line-security-key-change-in-production"


@lru_cache(maxsize=1)
def get_encryption_key() -> bytes:
    """Key from LINE_ENCRYPTION_KEY (64 hex chars), else SHA-256 of SECRET_KEY."""
    env_key = os.getenv("LINE_ENCRYPTION_KEY", "")
    if len(env_key) == KEY_LENGTH * 2:
        try:
            return bytes.fromhex(env_key)
        except ValueError:
            logger.warning("LINE_ENCRYPTION_KEY is not valid hex, falling back to SECRET_KEY")

    secret_base = os.getenv("SECRET_KEY", DEFAULT_SECRET)
    return hashlib.sha256(secret_base.encode("utf-8")).digest()


def _cipher(iv: bytes) -> Cipher:
    return Cipher(algorithms.AES(get_encryption_key()), modes.CBC(iv))


def encrypt_token(plain_text: str) -> str:
    """
    Encrypt a token.

    Empty or whitespace-only input returns an empty string, so the round
    trip holds only for strings with at least one non-space character.
    Other strings are encrypted exactly as given, surrounding spaces included.
    """
    if not plain_text or plain_text.strip() == "":
        return ""

    iv = os.urandom(IV_LENGTH)
    padder = padding.PKCS7(algorithms.AES.block_size).padder()
    padded = padder.update(plain_text.encode("utf-8")) + padder.finalize()

    encryptor = _cipher(iv).encryptor()
    encrypted = encryptor.update(padded) + encryptor.finalize()

    return f"{ENC_PREFIX}{iv.hex()}:{encrypted.hex()}"


def decrypt_token(encrypted_text: str) -> str:
    """
    Decrypt a stored token.

    Plaintext (legacy) values are returned unchanged. A value that looks
    encrypted but cannot be decrypted is also returned unchanged, with a
    warning in the log.
    """
    if not encrypted_text or encrypted_text.strip() == "":
        return ""

    if not is_encrypted(encrypted_text):
        return encrypted_text

    parts = encrypted_text.split(":")
    if len(parts) != 3:
        logger.warning("Invalid encrypted token format, returning as-is")
        return encrypted_text

    try:
        iv = bytes.fromhex(parts[1])
        encrypted = bytes.fromhex(parts[2])

        decryptor = _cipher(iv).decryptor()
        padded = decryptor.update(encrypted) + decryptor.finalize()

        unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
        plain = unpadder.update(padded) + unpadder.finalize()
        return plain.decode("utf-8")
    except ValueError as e:
        # Bad hex, wrong IV length, bad padding or bad UTF-8
        logger.error(f"Token decryption failed: {e}")
        return encrypted_text


def is_encrypted(token: str) -> bool:
    return bool(token) and token.startswith(ENC_PREFIX)


def is_masked(token: str) -> bool:
    """True for values produced by mask_token (never to be stored)."""
    return bool(token) and (token.startswith("●") or token.startswith("🔒"))


def mask_token(token: str, visible_chars: int = 10) -> str:
    """Mask a token for display."""
    if not token or len(token) <= visible_chars:
        return token

    if is_encrypted(token):
        return ENCRYPTED_LABEL

    return MASK + token[-visible_chars:]


def migrate_token_if_needed(token: str) -> str:
    """Encrypt a legacy plaintext token; leave encrypted or masked values alone."""
    if not token or token.strip() == "":
        return ""

    if is_encrypted(token) or "●" in token:
        return token

    logger.info("Migrating plaintext token to encrypted format")
    return encrypt_token(token)


def generate_encryption_key() -> str:
    """New random key suitable for LINE_ENCRYPTION_KEY."""
    return secrets.token_hex(KEY_LENGTH)


def verify_line_signature(body: bytes, signature: str, channel_secret: str) -> bool:
    """Check the X-Line-Signature header (base64 HMAC-SHA256 of the raw body)."""
    if not channel_secret or not signature:
        return False

    if isinstance(body, str):
        body = body.encode("utf-8")

    digest = hmac.new(channel_secret.encode("utf-8"), body, hashlib.sha256).digest()
    expected = base64.b64encode(digest).decode("ascii")
    return hmac.compare_digest(expected, signature)
