"""Loading of the server-held signing and file-encryption secrets."""
from __future__ import annotations

import base64
import binascii
import hashlib
import logging
import os
from typing import List

from dotenv import load_dotenv

from securefms.crypto import KEY_LENGTH

load_dotenv()

logger = logging.getLogger(__name__)


def _decode_key(raw: str) -> bytes:
    raw = raw.strip()
    if len(raw) == KEY_LENGTH * 2:
        try:
            return bytes.fromhex(raw)
        except ValueError:
            pass
    try:
        return base64.urlsafe_b64decode(raw.encode("utf-8"))
    except (binascii.Error, ValueError) as exc:
        raise RuntimeError("FILE_ENCRYPTION_KEY is neither hex nor base64") from exc


def load_file_encryption_key() -> bytes:
    """Return the 32-byte AES key from FILE_ENCRYPTION_KEY (hex or urlsafe base64)."""
    raw = os.getenv("FILE_ENCRYPTION_KEY")
    if not raw:
        raise RuntimeError("FILE_ENCRYPTION_KEY environment variable is required")
    key = _decode_key(raw)
    if len(key) != KEY_LENGTH:
        raise RuntimeError(f"FILE_ENCRYPTION_KEY must decode to {KEY_LENGTH} bytes")
    logger.info("Loaded file encryption key (%d bits)", len(key) * 8)
    return key


def load_signing_keys() -> List[str]:
    """Current signing secret first, then the previous one during rotation."""
    current = os.getenv("SECRET_KEY")
    if not current:
        raise RuntimeError("SECRET_KEY environment variable is required")
    keys = [current]
    previous = os.getenv("PREVIOUS_SECRET_KEY")
    if previous and previous != current:
        keys.append(previous)
    return keys


def key_id(secret: str) -> str:
    """Non-reversible fingerprint used as the JWT ``kid`` header."""
    return hashlib.sha256(secret.encode("utf-8")).hexdigest()[:16]
