from Crypto.Cipher import AES
from Crypto.Random import get_random_bytes

from securefms.errors import CryptoError

KEY_LENGTH = 32  # AES-256
IV_LENGTH = 12
TAG_LENGTH = 16
OVERHEAD = IV_LENGTH + TAG_LENGTH


def generate_key() -> bytes:
    return get_random_bytes(KEY_LENGTH)


def _check_key(key: bytes) -> None:
    if not isinstance(key, (bytes, bytearray)) or len(key) != KEY_LENGTH:
        raise CryptoError(f"Encryption key must be {KEY_LENGTH} bytes")


def encrypt_bytes(plaintext: bytes, key: bytes) -> bytes:
    """Encrypt with AES-256-GCM and return ``iv + ciphertext + tag``."""
    _check_key(key)
    iv = get_random_bytes(IV_LENGTH)
    cipher = AES.new(key, AES.MODE_GCM, nonce=iv, mac_len=TAG_LENGTH)
    ciphertext, tag = cipher.encrypt_and_digest(bytes(plaintext))
    return iv + ciphertext + tag


def decrypt_bytes(blob: bytes, key: bytes) -> bytes:
    """Split the IV off ``blob``, decrypt and verify the tag.

    Raises CryptoError for truncated blobs, tampered data or a wrong key.
    """
    _check_key(key)
    if len(blob) < OVERHEAD:
        raise CryptoError(f"Blob too short: {len(blob)} bytes")
    iv, ciphertext, tag = blob[:IV_LENGTH], blob[IV_LENGTH:-TAG_LENGTH], blob[-TAG_LENGTH:]
    cipher = AES.new(key, AES.MODE_GCM, nonce=iv, mac_len=TAG_LENGTH)
    try:
        return cipher.decrypt_and_verify(ciphertext, tag)
    except ValueError as exc:
        raise CryptoError("Ciphertext failed authentication") from exc
