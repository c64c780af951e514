from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
import binascii
import os
import struct

KEY_SIZE = 32
NONCE_SIZE = 12

# magic (4) + version (4, big endian)
ENVELOPE_MAGIC = b"sbox"
_HEADER = struct.Struct(">4sI")
HEADER_SIZE = _HEADER.size


class CryptoError(Exception):
    """Base exception for envelope and key errors."""

    pass


class DecryptionError(CryptoError):
    """Envelope could not be opened (wrong key, tampered or malformed)."""

    pass


class InvalidKeyError(CryptoError):
    """Key material is missing, malformed or the wrong length."""

    pass


# ---------- KEY MATERIAL ----------

def zero(buf: bytearray) -> None:
    """
    Overwrite a key buffer in place
    """
    buf[:] = bytes(len(buf))


def check_key(key) -> None:
    if len(key) != KEY_SIZE:
        raise InvalidKeyError(f"invalid key length {len(key)}, want {KEY_SIZE}")


def load_encryption_key(path: str) -> bytearray:
    """
    Read a hex encoded 32-byte key file → mutable key buffer
    """
    try:
        with open(path, "rb") as f:
            encoded = f.read().strip()
    except OSError as e:
        raise InvalidKeyError(f"load encryption key {path}: {e}") from e

    if len(encoded) != KEY_SIZE * 2:
        raise InvalidKeyError(f"invalid key length {path}")

    decoded = bytearray(KEY_SIZE)
    try:
        decoded[:] = binascii.unhexlify(encoded)
    except binascii.Error as e:
        raise InvalidKeyError(f"decode hex {path}: {e}") from e

    key = bytearray(decoded)
    zero(decoded)
    return key


def generate_encryption_key(path: str) -> None:
    """
    Write a fresh random key as hex, readable by the owner only
    """
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
    with os.fdopen(fd, "w") as f:
        f.write(os.urandom(KEY_SIZE).hex())
        f.write("\n")


# ---------- ENVELOPE ----------

def seal(version: int, key, plaintext: bytes) -> bytes:
    """
    AES-GCM → magic (4) + version (4) + nonce (12) + ciphertext + tag (16)

    The header is authenticated so the version cannot be swapped.
    """
    check_key(key)
    header = _HEADER.pack(ENVELOPE_MAGIC, version)
    nonce = os.urandom(NONCE_SIZE)
    ciphertext = AESGCM(key).encrypt(nonce, plaintext, header)
    return header + nonce + ciphertext


def open_envelope(key, envelope: bytes) -> tuple[bytes, int]:
    """
    Open a sealed envelope → (plaintext, version)
    """
    check_key(key)
    if len(envelope) < HEADER_SIZE + NONCE_SIZE + 16:
        raise DecryptionError("envelope too short")

    header = envelope[:HEADER_SIZE]
    magic, version = _HEADER.unpack(header)
    if magic != ENVELOPE_MAGIC:
        raise DecryptionError("invalid envelope header")

    nonce = envelope[HEADER_SIZE:HEADER_SIZE + NONCE_SIZE]
    ciphertext = envelope[HEADER_SIZE + NONCE_SIZE:]
    try:
        plaintext = AESGCM(key).decrypt(nonce, ciphertext, header)
    except InvalidTag as e:
        raise DecryptionError("envelope authentication failed") from e
    return plaintext, version
