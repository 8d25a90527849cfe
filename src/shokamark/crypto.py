"""Core cryptographic functions for shokamark.

Provides AES-256-GCM encryption with PBKDF2-SHA256 key derivation,
compatible with the WebCrypto API for browser-side decryption.

A payload is three opaque values (cipher, iv, salt) carried as base64
strings in ``data-*`` attributes. The password and the plaintext are
never part of the payload.
"""

import base64
import binascii
import os
from dataclasses import dataclass

from cryptography.exceptions import InvalidTag, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

# Cryptographic parameters (must match browser-side implementation)
ITERATIONS = 310000
SALT_LENGTH = 16  # 128 bits
IV_LENGTH = 12  # 96 bits (standard for GCM)
KEY_LENGTH = 32  # 256 bits


class ShokamarkError(Exception):
    """Base exception for shokamark errors."""

    pass


class EncryptionError(ShokamarkError):
    """Build-time encryption could not be performed."""

    pass


class DecryptionError(ShokamarkError):
    """Decryption failed (wrong password or tampered payload)."""

    pass


@dataclass(frozen=True)
class EncryptedPayload:
    """Ciphertext (with GCM tag), IV and salt of one encrypted region."""

    cipher: bytes
    iv: bytes
    salt: bytes

    def to_attrs(self) -> dict[str, str]:
        """Encode as ``data-cipher``/``data-iv``/``data-salt`` attribute values."""
        return {
            "data-cipher": _b64encode(self.cipher),
            "data-iv": _b64encode(self.iv),
            "data-salt": _b64encode(self.salt),
        }

    @classmethod
    def from_attrs(cls, attrs) -> "EncryptedPayload":
        """Decode a payload from an element's attribute mapping.

        Raises:
            DecryptionError: If an attribute is missing or not valid base64.
        """
        try:
            return cls(
                cipher=_b64decode(attrs["data-cipher"]),
                iv=_b64decode(attrs["data-iv"]),
                salt=_b64decode(attrs["data-salt"]),
            )
        except KeyError as e:
            raise DecryptionError(f"Missing encryption data: {e.args[0]}") from e
        except (binascii.Error, ValueError) as e:
            raise DecryptionError("Invalid base64 in encryption data") from e


def _b64encode(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _b64decode(value) -> bytes:
    return base64.b64decode(str(value), validate=True)


def derive_key(password: str, salt: bytes, iterations: int = ITERATIONS) -> bytes:
    """Derive a 256-bit key from password using PBKDF2-SHA256."""
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=salt,
        iterations=iterations,
    )
    return kdf.derive(password.encode("utf-8"))


def encrypt_content(
    plaintext: str,
    password: str,
    iterations: int = ITERATIONS,
) -> EncryptedPayload:
    """Encrypt an HTML string with a password.

    A fresh random salt and IV are generated on every call, so encrypting
    the same content twice never yields the same payload.

    Args:
        plaintext: The text to encrypt (can be empty).
        password: Password for key derivation. Must be non-empty.
        iterations: PBKDF2 iteration count.

    Returns:
        The encrypted payload.

    Raises:
        EncryptionError: If the password is empty or the primitives fail.
    """
    if not password:
        raise EncryptionError("Cannot encrypt with an empty password")

    salt = generate_salt()
    iv = os.urandom(IV_LENGTH)

    try:
        key = derive_key(password, salt, iterations)
        cipher = AESGCM(key).encrypt(iv, plaintext.encode("utf-8"), None)
    except (UnsupportedAlgorithm, ValueError, TypeError) as e:
        raise EncryptionError(f"Encryption unavailable: {e}") from e

    return EncryptedPayload(cipher=cipher, iv=iv, salt=salt)


def decrypt_content(
    payload: EncryptedPayload,
    password: str,
    iterations: int = ITERATIONS,
) -> str:
    """Decrypt a payload with a password.

    Args:
        payload: Payload produced by encrypt_content().
        password: The password used for encryption.
        iterations: PBKDF2 iteration count used at build time.

    Returns:
        The original plaintext.

    Raises:
        DecryptionError: On any failure. The message never says why.
    """
    try:
        key = derive_key(password, payload.salt, iterations)
        plaintext = AESGCM(key).decrypt(payload.iv, payload.cipher, None)
        return plaintext.decode("utf-8")
    except (InvalidTag, ValueError, TypeError, UnicodeDecodeError) as e:
        raise DecryptionError("Decryption failed") from e


def generate_salt() -> bytes:
    """Generate a random salt.

    Returns:
        16-byte random salt.
    """
    return os.urandom(SALT_LENGTH)
