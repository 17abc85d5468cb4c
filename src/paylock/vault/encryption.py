"""
AES-256-GCM encryption for secrets at rest.

Blob layout (base64 encoded): ``salt(32) || iv(16) || tag(16) || ciphertext``.
The key is derived per blob with scrypt (N=2**14, r=8, p=1), so every
encryption uses a fresh salt and a fresh IV.
"""

from __future__ import annotations

import base64
import binascii
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from paylock.core.exceptions import DecryptionError

SALT_LENGTH = 32
IV_LENGTH = 16
TAG_LENGTH = 16
KEY_LENGTH = 32
HEADER_LENGTH = SALT_LENGTH + IV_LENGTH + TAG_LENGTH

SCRYPT_N = 2**14
SCRYPT_R = 8
SCRYPT_P = 1


class SecretCipher:
    """Encrypts and decrypts short secrets (recovery phrases, tokens) with a passphrase."""

    def __init__(self, passphrase: str) -> None:
        self._passphrase = passphrase.encode("utf-8")

    def _derive_key(self, salt: bytes) -> bytes:
        kdf = Scrypt(salt=salt, length=KEY_LENGTH, n=SCRYPT_N, r=SCRYPT_R, p=SCRYPT_P)
        return kdf.derive(self._passphrase)

    def encrypt(self, plaintext: str) -> str:
        """
        Encrypt a secret.

        Returns:
            Base64 blob of salt, IV, authentication tag and ciphertext
        """
        salt = os.urandom(SALT_LENGTH)
        iv = os.urandom(IV_LENGTH)
        sealed = AESGCM(self._derive_key(salt)).encrypt(iv, plaintext.encode("utf-8"), None)
        # AESGCM appends the tag; the stored layout puts it before the ciphertext
        ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
        return base64.b64encode(salt + iv + tag + ciphertext).decode("ascii")

    def decrypt(self, blob: str) -> str:
        """
        Decrypt a blob produced by encrypt().

        Raises:
            DecryptionError: If the blob is malformed or fails authentication
        """
        try:
            combined = base64.b64decode(blob, validate=True)
        except (binascii.Error, ValueError) as e:
            raise DecryptionError("Encrypted secret is not valid base64") from e

        if len(combined) < HEADER_LENGTH:
            raise DecryptionError(
                "Encrypted secret is truncated",
                details={"length": len(combined), "minimum": HEADER_LENGTH},
            )

        salt = combined[:SALT_LENGTH]
        iv = combined[SALT_LENGTH : SALT_LENGTH + IV_LENGTH]
        tag = combined[SALT_LENGTH + IV_LENGTH : HEADER_LENGTH]
        ciphertext = combined[HEADER_LENGTH:]

        try:
            plaintext = AESGCM(self._derive_key(salt)).decrypt(iv, ciphertext + tag, None)
        except InvalidTag:
            raise DecryptionError(
                "Authentication tag mismatch: wrong encryption key or tampered secret"
            ) from None

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecryptionError("Decrypted secret is not valid UTF-8") from e
