"""
Encrypted-at-rest credential vault.

Example:
    >>> from paylock.core.config import VaultConfig
    >>> from paylock.vault import CredentialVault
    >>>
    >>> vault = CredentialVault(VaultConfig(encryption_key=key, credentials_dir=path))
"""

from paylock.vault.encryption import SecretCipher
from paylock.vault.store import CredentialVault, StoredCredential

__all__ = [
    "CredentialVault",
    "SecretCipher",
    "StoredCredential",
]
