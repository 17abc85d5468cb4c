"""
Encrypted credential store.

One JSON file per (owner identifier, network) pair, named
``{owner}_{network}.json``, inside a directory only the owning account can
read. Wallet address and verification key are stored in plaintext; the
recovery phrase only ever reaches disk as an encrypted blob.

Concurrent writers to the same (owner, network) pair are not supported.
"""

from __future__ import annotations

import json
import os
import re
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from paylock.core.config import VaultConfig
from paylock.core.exceptions import CredentialNotFoundError, ValidationError, VaultError
from paylock.core.logging import get_logger
from paylock.core.types import Network
from paylock.vault.encryption import SecretCipher

FORMAT_VERSION = "1.0"
DIR_MODE = 0o700
FILE_MODE = 0o600

_OWNER_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.\-]*$")

logger = get_logger("vault")


@dataclass(frozen=True)
class StoredCredential:
    """A credential record as persisted. Holds the recovery phrase only in encrypted form."""

    owner_identifier: str
    network: Network
    wallet_address: str
    wallet_vkey: str
    encrypted_mnemonic: str = field(repr=False)
    api_key: str | None = field(default=None, repr=False)
    registry_url: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    version: str = FORMAT_VERSION

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "agentIdentifier": self.owner_identifier,
            "network": self.network.value,
            "walletAddress": self.wallet_address,
            "walletVkey": self.wallet_vkey,
            "encryptedMnemonic": self.encrypted_mnemonic,
            "apiKey": self.api_key,
            "registryUrl": self.registry_url,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StoredCredential:
        try:
            return cls(
                owner_identifier=data["agentIdentifier"],
                network=Network.from_string(data["network"]),
                wallet_address=data["walletAddress"],
                wallet_vkey=data["walletVkey"],
                encrypted_mnemonic=data["encryptedMnemonic"],
                api_key=data.get("apiKey"),
                registry_url=data.get("registryUrl"),
                created_at=datetime.fromisoformat(data["createdAt"].replace("Z", "+00:00")),
                updated_at=datetime.fromisoformat(data["updatedAt"].replace("Z", "+00:00")),
                version=data.get("version", FORMAT_VERSION),
            )
        except (KeyError, ValueError, AttributeError) as e:
            raise ValidationError(f"Malformed credential record: {e}") from e


class CredentialVault:
    """
    File-backed vault keyed by (owner identifier, network).

    Example:
        >>> vault = CredentialVault(VaultConfig.from_env())
        >>> vault.save("agent-1", Network.PREPROD, "addr_test1...", "vkey...", mnemonic)
        >>> phrase = vault.reveal_mnemonic("agent-1", Network.PREPROD)
    """

    def __init__(self, config: VaultConfig) -> None:
        self._config = config
        self._dir = Path(config.credentials_dir)
        self._cipher = SecretCipher(config.encryption_key)

    @property
    def directory(self) -> Path:
        return self._dir

    def path_for(self, owner_identifier: str, network: Network) -> Path:
        """File holding the credential for one (owner, network) pair."""
        if not _OWNER_PATTERN.match(owner_identifier or ""):
            raise ValidationError(
                "Owner identifier may only contain letters, digits, '_', '.' and '-'",
                details={"owner_identifier": owner_identifier},
            )
        return self._dir / f"{owner_identifier}_{Network(network).value.lower()}.json"

    def _ensure_dir(self) -> None:
        self._dir.mkdir(parents=True, exist_ok=True, mode=DIR_MODE)
        os.chmod(self._dir, DIR_MODE)

    def _write(self, path: Path, content: str) -> None:
        """Write via a private temp file and rename, so a reader never sees a partial record."""
        self._ensure_dir()
        tmp = path.with_name(f".{path.name}.tmp")
        fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, FILE_MODE)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
            os.chmod(tmp, FILE_MODE)
            os.replace(tmp, path)
        except OSError as e:
            tmp.unlink(missing_ok=True)
            raise VaultError(f"Failed to write credential file {path}: {e}") from e

    def _write_record(self, credential: StoredCredential) -> Path:
        path = self.path_for(credential.owner_identifier, credential.network)
        self._write(path, json.dumps(credential.to_dict(), indent=2))
        return path

    def save(
        self,
        owner_identifier: str,
        network: Network,
        wallet_address: str,
        wallet_vkey: str,
        mnemonic: str,
        api_key: str | None = None,
        registry_url: str | None = None,
    ) -> Path:
        """
        Encrypt the recovery phrase and persist a new credential.

        Returns:
            Path to the credential file
        """
        if not mnemonic:
            raise ValidationError("Recovery phrase must not be empty")

        credential = StoredCredential(
            owner_identifier=owner_identifier,
            network=Network(network),
            wallet_address=wallet_address,
            wallet_vkey=wallet_vkey,
            encrypted_mnemonic=self._cipher.encrypt(mnemonic),
            api_key=api_key,
            registry_url=registry_url,
        )
        path = self._write_record(credential)
        logger.info(f"Saved credential for {owner_identifier} on {credential.network.value}")
        return path

    def load(self, owner_identifier: str, network: Network) -> StoredCredential:
        """
        Load a credential record. The recovery phrase stays encrypted.

        Raises:
            CredentialNotFoundError: If no file exists for the pair
        """
        path = self.path_for(owner_identifier, network)
        try:
            content = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            raise CredentialNotFoundError(
                f"Credentials not found for {owner_identifier} on {Network(network).value}. "
                f"Expected path: {path}",
                owner_identifier=owner_identifier,
                network=Network(network).value,
            ) from None

        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            raise ValidationError(f"Credential file {path} is not valid JSON") from e
        return StoredCredential.from_dict(data)

    def reveal_mnemonic(self, owner_identifier: str, network: Network) -> str:
        """
        Decrypt the recovery phrase in memory.

        Raises:
            CredentialNotFoundError: If no file exists for the pair
            DecryptionError: If the key is wrong or the record was tampered with
        """
        credential = self.load(owner_identifier, network)
        return self.decrypt(credential)

    def decrypt(self, credential: StoredCredential) -> str:
        return self._cipher.decrypt(credential.encrypted_mnemonic)

    def exists(self, owner_identifier: str, network: Network) -> bool:
        return self.path_for(owner_identifier, network).is_file()

    def update(
        self,
        owner_identifier: str,
        network: Network,
        api_key: str | None = None,
        registry_url: str | None = None,
    ) -> StoredCredential:
        """Update non-secret fields in place. Fields left as None are unchanged."""
        credential = self.load(owner_identifier, network)
        changes: dict[str, Any] = {"updated_at": datetime.now(timezone.utc)}
        if api_key is not None:
            changes["api_key"] = api_key
        if registry_url is not None:
            changes["registry_url"] = registry_url

        updated = replace(credential, **changes)
        self._write_record(updated)
        return updated

    def delete(self, owner_identifier: str, network: Network) -> bool:
        """
        Delete a credential file.

        Returns:
            True if a file was removed, False if none existed
        """
        path = self.path_for(owner_identifier, network)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        logger.info(f"Deleted credential for {owner_identifier} on {Network(network).value}")
        return True

    def list_all(self) -> list[tuple[str, Network]]:
        """List (owner identifier, network) for every stored credential."""
        if not self._dir.is_dir():
            return []

        entries = []
        for path in sorted(self._dir.glob("*.json")):
            owner, sep, network_str = path.stem.rpartition("_")
            if not sep or not owner:
                continue
            try:
                entries.append((owner, Network.from_string(network_str)))
            except ValueError:
                logger.warning(f"Skipping unrecognized credential file {path.name}")
        return entries

    def export_credential(self, owner_identifier: str, network: Network) -> str:
        """Return the stored JSON for backup. The recovery phrase stays encrypted."""
        self.load(owner_identifier, network)
        return self.path_for(owner_identifier, network).read_text(encoding="utf-8")

    def import_credential(self, credential_json: str, verify: bool = True) -> Path:
        """
        Restore a credential from export_credential() output.

        Args:
            credential_json: Exported JSON document
            verify: Decrypt once before writing, so a backup sealed under
                another key is rejected instead of stored

        Raises:
            ValidationError: If the document is malformed
            DecryptionError: If ``verify`` and this vault's key cannot open it
        """
        try:
            data = json.loads(credential_json)
        except json.JSONDecodeError as e:
            raise ValidationError("Credential backup is not valid JSON") from e

        credential = StoredCredential.from_dict(data)
        if verify:
            self.decrypt(credential)
        return self._write_record(credential)
