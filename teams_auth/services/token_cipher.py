"""Symmetric encryption utilities for protecting persisted session data.

The key is derived from the machine identity (hostname and OS user), so a
file written on one machine or account cannot be read on another. The key
is recomputed for every process and never written to disk.
"""

from __future__ import annotations

import getpass
import os
import socket
from dataclasses import dataclass
from typing import Any, Dict, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from teams_auth.core.errors import DecryptionError

FORMAT_VERSION = 1
KEY_SALT = b"teams-mcp-credential-salt-v1"
IV_LENGTH = 16
TAG_LENGTH = 16


@dataclass(frozen=True)
class EncryptedBlob:
    """Envelope written to disk: hex IV, ciphertext and GCM tag."""

    iv: str
    content: str
    tag: str
    version: int = FORMAT_VERSION

    def to_dict(self) -> Dict[str, Any]:
        return {"iv": self.iv, "content": self.content, "tag": self.tag, "version": self.version}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EncryptedBlob":
        if not is_encrypted_shape(data):
            raise DecryptionError("Value is not an encrypted blob.")
        return cls(
            iv=data["iv"],
            content=data["content"],
            tag=data["tag"],
            version=data["version"],
        )


def is_encrypted_shape(value: Any) -> bool:
    """Structural check only; nothing is decoded."""
    if not isinstance(value, dict):
        return False
    version = value.get("version")
    return (
        isinstance(value.get("iv"), str)
        and isinstance(value.get("content"), str)
        and isinstance(value.get("tag"), str)
        and isinstance(version, (int, float))
        and not isinstance(version, bool)
    )


def machine_identity() -> str:
    """Return ``"<hostname>:<os user>"`` for key derivation."""
    hostname = socket.gethostname()
    try:
        username = getpass.getuser()
    except (KeyError, OSError):
        username = os.environ.get("USER") or os.environ.get("USERNAME") or "unknown"
    return f"{hostname}:{username}"


def derive_key(machine_id: str) -> bytes:
    kdf = Scrypt(salt=KEY_SALT, length=32, n=2**14, r=8, p=1)
    return kdf.derive(machine_id.encode("utf-8"))


class TokenCipherService:
    """Encrypt and decrypt strings with an AES-256-GCM key bound to this machine."""

    def __init__(self, *, machine_id: Optional[str] = None) -> None:
        identity = machine_id if machine_id is not None else machine_identity()
        if not identity:
            raise ValueError("Machine identity must be provided.")
        self._aesgcm = AESGCM(derive_key(identity))

    def encrypt(self, plaintext: str) -> EncryptedBlob:
        """Encrypt a plaintext string under a fresh random IV."""
        iv = os.urandom(IV_LENGTH)
        sealed = self._aesgcm.encrypt(iv, plaintext.encode("utf-8"), None)
        content, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
        return EncryptedBlob(iv=iv.hex(), content=content.hex(), tag=tag.hex())

    def decrypt(self, blob: EncryptedBlob | Dict[str, Any]) -> str:
        """Decrypt a blob, raising ``DecryptionError`` on any tampering or mismatch."""
        if isinstance(blob, dict):
            blob = EncryptedBlob.from_dict(blob)
        if blob.version != FORMAT_VERSION:
            raise DecryptionError(f"Unsupported encryption version: {blob.version}")

        try:
            iv = bytes.fromhex(blob.iv)
            content = bytes.fromhex(blob.content)
            tag = bytes.fromhex(blob.tag)
        except ValueError as exc:
            raise DecryptionError("Encrypted blob is not valid hex.") from exc
        if len(tag) != TAG_LENGTH or len(iv) < 8:
            raise DecryptionError("Encrypted blob has a malformed IV or tag.")

        try:
            plaintext = self._aesgcm.decrypt(iv, content + tag, None)
        except InvalidTag as exc:
            raise DecryptionError(
                "Failed to decrypt data; it was tampered with, corrupted, or written on another machine."
            ) from exc
        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as exc:  # pragma: no cover - authenticated data
            raise DecryptionError("Decrypted data is not valid UTF-8.") from exc


__all__ = [
    "EncryptedBlob",
    "FORMAT_VERSION",
    "TokenCipherService",
    "derive_key",
    "is_encrypted_shape",
    "machine_identity",
]
