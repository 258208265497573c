from __future__ import annotations

import secrets
from dataclasses import dataclass

CREDENTIAL_LENGTH = 16


@dataclass(frozen=True)
class Credential:
    """Static 16-byte shared secret presented in every handshake."""

    value: bytes

    def __post_init__(self) -> None:
        if len(self.value) != CREDENTIAL_LENGTH:
            raise ValueError(f"credential must be {CREDENTIAL_LENGTH} bytes, got {len(self.value)}")

    @classmethod
    def from_uuid(cls, uuid_str: str) -> Credential:
        """Build from a UUID string; hyphens are dropped and the rest is hex decoded."""
        return cls(bytes.fromhex(uuid_str.replace("-", "")))

    def __repr__(self) -> str:
        return "Credential(<redacted>)"


class CredentialValidator:
    def __init__(self, credential: Credential) -> None:
        self._expected = credential.value

    def check(self, presented: bytes) -> bool:
        """Exact match of all 16 bytes, never a prefix."""
        if len(presented) != CREDENTIAL_LENGTH:
            return False
        return secrets.compare_digest(presented, self._expected)
