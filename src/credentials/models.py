"""Credential records and their decrypted, in-use form."""

from dataclasses import dataclass, field
from typing import Any, TypedDict

GITHUB = "github"


class CredentialRecord(TypedDict):
    """Persisted credential. Token fields always hold vault ciphertext."""

    user_id: str
    provider_type: str
    access_token: str
    refresh_token: str | None
    token_expiry: str | None  # ISO 8601
    metadata: dict[str, Any]  # e.g. installation_id, account_login, username
    is_active: bool
    last_synced_at: str | None  # ISO 8601
    created_at: str
    updated_at: str


@dataclass(frozen=True)
class ResolvedCredential:
    """A credential with plaintext tokens, ready to build a provider client."""

    user_id: str
    provider_type: str
    access_token: str
    refresh_token: str | None = None
    token_expiry: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def installation_id(self) -> int | None:
        value = self.metadata.get("installation_id")
        if value is None or value == "":
            return None
        return int(value)

    @property
    def username(self) -> str | None:
        return self.metadata.get("username") or None
