"""Credential lifecycle: connect, resolve, deactivate, disconnect.

Sits between the credential store and callers so that plaintext tokens
never reach the store and ciphertext never reaches a provider client.
"""

import logging
from typing import Any

from src.credentials.models import CredentialRecord, ResolvedCredential
from src.credentials.store import CredentialStore
from src.credentials.vault import CredentialVault
from src.errors import NotFoundError

logger = logging.getLogger(__name__)


class CredentialService:
    def __init__(self, store: CredentialStore, vault: CredentialVault) -> None:
        self._store = store
        self._vault = vault

    async def connect(
        self,
        user_id: str,
        provider_type: str,
        *,
        access_token: str,
        refresh_token: str | None = None,
        token_expiry: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> CredentialRecord:
        """Create or re-authorize a credential. Always reactivates it."""
        fields: dict[str, Any] = {
            "access_token": self._vault.encrypt(access_token),
            "refresh_token": self._vault.encrypt(refresh_token) if refresh_token else None,
            "token_expiry": token_expiry,
            "is_active": True,
        }
        if metadata is not None:
            fields["metadata"] = metadata
        record = await self._store.upsert(user_id, provider_type, fields)
        logger.info("Connected %s credential for user %s", provider_type, user_id)
        return record

    async def resolve(self, user_id: str, provider_type: str) -> ResolvedCredential | None:
        """Return the active credential with decrypted tokens, or None.

        Raises:
            MalformedCiphertextError / DecryptionFailedError: stored tokens are unusable.
        """
        record = await self._store.find_active(user_id, provider_type)
        if record is None:
            return None
        access_token = self._vault.decrypt(record["access_token"]) if record["access_token"] else ""
        refresh_token = self._vault.decrypt(record["refresh_token"]) if record["refresh_token"] else None
        return ResolvedCredential(
            user_id=record["user_id"],
            provider_type=record["provider_type"],
            access_token=access_token,
            refresh_token=refresh_token,
            token_expiry=record["token_expiry"],
            metadata=dict(record["metadata"]),
        )

    async def deactivate(self, user_id: str, provider_type: str) -> None:
        logger.warning("Deactivating %s credential for user %s after failed verification", provider_type, user_id)
        await self._store.deactivate(user_id, provider_type)

    async def remember_username(self, credential: ResolvedCredential, username: str) -> None:
        """Persist a self-discovered account username into the credential metadata."""
        if credential.username == username:
            return
        metadata = {**credential.metadata, "username": username}
        await self._store.upsert(credential.user_id, credential.provider_type, {"metadata": metadata})

    async def mark_synced(self, user_id: str, provider_type: str) -> None:
        await self._store.touch_synced(user_id, provider_type)

    async def disconnect(self, user_id: str, provider_type: str) -> None:
        removed = await self._store.remove(user_id, provider_type)
        if not removed:
            msg = f"No {provider_type} integration for user {user_id}"
            raise NotFoundError(msg)
        logger.info("Disconnected %s credential for user %s", provider_type, user_id)

    async def active_users(self, provider_type: str) -> list[str]:
        return await self._store.list_active_users(provider_type)
