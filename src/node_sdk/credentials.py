"""
Credentials - Typed provider credentials, storage protocol and manager.

Three credential shapes are supported, discriminated on ``type``:
- oauth2: access/refresh token pair with expiry (refreshed before use)
- api_key: a single static key
- service_account: client email + RSA private key (JWT grant)

The CredentialManager resolves the credential a run should use,
caches it briefly, refreshes OAuth2 tokens that are about to expire
and writes refreshed tokens back to the store.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Annotated, Any, Callable, Dict, List, Literal, Optional, Protocol, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator

from flowmesh.config import get_settings

from .errors import ErrorCode, ExecutionError


logger = logging.getLogger(__name__)

# Refresh OAuth2 tokens this long before they expire
DEFAULT_REFRESH_BUFFER_S = 300
DEFAULT_CACHE_TTL_S = 300


class OAuth2Credentials(BaseModel):
    """OAuth2 bearer token with optional refresh token."""
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    type: Literal["oauth2"] = "oauth2"
    access_token: str = Field(..., alias="accessToken")
    refresh_token: Optional[str] = Field(None, alias="refreshToken")
    expires_at: Optional[float] = Field(
        None, alias="expiresAt", description="Expiry as epoch seconds"
    )
    token_type: str = Field("Bearer", alias="tokenType")
    scope: List[str] = Field(default_factory=list)

    @field_validator("expires_at", mode="before")
    @classmethod
    def normalize_expiry(cls, v: Any) -> Any:
        """Accept epoch milliseconds (as stored by browser clients)."""
        if isinstance(v, (int, float)) and v > 1e12:
            return v / 1000
        return v

    @field_validator("scope", mode="before")
    @classmethod
    def split_scope(cls, v: Any) -> Any:
        if v is None:
            return []
        if isinstance(v, str):
            return [s for s in v.replace(",", " ").split() if s]
        return v


class ApiKeyCredentials(BaseModel):
    """Static API key."""
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    type: Literal["api_key"] = "api_key"
    api_key: str = Field(..., alias="apiKey")


class ServiceAccountCredentials(BaseModel):
    """Service account used to mint short-lived tokens."""
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    type: Literal["service_account"] = "service_account"
    client_email: str = Field(..., alias="clientEmail")
    private_key: str = Field(..., alias="privateKey")
    project_id: Optional[str] = Field(None, alias="projectId")


Credentials = Annotated[
    Union[OAuth2Credentials, ApiKeyCredentials, ServiceAccountCredentials],
    Field(discriminator="type"),
]

_credentials_adapter: TypeAdapter = TypeAdapter(Credentials)


def parse_credentials(data: Union[Dict[str, Any], BaseModel]) -> Credentials:
    """Validate a raw credential dict into its typed model."""
    if isinstance(data, (OAuth2Credentials, ApiKeyCredentials, ServiceAccountCredentials)):
        return data
    return _credentials_adapter.validate_python(data)


class StoredCredential(BaseModel):
    """A credential row as kept by a CredentialStore."""
    model_config = ConfigDict(populate_by_name=True)

    id: str
    user_id: str = Field(..., alias="userId")
    provider: str
    name: str = ""
    credentials: Credentials
    is_default: bool = Field(False, alias="isDefault")
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc), alias="createdAt"
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc), alias="updatedAt"
    )


class CredentialStore(Protocol):
    """Persistence backend the CredentialManager delegates to."""

    def get_credential_by_id(self, credential_id: str, user_id: str) -> Optional[StoredCredential]:
        ...

    def get_default_credential(self, user_id: str, provider: str) -> Optional[StoredCredential]:
        ...

    def list_credentials(self, user_id: str, provider: Optional[str] = None) -> List[StoredCredential]:
        ...

    def create_credential(
        self,
        user_id: str,
        provider: str,
        name: str,
        credentials: Credentials,
        is_default: bool = False,
    ) -> StoredCredential:
        ...

    def update_credentials(self, credential_id: str, credentials: Credentials) -> Optional[StoredCredential]:
        ...

    def delete_credential(self, credential_id: str, user_id: str) -> bool:
        ...


class InMemoryCredentialStore:
    """
    Thread-safe in-process CredentialStore.

    The first credential stored for a user+provider becomes its default.
    """

    def __init__(self) -> None:
        self._rows: Dict[str, StoredCredential] = {}
        self._lock = threading.Lock()

    def get_credential_by_id(self, credential_id: str, user_id: str) -> Optional[StoredCredential]:
        with self._lock:
            row = self._rows.get(credential_id)
        if row is None or row.user_id != user_id:
            return None
        return row

    def get_default_credential(self, user_id: str, provider: str) -> Optional[StoredCredential]:
        rows = self.list_credentials(user_id, provider)
        for row in rows:
            if row.is_default:
                return row
        return rows[0] if rows else None

    def list_credentials(self, user_id: str, provider: Optional[str] = None) -> List[StoredCredential]:
        with self._lock:
            rows = list(self._rows.values())
        return [
            row for row in rows
            if row.user_id == user_id and (provider is None or row.provider == provider)
        ]

    def create_credential(
        self,
        user_id: str,
        provider: str,
        name: str,
        credentials: Credentials,
        is_default: bool = False,
    ) -> StoredCredential:
        with self._lock:
            has_default = any(
                r.user_id == user_id and r.provider == provider and r.is_default
                for r in self._rows.values()
            )
            if is_default:
                for row in self._rows.values():
                    if row.user_id == user_id and row.provider == provider:
                        row.is_default = False
            row = StoredCredential(
                id=str(uuid.uuid4()),
                user_id=user_id,
                provider=provider,
                name=name,
                credentials=parse_credentials(credentials),
                is_default=is_default or not has_default,
            )
            self._rows[row.id] = row
            return row

    def update_credentials(self, credential_id: str, credentials: Credentials) -> Optional[StoredCredential]:
        with self._lock:
            row = self._rows.get(credential_id)
            if row is None:
                return None
            row.credentials = parse_credentials(credentials)
            row.updated_at = datetime.now(timezone.utc)
            return row

    def delete_credential(self, credential_id: str, user_id: str) -> bool:
        with self._lock:
            row = self._rows.get(credential_id)
            if row is None or row.user_id != user_id:
                return False
            del self._rows[credential_id]
            return True


# ============================================================================
# Helpers
# ============================================================================

def is_credentials_expired(
    credentials: Credentials,
    buffer_s: float = DEFAULT_REFRESH_BUFFER_S,
    now: Optional[float] = None,
) -> bool:
    """True for OAuth2 credentials within ``buffer_s`` of their expiry."""
    if not isinstance(credentials, OAuth2Credentials) or credentials.expires_at is None:
        return False
    now = time.time() if now is None else now
    return now >= credentials.expires_at - buffer_s


def create_oauth_credentials(
    access_token: str,
    refresh_token: Optional[str] = None,
    expires_in: Optional[float] = None,
    scope: Union[str, List[str], None] = None,
    token_type: str = "Bearer",
    now: Optional[float] = None,
) -> OAuth2Credentials:
    """Build OAuth2 credentials from a token endpoint response."""
    now = time.time() if now is None else now
    return OAuth2Credentials(
        access_token=access_token,
        refresh_token=refresh_token,
        expires_at=now + expires_in if expires_in else None,
        token_type=token_type or "Bearer",
        scope=scope,
    )


def create_api_key_credentials(api_key: str) -> ApiKeyCredentials:
    return ApiKeyCredentials(api_key=api_key)


def create_service_account_credentials(
    client_email: str,
    private_key: str,
    project_id: Optional[str] = None,
) -> ServiceAccountCredentials:
    return ServiceAccountCredentials(
        client_email=client_email,
        private_key=private_key,
        project_id=project_id,
    )


# ============================================================================
# Manager
# ============================================================================

CredentialRefresher = Callable[[OAuth2Credentials], Optional[OAuth2Credentials]]


@dataclass
class _CacheEntry:
    credentials: Credentials
    credential_id: str
    expires_at: float


class CredentialManager:
    """
    Resolve, cache and refresh credentials for workflow runs.

    Usage:
        manager = CredentialManager(store)
        creds = manager.get_credentials(user_id, "google", refresher=adapter.refresh_credentials)
    """

    def __init__(
        self,
        store: Optional[CredentialStore] = None,
        refreshers: Optional[Dict[str, CredentialRefresher]] = None,
        cache_ttl_s: float = DEFAULT_CACHE_TTL_S,
        refresh_buffer_s: float = DEFAULT_REFRESH_BUFFER_S,
        clock: Callable[[], float] = time.time,
    ):
        """
        Args:
            store: Credential persistence backend (in-memory when omitted)
            refreshers: Map of provider -> OAuth2 refresh function
            cache_ttl_s: How long a resolved credential stays cached
            refresh_buffer_s: Refresh OAuth2 tokens this long before expiry
            clock: Returns epoch seconds
        """
        self.store: CredentialStore = store if store is not None else InMemoryCredentialStore()
        self._refreshers: Dict[str, CredentialRefresher] = dict(refreshers or {})
        self._cache_ttl_s = cache_ttl_s
        self._refresh_buffer_s = refresh_buffer_s
        self._clock = clock
        self._cache: Dict[str, _CacheEntry] = {}
        self._lock = threading.Lock()

    def register_refresher(self, provider: str, refresher: CredentialRefresher) -> None:
        self._refreshers[provider] = refresher

    @staticmethod
    def _cache_key(user_id: str, provider: str, credential_id: Optional[str] = None) -> str:
        if credential_id:
            return f"{user_id}:{provider}:{credential_id}"
        return f"{user_id}:{provider}"

    def get_credentials(
        self,
        user_id: str,
        provider: str,
        credential_id: Optional[str] = None,
        refresher: Optional[CredentialRefresher] = None,
    ) -> Optional[Credentials]:
        """
        Resolve the credential for a user and provider.

        Args:
            user_id: Owner of the credential
            provider: Provider id (google, openai, ...)
            credential_id: Specific credential; default credential when omitted
            refresher: OAuth2 refresh function overriding the registered one

        Returns:
            Usable credentials, or None when nothing is stored

        Raises:
            ExecutionError: INVALID_CREDENTIALS when a token is expired and
                cannot be refreshed, or whatever the refresher raises
        """
        key = self._cache_key(user_id, provider, credential_id)
        now = self._clock()

        with self._lock:
            entry = self._cache.get(key)
        if entry is not None and entry.expires_at > now:
            credentials = entry.credentials
            stored_id = entry.credential_id
        else:
            if credential_id:
                stored = self.store.get_credential_by_id(credential_id, user_id)
            else:
                stored = self.store.get_default_credential(user_id, provider)
            if stored is None:
                return None
            credentials = stored.credentials
            stored_id = stored.id

        if is_credentials_expired(credentials, self._refresh_buffer_s, now=now):
            credentials = self._refresh(provider, stored_id, credentials, refresher, now)

        with self._lock:
            self._cache[key] = _CacheEntry(
                credentials=credentials,
                credential_id=stored_id,
                expires_at=now + self._cache_ttl_s,
            )
        return credentials

    def refresh_and_persist(
        self,
        user_id: str,
        provider: str,
        credentials: Credentials,
        refresher: Optional[CredentialRefresher] = None,
    ) -> Credentials:
        """
        Refresh credentials that expired during a run and write them back.

        The new token replaces the stored row it was loaded from, so the
        next run does not refresh again. Credentials that did not come
        from the store (environment fallbacks) are refreshed but not saved.
        """
        if not isinstance(credentials, OAuth2Credentials):
            return credentials

        row = self._find_stored(user_id, provider, credentials)
        refreshed = self._refresh(
            provider, row.id if row is not None else None, credentials, refresher, self._clock()
        )
        if row is not None and refreshed is not credentials:
            self.invalidate_cache(user_id, provider)
        return refreshed

    def _find_stored(
        self, user_id: str, provider: str, credentials: Credentials
    ) -> Optional[StoredCredential]:
        with self._lock:
            entry = self._cache.get(self._cache_key(user_id, provider))
        row = None
        if entry is not None:
            row = self.store.get_credential_by_id(entry.credential_id, user_id)
        if row is None:
            row = self.store.get_default_credential(user_id, provider)
        if row is None or row.credentials != credentials:
            return None
        return row

    def _refresh(
        self,
        provider: str,
        credential_id: Optional[str],
        credentials: OAuth2Credentials,
        refresher: Optional[CredentialRefresher],
        now: float,
    ) -> Credentials:
        refresher = refresher or self._refreshers.get(provider)
        if refresher is None or not credentials.refresh_token:
            if credentials.expires_at is not None and now >= credentials.expires_at:
                raise ExecutionError(
                    ErrorCode.INVALID_CREDENTIALS,
                    f"{provider} credentials expired and cannot be refreshed",
                    provider=provider,
                )
            return credentials

        logger.info("Refreshing %s OAuth2 token (credential %s)", provider, credential_id)
        refreshed = refresher(credentials)
        if refreshed is None:
            return credentials
        # Providers may omit the refresh token on refresh
        if not refreshed.refresh_token:
            refreshed = refreshed.model_copy(update={"refresh_token": credentials.refresh_token})

        if credential_id is None:
            return refreshed
        if self.store.update_credentials(credential_id, refreshed) is None:
            logger.warning("Refreshed credential %s no longer exists in store", credential_id)
        return refreshed

    def store_credentials(
        self,
        user_id: str,
        provider: str,
        credentials: Union[Credentials, Dict[str, Any]],
        name: str = "",
        is_default: bool = False,
    ) -> StoredCredential:
        row = self.store.create_credential(
            user_id, provider, name or provider, parse_credentials(credentials), is_default
        )
        self.invalidate_cache(user_id, provider)
        return row

    def update_credentials(
        self,
        user_id: str,
        credential_id: str,
        credentials: Union[Credentials, Dict[str, Any]],
    ) -> StoredCredential:
        existing = self.store.get_credential_by_id(credential_id, user_id)
        if existing is None:
            raise ExecutionError(ErrorCode.NOT_FOUND, f"Credential {credential_id} not found")
        row = self.store.update_credentials(credential_id, parse_credentials(credentials))
        if row is None:
            raise ExecutionError(ErrorCode.NOT_FOUND, f"Credential {credential_id} not found")
        self.invalidate_cache(user_id, existing.provider)
        return row

    def delete_credentials(self, user_id: str, credential_id: str) -> bool:
        existing = self.store.get_credential_by_id(credential_id, user_id)
        deleted = self.store.delete_credential(credential_id, user_id)
        if existing is not None:
            self.invalidate_cache(user_id, existing.provider)
        return deleted

    def list_credentials(self, user_id: str, provider: Optional[str] = None) -> List[StoredCredential]:
        return self.store.list_credentials(user_id, provider)

    def invalidate_cache(self, user_id: str, provider: Optional[str] = None) -> None:
        with self._lock:
            for key in list(self._cache):
                if provider:
                    base = f"{user_id}:{provider}"
                    matches = key == base or key.startswith(base + ":")
                else:
                    matches = key.startswith(f"{user_id}:")
                if matches:
                    del self._cache[key]

    def clear_cache(self) -> None:
        with self._lock:
            self._cache.clear()


# Global manager instance
_manager: Optional[CredentialManager] = None


def get_credential_manager() -> CredentialManager:
    """Get or create the global credential manager."""
    global _manager
    if _manager is None:
        settings = get_settings()
        _manager = CredentialManager(
            cache_ttl_s=settings.credential_cache_ttl_s,
            refresh_buffer_s=settings.oauth_refresh_buffer_s,
        )
    return _manager


def set_credential_manager(manager: CredentialManager) -> None:
    global _manager
    _manager = manager


def reset_credential_manager() -> None:
    """Reset the manager (useful for testing)."""
    global _manager
    _manager = None


__all__ = [
    "ApiKeyCredentials",
    "CredentialManager",
    "CredentialRefresher",
    "CredentialStore",
    "Credentials",
    "InMemoryCredentialStore",
    "OAuth2Credentials",
    "ServiceAccountCredentials",
    "StoredCredential",
    "create_api_key_credentials",
    "create_oauth_credentials",
    "create_service_account_credentials",
    "get_credential_manager",
    "is_credentials_expired",
    "parse_credentials",
    "reset_credential_manager",
    "set_credential_manager",
]
