"""
Token/session broker for the Drive transport.

The broker owns the short-lived access token and answers two different
questions. `is_authenticated()` reports whether a user identity marker is
persisted locally (it survives restarts and says nothing about the token).
`has_valid_access_token()` reports whether a token usable right now is held in
memory. Background code paths gate on the latter and skip their work when it is
false: only a user-initiated sign-in may run the consent flow, so
`get_access_token()` never prompts and raises `InteractiveAuthRequired` instead.
"""

from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass
from typing import Callable, Optional, Protocol, Sequence

import httpx
from shared.observability.privacy import IDENTITY_LOG_KEYS, mask_token, redact_fields
from shared.sync_settings import DEFAULT_TOKEN_MARGIN_SECONDS, OAuthConfig, SyncSettingsError

from errors import InteractiveAuthRequired, TransportError
from events import AUTH_CHANGED, EventBus
from http_client import ResilientHttpClient

logger = logging.getLogger(__name__)

AUTHORIZE_URL = "https://accounts.google.com/o/oauth2/v2/auth"
TOKEN_URL = "https://oauth2.googleapis.com/token"
REVOKE_URL = "https://oauth2.googleapis.com/revoke"
USERINFO_URL = "https://openidconnect.googleapis.com/v1/userinfo"

DRIVE_FILE_SCOPE = "https://www.googleapis.com/auth/drive.file"
DRIVE_APPDATA_SCOPE = "https://www.googleapis.com/auth/drive.appdata"
SCOPES = ("openid", "profile", "email", DRIVE_FILE_SCOPE, DRIVE_APPDATA_SCOPE)
DEFAULT_TOKEN_LIFETIME_SECONDS = 3600


@dataclass(frozen=True)
class TokenGrant:
    access_token: str
    expires_in: float = DEFAULT_TOKEN_LIFETIME_SECONDS


@dataclass
class TokenState:
    value: str | None = None
    expires_at: float = 0.0

    def is_valid(self, now: float, margin_seconds: float) -> bool:
        return bool(self.value) and now < self.expires_at - margin_seconds

    def clear(self) -> None:
        self.value = None
        self.expires_at = 0.0


@dataclass
class UserIdentity:
    id: str
    name: str | None = None
    email: str | None = None
    picture: str | None = None


class IdentityStore(Protocol):
    """Durable storage for the signed-in user marker."""

    def load(self) -> Optional[UserIdentity]:
        ...

    def save(self, identity: UserIdentity) -> None:
        ...

    def clear(self) -> None:
        ...


class LocalCache(Protocol):
    async def clear(self) -> None:
        """Remove every locally cached application record."""
        ...


class ConsentFlow(Protocol):
    """The interactive step of sign-in; only ever run from a user gesture."""

    async def request_token(self, scopes: Sequence[str]) -> TokenGrant:
        ...


class GoogleOAuthClient:
    """Authorization-code OAuth calls against Google's identity endpoints."""

    def __init__(self, config: OAuthConfig | None, http_client: ResilientHttpClient) -> None:
        self._config = config
        self._http = http_client

    @property
    def configured(self) -> bool:
        return self._config is not None

    def authorization_url(self, state: str, scopes: Sequence[str] = SCOPES) -> str:
        config = self._require_config()
        params = {
            "client_id": config.client_id,
            "redirect_uri": config.redirect_uri,
            "response_type": "code",
            "scope": " ".join(scopes),
            "prompt": "consent",
            "access_type": "online",
            "include_granted_scopes": "true",
            "state": state,
        }
        return str(httpx.URL(AUTHORIZE_URL, params=params))

    async def exchange_code(self, code: str) -> TokenGrant:
        config = self._require_config()
        data = {
            "code": code,
            "client_id": config.client_id,
            "client_secret": config.client_secret,
            "redirect_uri": config.redirect_uri,
            "grant_type": "authorization_code",
        }
        payload = await self._call("exchange_code", "POST", TOKEN_URL, data=data)
        access_token = payload.get("access_token")
        if not access_token:
            raise TransportError("exchange_code", 200, "response did not include an access token")
        try:
            expires_in = float(payload.get("expires_in") or DEFAULT_TOKEN_LIFETIME_SECONDS)
        except (TypeError, ValueError):
            expires_in = DEFAULT_TOKEN_LIFETIME_SECONDS
        return TokenGrant(access_token=access_token, expires_in=expires_in)

    async def fetch_userinfo(self, access_token: str) -> UserIdentity:
        payload = await self._call(
            "fetch_userinfo",
            "GET",
            USERINFO_URL,
            headers={"Authorization": f"Bearer {access_token}"},
        )
        return UserIdentity(
            id=str(payload.get("sub") or ""),
            name=payload.get("name") or payload.get("email"),
            email=payload.get("email"),
            picture=payload.get("picture"),
        )

    async def revoke(self, access_token: str) -> None:
        await self._call(
            "revoke_token",
            "POST",
            REVOKE_URL,
            params={"token": access_token},
            headers={"Content-Type": "application/x-www-form-urlencoded"},
            expect_json=False,
        )

    async def _call(self, operation: str, method: str, url: str, *, expect_json: bool = True, **kwargs) -> dict:
        try:
            response, _ = await self._http.request(method, url, **kwargs)
        except httpx.HTTPStatusError as exc:
            raise TransportError(operation, exc.response.status_code, exc.response.text[:200]) from exc
        except httpx.RequestError as exc:
            raise TransportError(operation, None, exc.__class__.__name__) from exc
        if not expect_json:
            return {}
        try:
            return response.json()
        except ValueError as exc:
            raise TransportError(operation, response.status_code, "response was not JSON") from exc

    def _require_config(self) -> OAuthConfig:
        if self._config is None:
            raise SyncSettingsError("OAuth client is not configured")
        return self._config


class AuthorizationCodeConsent:
    """ConsentFlow completed by the OAuth redirect carrying an authorization code."""

    def __init__(self, oauth_client: GoogleOAuthClient, code: str) -> None:
        self._oauth_client = oauth_client
        self._code = code

    async def request_token(self, scopes: Sequence[str]) -> TokenGrant:
        return await self._oauth_client.exchange_code(self._code)


class TokenBroker:
    def __init__(
        self,
        oauth_client: GoogleOAuthClient,
        identity_store: IdentityStore,
        local_cache: LocalCache,
        bus: EventBus,
        *,
        clock: Callable[[], float] = time.time,
        expiry_margin_seconds: float = DEFAULT_TOKEN_MARGIN_SECONDS,
    ) -> None:
        self._oauth_client = oauth_client
        self._identity_store = identity_store
        self._local_cache = local_cache
        self._bus = bus
        self._clock = clock
        self._margin = expiry_margin_seconds
        self._token = TokenState()

    def is_authenticated(self) -> bool:
        return self._identity_store.load() is not None

    def has_valid_access_token(self) -> bool:
        return self._token.is_valid(self._clock(), self._margin)

    def current_user(self) -> UserIdentity | None:
        return self._identity_store.load()

    def get_access_token(self) -> str:
        token = self._token.value
        if token is None or not self._token.is_valid(self._clock(), self._margin):
            raise InteractiveAuthRequired()
        return token

    async def sign_in(self, consent: ConsentFlow) -> UserIdentity:
        grant = await consent.request_token(SCOPES)
        self._token.value = grant.access_token
        self._token.expires_at = self._clock() + grant.expires_in

        try:
            identity = await self._oauth_client.fetch_userinfo(grant.access_token)
        except Exception:
            self._token.clear()
            raise

        self._identity_store.save(identity)
        logger.info(
            {
                "event": "sign_in",
                "user": redact_fields(asdict(identity), IDENTITY_LOG_KEYS),
                "token": mask_token(grant.access_token),
                "expires_in": grant.expires_in,
            }
        )
        self._bus.publish(AUTH_CHANGED, {"authenticated": True})
        return identity

    async def sign_out(self) -> None:
        token = self._token.value
        if token:
            try:
                await self._oauth_client.revoke(token)
            except TransportError as exc:
                logger.warning({"event": "token_revoke_failed", "error": str(exc)})

        self._token.clear()
        self._identity_store.clear()
        try:
            await self._local_cache.clear()
        finally:
            logger.info({"event": "sign_out"})
            self._bus.publish(AUTH_CHANGED, {"authenticated": False})
