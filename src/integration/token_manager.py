"""
OAuth credential lifecycle for the calendar provider.

Issues consent URLs, exchanges authorization codes, refreshes access tokens
that are about to expire and retires credentials that can no longer be
refreshed. A failed refresh is terminal: the credential is deactivated and
the user has to reconnect.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import requests
from google.auth.exceptions import RefreshError, TransportError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import Flow
from oauthlib.oauth2.rfc6749.errors import OAuth2Error

from assignment_sync.config import CALENDAR_SCOPES, GOOGLE_TOKEN_URI, Settings
from assignment_sync.errors import AuthExchangeError
from assignment_sync.metrics import TOKEN_REFRESH_TOTAL
from integration.calendar_integration import CalendarIntegration
from storage.credential_store import Credential, CredentialStore, TokenSet
from storage.sync_log import SyncLog, SyncLogEntry

logger = logging.getLogger(__name__)

REFRESH_MARGIN_S = 60
DEFAULT_TOKEN_LIFETIME = timedelta(hours=1)


def _aware_expiry(expiry: Optional[datetime]) -> datetime:
    # google-auth reports expiry as naive UTC
    if expiry is None:
        return datetime.now(timezone.utc) + DEFAULT_TOKEN_LIFETIME
    if expiry.tzinfo is None:
        return expiry.replace(tzinfo=timezone.utc)
    return expiry


def build_flow(settings: Settings, state: Optional[str] = None) -> Flow:
    # login and callback build separate flows, so no PKCE verifier survives between them
    return Flow.from_client_config(
        settings.client_config(),
        scopes=CALENDAR_SCOPES,
        redirect_uri=settings.google_redirect_uri,
        state=state,
        autogenerate_code_verifier=False,
    )


def fetch_token_from_code(settings: Settings, code: str) -> TokenSet:
    """Blocking authorization-code exchange."""
    flow = build_flow(settings)
    flow.fetch_token(code=code)
    creds = flow.credentials
    return TokenSet(
        access_token=creds.token,
        refresh_token=creds.refresh_token,
        expiry=_aware_expiry(creds.expiry),
    )


def refresh_access_token(settings: Settings, refresh_token: str) -> TokenSet:
    """Blocking refresh-token grant. Raises RefreshError/TransportError."""
    creds = Credentials(
        token=None,
        refresh_token=refresh_token,
        token_uri=GOOGLE_TOKEN_URI,
        client_id=settings.google_client_id,
        client_secret=settings.google_client_secret,
        scopes=CALENDAR_SCOPES,
    )
    creds.refresh(Request())
    return TokenSet(
        access_token=creds.token,
        refresh_token=creds.refresh_token or refresh_token,
        expiry=_aware_expiry(creds.expiry),
    )


class TokenManager:

    def __init__(
        self,
        settings: Settings,
        credential_store: CredentialStore,
        sync_log: SyncLog,
        on_deactivate: Optional[Callable[[str], None]] = None,
        client_factory=CalendarIntegration,
    ):
        self.settings = settings
        self.credential_store = credential_store
        self.sync_log = sync_log
        self.on_deactivate = on_deactivate
        self.client_factory = client_factory

    def build_authorization_url(self, state: str) -> str:
        """Consent URL asking for offline access; prompt=consent forces a refresh token."""
        flow = build_flow(self.settings, state=state)
        url, _ = flow.authorization_url(
            access_type="offline",
            prompt="consent",
        )
        return url

    async def exchange_code(self, code: str) -> TokenSet:
        if not code:
            raise AuthExchangeError("No authorization code received")
        try:
            tokens = await asyncio.wait_for(
                asyncio.to_thread(fetch_token_from_code, self.settings, code),
                timeout=self.settings.request_timeout_s,
            )
        except (OAuth2Error, requests.RequestException, ValueError, Warning) as e:
            logger.error(f"Authorization code exchange failed: {e}")
            raise AuthExchangeError(raw=str(e)) from e
        except asyncio.TimeoutError as e:
            logger.error("Authorization code exchange timed out")
            raise AuthExchangeError(raw="token endpoint timed out") from e

        if not tokens.access_token or not tokens.refresh_token:
            raise AuthExchangeError(
                "No tokens received from Google", raw="missing access or refresh token"
            )
        return tokens

    def client_for_tokens(
        self, tokens: TokenSet, calendar_id: str = "primary"
    ) -> CalendarIntegration:
        # access token only, no expiry: only _refresh may renew it
        google_creds = Credentials(token=tokens.access_token)
        return self.client_factory(
            credentials=google_creds,
            calendar_id=calendar_id,
            timeout_s=self.settings.request_timeout_s,
        )

    def _client_for(self, credential: Credential) -> CalendarIntegration:
        tokens = TokenSet(
            access_token=credential.access_token,
            refresh_token=credential.refresh_token,
            expiry=credential.token_expires_at,
        )
        return self.client_for_tokens(tokens, calendar_id=credential.calendar_id)

    async def _refresh(self, credential: Credential) -> Optional[Credential]:
        try:
            if not credential.refresh_token:
                raise RefreshError("No refresh token stored")
            tokens = await asyncio.wait_for(
                asyncio.to_thread(
                    refresh_access_token, self.settings, credential.refresh_token
                ),
                timeout=self.settings.request_timeout_s,
            )
        except (RefreshError, TransportError, asyncio.TimeoutError) as e:
            error = str(e) or e.__class__.__name__
            logger.error(f"Failed to refresh token for user {credential.user_id}: {error}")
            TOKEN_REFRESH_TOTAL.labels(status="failed").inc()
            await self._deactivate(credential.user_id)
            await self.sync_log.append(
                SyncLogEntry(
                    user_id=credential.user_id,
                    action="refresh_token",
                    status="failed",
                    error_message=error,
                    details={"token_id": credential.id},
                )
            )
            return None

        await self.credential_store.update_access_token(
            credential.id, tokens.access_token, tokens.expiry
        )
        credential.access_token = tokens.access_token
        credential.token_expires_at = tokens.expiry
        TOKEN_REFRESH_TOTAL.labels(status="success").inc()
        logger.info(f"Refreshed access token for user {credential.user_id}")
        await self.sync_log.append(
            SyncLogEntry(
                user_id=credential.user_id,
                action="refresh_token",
                status="success",
                details={"token_id": credential.id},
            )
        )
        return credential

    async def get_valid_client(self, user_id: str) -> Optional[CalendarIntegration]:
        """
        Authenticated calendar client for the user, or None when the user has
        no usable connection (never connected, disconnected, refresh failed).
        """
        credential = await self.credential_store.get_active(user_id)
        if credential is None:
            logger.info(f"No active calendar credential for user {user_id}")
            return None

        if credential.expires_within(REFRESH_MARGIN_S):
            credential = await self._refresh(credential)
            if credential is None:
                return None

        return self._client_for(credential)

    async def invalidate(self, user_id: str, reason: str) -> None:
        """Retire the credential after the provider rejected it."""
        logger.warning(f"Invalidating calendar credential for user {user_id}: {reason}")
        await self._deactivate(user_id)

    async def _deactivate(self, user_id: str) -> None:
        await self.credential_store.deactivate(user_id)
        if self.on_deactivate is not None:
            self.on_deactivate(user_id)
