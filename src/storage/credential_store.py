import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from assignment_sync.config import PROVIDER_GOOGLE
from storage import db

logger = logging.getLogger(__name__)


@dataclass
class Credential:
    """
    One OAuth credential per (user, provider), tokens already decrypted.

    auto_sync_enabled is read from the row and reported in the status; it is
    owned by the host app and nothing here sets or acts on it.
    """
    id: str
    user_id: str
    provider: str
    access_token: Optional[str]
    refresh_token: Optional[str]
    token_expires_at: datetime
    calendar_id: str = "primary"
    calendar_name: Optional[str] = None
    is_active: bool = True
    auto_sync_enabled: bool = False
    sync_preferences: dict = field(default_factory=dict)
    last_sync_at: Optional[datetime] = None

    def expires_within(self, seconds: float, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        expires_at = self.token_expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return (expires_at - now).total_seconds() < seconds


@dataclass
class TokenSet:
    """Tokens returned by the OAuth provider on exchange or refresh."""
    access_token: str
    refresh_token: Optional[str]
    expiry: datetime


def build_fernet(key: Optional[str]) -> Fernet:
    # In production GOOGLE_TOKEN_ENCRYPTION_KEY MUST be set, otherwise stored
    # tokens become unreadable after a restart
    if not key:
        logger.warning(
            "GOOGLE_TOKEN_ENCRYPTION_KEY not set. Generating a temporary key."
        )
        return Fernet(Fernet.generate_key())
    return Fernet(key.encode() if isinstance(key, str) else key)


class CredentialStore:
    """PostgreSQL-backed store for calendar OAuth credentials (encrypted at rest)."""

    def __init__(self, fernet: Fernet, provider: str = PROVIDER_GOOGLE):
        self.fernet = fernet
        self.provider = provider

    def _encrypt(self, data: Optional[str]) -> Optional[str]:
        if not data:
            return None
        return self.fernet.encrypt(data.encode()).decode()

    def _decrypt(self, token: Optional[str]) -> Optional[str]:
        if not token:
            return None
        try:
            return self.fernet.decrypt(token.encode()).decode()
        except InvalidToken:
            logger.error("Failed to decrypt stored token (encryption key changed?)")
            return None

    def _from_record(self, record) -> Credential:
        return Credential(
            id=str(record["id"]),
            user_id=record["user_id"],
            provider=record["provider"],
            access_token=self._decrypt(record["access_token"]),
            refresh_token=self._decrypt(record["refresh_token"]),
            token_expires_at=record["token_expires_at"],
            calendar_id=record["calendar_id"] or "primary",
            calendar_name=record["calendar_name"],
            is_active=record["is_active"],
            auto_sync_enabled=record["auto_sync_enabled"],
            sync_preferences=dict(record["sync_preferences"] or {}),
            last_sync_at=record["last_sync_at"],
        )

    async def upsert(
        self,
        user_id: str,
        tokens: TokenSet,
        calendar_id: str = "primary",
        calendar_name: Optional[str] = None,
    ) -> Credential:
        """
        Store tokens from an OAuth consent.

        Reconnecting re-activates the existing row. A missing refresh token
        keeps the previously stored one.
        """
        query = """
            INSERT INTO user_calendar_tokens (
                user_id, provider, access_token, refresh_token,
                token_expires_at, calendar_id, calendar_name, is_active
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, TRUE)
            ON CONFLICT (user_id, provider) DO UPDATE SET
                access_token = EXCLUDED.access_token,
                refresh_token = COALESCE(EXCLUDED.refresh_token, user_calendar_tokens.refresh_token),
                token_expires_at = EXCLUDED.token_expires_at,
                calendar_id = EXCLUDED.calendar_id,
                calendar_name = COALESCE(EXCLUDED.calendar_name, user_calendar_tokens.calendar_name),
                is_active = TRUE,
                updated_at = NOW()
            RETURNING *
        """
        record = await db.fetchrow(
            query,
            user_id,
            self.provider,
            self._encrypt(tokens.access_token),
            self._encrypt(tokens.refresh_token),
            tokens.expiry,
            calendar_id,
            calendar_name,
        )
        logger.info(f"Saved {self.provider} credentials for user {user_id}")
        return self._from_record(record)

    async def get(self, user_id: str) -> Optional[Credential]:
        """Credential for the user regardless of is_active."""
        record = await db.fetchrow(
            "SELECT * FROM user_calendar_tokens WHERE user_id = $1 AND provider = $2",
            user_id,
            self.provider,
        )
        return self._from_record(record) if record else None

    async def get_active(self, user_id: str) -> Optional[Credential]:
        credential = await self.get(user_id)
        if credential is None or not credential.is_active:
            return None
        if not credential.access_token:
            return None
        return credential

    async def update_access_token(
        self, credential_id: str, access_token: str, expires_at: datetime
    ) -> None:
        await db.execute(
            """
            UPDATE user_calendar_tokens
            SET access_token = $2, token_expires_at = $3, updated_at = NOW()
            WHERE id = $1::uuid
            """,
            credential_id,
            self._encrypt(access_token),
            expires_at,
        )

    async def deactivate(self, user_id: str) -> bool:
        """Flip is_active off. Credential rows are never deleted."""
        status = await db.execute(
            """
            UPDATE user_calendar_tokens
            SET is_active = FALSE, updated_at = NOW()
            WHERE user_id = $1 AND provider = $2 AND is_active
            """,
            user_id,
            self.provider,
        )
        changed = db.affected_rows(status) > 0
        if changed:
            logger.warning(f"Deactivated {self.provider} credentials for user {user_id}")
        return changed

    async def update_preferences(self, user_id: str, preferences: dict) -> bool:
        status = await db.execute(
            """
            UPDATE user_calendar_tokens
            SET sync_preferences = $3, updated_at = NOW()
            WHERE user_id = $1 AND provider = $2
            """,
            user_id,
            self.provider,
            preferences,
        )
        return db.affected_rows(status) > 0

    async def set_calendar(self, user_id: str, calendar_id: str) -> bool:
        status = await db.execute(
            """
            UPDATE user_calendar_tokens
            SET calendar_id = $3, updated_at = NOW()
            WHERE user_id = $1 AND provider = $2
            """,
            user_id,
            self.provider,
            calendar_id,
        )
        return db.affected_rows(status) > 0

    async def touch_last_sync(self, user_id: str) -> None:
        await db.execute(
            """
            UPDATE user_calendar_tokens
            SET last_sync_at = NOW()
            WHERE user_id = $1 AND provider = $2
            """,
            user_id,
            self.provider,
        )
