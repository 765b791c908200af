"""Token vault: encrypted credential storage on social_accounts rows.

Writers are the connection orchestrator (connect/reconnect) and the publish
scheduler (silent refresh). Both go through conditional updates on the
row's ``version`` so neither can silently overwrite the other.
"""

from datetime import datetime, timedelta
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import delete, update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from socialsync.db.crypto import TokenCipher
from socialsync.db.models import (
    PostSchedule,
    PublishJob,
    SocialAccount,
    SocialPlatform,
    utcnow,
)
from socialsync.exceptions import ConflictError, NotFoundError
from socialsync.logging import get_logger
from socialsync.platforms.base import AccountIdentity, PublishCredentials, TokenResult

logger = get_logger(__name__)

# Tokens this close to expiry are treated as expired
EXPIRY_SKEW = timedelta(seconds=60)

MAX_WRITE_ATTEMPTS = 3


class TokenVault:
    """Read and write SocialAccount credentials."""

    def __init__(self, session: Session, cipher: Optional[TokenCipher] = None):
        self.session = session
        self.cipher = cipher or TokenCipher()

    # -------------------------------------------------------------------------
    # Lookup
    # -------------------------------------------------------------------------

    def get(self, account_id: UUID) -> Optional[SocialAccount]:
        return self.session.get(SocialAccount, account_id)

    def find(
        self, organization_id: UUID, platform: SocialPlatform, external_id: str
    ) -> Optional[SocialAccount]:
        statement = select(SocialAccount).where(
            SocialAccount.organization_id == organization_id,
            SocialAccount.platform == platform,
            SocialAccount.account_id == external_id,
        )
        return self.session.exec(statement).first()

    def list_for_organization(self, organization_id: UUID) -> list[SocialAccount]:
        statement = (
            select(SocialAccount)
            .where(SocialAccount.organization_id == organization_id)
            .order_by(SocialAccount.created_at)
        )
        return list(self.session.exec(statement).all())

    def credentials(self, account: SocialAccount) -> PublishCredentials:
        """Decrypted credentials for a publish call."""
        return PublishCredentials(
            account_id=account.account_id,
            access_token=self.cipher.decrypt(account.access_token),
            page_id=account.page_id,
            page_access_token=self.cipher.decrypt(account.page_access_token),
        )

    def refresh_token(self, account: SocialAccount) -> Optional[str]:
        return self.cipher.decrypt(account.refresh_token)

    @staticmethod
    def is_expired(account: SocialAccount, now: Optional[datetime] = None) -> bool:
        if account.token_expires_at is None:
            return False
        return account.token_expires_at <= (now or utcnow()) + EXPIRY_SKEW

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def upsert_account(
        self,
        organization_id: UUID,
        platform: SocialPlatform,
        identity: AccountIdentity,
        tokens: TokenResult,
        now: Optional[datetime] = None,
    ) -> SocialAccount:
        """Insert or update the account keyed by (organization, platform, external id).

        Reconnecting overwrites tokens and identity fields and reactivates
        the account; other stored fields (avatar when the platform sends
        none, creation time) are preserved.
        """
        now = now or utcnow()
        values = {
            "account_name": identity.display_name,
            "access_token": self.cipher.encrypt(tokens.access_token),
            "refresh_token": self.cipher.encrypt(tokens.refresh_token),
            "token_expires_at": tokens.expires_at(now),
            "scope": tokens.scope,
            "page_id": identity.page_id,
            "page_access_token": self.cipher.encrypt(identity.page_access_token),
            "is_active": True,
            "last_error": None,
            "last_sync_at": now,
        }
        if identity.avatar_url:
            values["avatar_url"] = identity.avatar_url

        for _ in range(MAX_WRITE_ATTEMPTS):
            existing = self.find(organization_id, platform, identity.external_id)
            if existing is not None:
                if self._conditional_update(existing.id, existing.version, values, now):
                    self.session.refresh(existing)
                    logger.info(
                        "social_account_updated",
                        account_id=str(existing.id),
                        platform=platform.value,
                        version=existing.version,
                    )
                    return existing
                continue

            account = SocialAccount(
                organization_id=organization_id,
                platform=platform,
                account_id=identity.external_id,
                **values,
            )
            self.session.add(account)
            try:
                self.session.commit()
            except IntegrityError:
                # Another connect inserted the same account first
                self.session.rollback()
                continue
            self.session.refresh(account)
            logger.info(
                "social_account_created",
                account_id=str(account.id),
                platform=platform.value,
            )
            return account

        raise ConflictError(
            "Account was modified concurrently, please retry the connection",
            details={"platform": platform.value},
        )

    def update_tokens(
        self,
        account: SocialAccount,
        tokens: TokenResult,
        now: Optional[datetime] = None,
    ) -> SocialAccount:
        """Store refreshed tokens on top of the version the account was read at.

        A refresh response without a refresh token keeps the stored one.
        When another write bumped the version in between, the row is
        reloaded: if it now holds a different, unexpired access token (a
        reconnect or a concurrent refresh) that one wins and is returned;
        otherwise the new tokens are written again on the new version.

        Raises:
            ConflictError: The row kept changing on every attempt
        """
        now = now or utcnow()
        values: dict[str, Any] = {
            "access_token": self.cipher.encrypt(tokens.access_token),
            "token_expires_at": tokens.expires_at(now),
            "last_sync_at": now,
            "last_error": None,
        }
        if tokens.refresh_token:
            values["refresh_token"] = self.cipher.encrypt(tokens.refresh_token)

        read_access_token = account.access_token
        for _ in range(MAX_WRITE_ATTEMPTS):
            if self._conditional_update(account.id, account.version, values, now):
                self.session.refresh(account)
                logger.info("social_account_token_refreshed", account_id=str(account.id))
                return account

            account = self.session.get(SocialAccount, account.id, populate_existing=True)
            if account is None:
                raise NotFoundError("Social account not found")
            if account.access_token != read_access_token and not self.is_expired(account, now):
                logger.info("token_refresh_superseded", account_id=str(account.id))
                return account

        raise ConflictError(
            "Account credentials changed during refresh",
            details={"account_id": str(account.id)},
        )

    def record_sync(
        self,
        account: SocialAccount,
        identity: AccountIdentity,
        now: Optional[datetime] = None,
    ) -> SocialAccount:
        """Store profile data re-read from the platform and stamp ``last_sync_at``.

        Tokens are left alone except a Facebook page token the lookup
        returned. Written on top of the current version, reloading between
        attempts.
        """
        now = now or utcnow()
        values: dict[str, Any] = {
            "account_name": identity.display_name or account.account_name,
            "last_sync_at": now,
            "last_error": None,
        }
        if identity.avatar_url:
            values["avatar_url"] = identity.avatar_url
        if identity.page_access_token:
            values["page_access_token"] = self.cipher.encrypt(identity.page_access_token)

        for _ in range(MAX_WRITE_ATTEMPTS):
            if self._conditional_update(account.id, account.version, values, now):
                self.session.refresh(account)
                logger.info("social_account_synced", account_id=str(account.id))
                return account
            account = self._require(account.id)

        raise ConflictError(
            "Account was modified concurrently, please retry the sync",
            details={"account_id": str(account.id)},
        )

    def record_error(self, account_id: UUID, message: str) -> None:
        """Note a failed sync on the account without disabling it."""
        self._set_status(account_id, last_error=message)
        logger.warning("social_account_sync_failed", account_id=str(account_id), error=message)

    def mark_auth_failure(self, account_id: UUID, message: str) -> None:
        """Disable an account whose credentials can no longer be used."""
        self._set_status(account_id, is_active=False, last_error=message)
        logger.warning("social_account_disabled", account_id=str(account_id), reason=message)

    def deactivate(self, account_id: UUID) -> SocialAccount:
        """Soft-disable an account without touching its credentials."""
        account = self._require(account_id)
        self._set_status(account_id, is_active=False, last_error=account.last_error)
        self.session.refresh(account)
        return account

    def delete(self, account_id: UUID) -> None:
        """Hard-delete an account together with its schedules and jobs."""
        self._require(account_id)
        schedule_ids = select(PostSchedule.id).where(
            PostSchedule.social_account_id == account_id
        )
        self.session.execute(
            delete(PublishJob).where(PublishJob.post_schedule_id.in_(schedule_ids))
        )
        self.session.execute(
            delete(PostSchedule).where(PostSchedule.social_account_id == account_id)
        )
        self.session.execute(delete(SocialAccount).where(SocialAccount.id == account_id))
        self.session.commit()
        logger.info("social_account_deleted", account_id=str(account_id))

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _require(self, account_id: UUID) -> SocialAccount:
        account = self.get(account_id)
        if account is None:
            raise NotFoundError("Social account not found")
        return account

    def _conditional_update(
        self, account_id: UUID, expected_version: int, values: dict[str, Any], now: datetime
    ) -> bool:
        result = self.session.execute(
            update(SocialAccount)
            .where(
                SocialAccount.id == account_id,
                SocialAccount.version == expected_version,
            )
            .values(**values, version=expected_version + 1, updated_at=now)
        )
        if result.rowcount != 1:
            self.session.rollback()
            return False
        self.session.commit()
        return True

    def _set_status(self, account_id: UUID, **values: Any) -> None:
        self.session.execute(
            update(SocialAccount)
            .where(SocialAccount.id == account_id)
            .values(**values, version=SocialAccount.version + 1, updated_at=utcnow())
        )
        self.session.commit()
