"""Short-lived, single-use OAuth state records.

A state token binds an authorization request to its callback. Tokens are
unguessable, expire after a few minutes, and are consumed with a conditional
delete so that only one callback can ever use a given token.
"""

import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID

from sqlalchemy import delete
from sqlmodel import Session, select

from socialsync.db.models import OAuthState, SocialPlatform, utcnow
from socialsync.exceptions import InvalidStateError
from socialsync.logging import get_logger

logger = get_logger(__name__)

DEFAULT_STATE_TTL_SECONDS = 600


def generate_state_token() -> str:
    """Random opaque state value (256 bits)."""
    return secrets.token_urlsafe(32)


@dataclass(frozen=True)
class ConsumedState:
    """Values of an OAuth state record that has been deleted by a callback."""

    state: str
    platform: SocialPlatform
    user_id: UUID
    redirect_url: str
    code_verifier: Optional[str]
    created_at: datetime


class OAuthStateStore:
    """Persistence of OAuth state records.

    Usage:
        store = OAuthStateStore(session)
        record = store.create(user_id, SocialPlatform.linkedin, "https://app/accounts")
        ...
        consumed = store.consume(record.state, SocialPlatform.linkedin)
    """

    def __init__(self, session: Session, ttl_seconds: int = DEFAULT_STATE_TTL_SECONDS):
        self.session = session
        self.ttl = timedelta(seconds=ttl_seconds)

    def create(
        self,
        user_id: UUID,
        platform: SocialPlatform,
        redirect_url: str,
        code_verifier: Optional[str] = None,
        now: Optional[datetime] = None,
        state: Optional[str] = None,
    ) -> OAuthState:
        """Persist a new state record and return it."""
        now = now or utcnow()
        record = OAuthState(
            state=state or generate_state_token(),
            platform=platform,
            user_id=user_id,
            redirect_url=redirect_url,
            code_verifier=code_verifier,
            created_at=now,
            expires_at=now + self.ttl,
        )
        self.session.add(record)
        self.session.commit()
        self.session.refresh(record)
        logger.info(
            "oauth_state_created",
            platform=platform.value,
            user_id=str(user_id),
            expires_at=record.expires_at.isoformat(),
        )
        return record

    def consume(
        self, state: str, platform: SocialPlatform, now: Optional[datetime] = None
    ) -> ConsumedState:
        """Atomically read and delete a live state record.

        Only records that match the platform and are not expired qualify.
        The delete is conditional on the row still existing, so when two
        callbacks race on the same state exactly one of them wins.

        Raises:
            InvalidStateError: Missing, expired, wrong platform, or already consumed
        """
        now = now or utcnow()
        record = self._find_live(state, platform, now)
        if record is None:
            self.session.rollback()
            logger.warning("oauth_state_rejected", platform=platform.value, reason="not_found")
            raise InvalidStateError()

        snapshot = self._snapshot(record)
        self.session.expunge(record)
        result = self.session.execute(
            delete(OAuthState).where(
                OAuthState.id == record.id,
                OAuthState.expires_at > now,
            )
        )
        if result.rowcount != 1:
            self.session.rollback()
            logger.warning(
                "oauth_state_rejected", platform=platform.value, reason="already_consumed"
            )
            raise InvalidStateError()
        self.session.commit()

        logger.info("oauth_state_consumed", platform=platform.value, user_id=str(snapshot.user_id))
        return snapshot

    def sweep_expired(self, now: Optional[datetime] = None) -> int:
        """Delete every expired state record. Returns the number removed."""
        now = now or utcnow()
        result = self.session.execute(
            delete(OAuthState).where(OAuthState.expires_at <= now)
        )
        self.session.commit()
        removed = result.rowcount or 0
        if removed:
            logger.info("oauth_states_swept", removed=removed)
        return removed

    def _find_live(
        self, state: str, platform: SocialPlatform, now: datetime
    ) -> Optional[OAuthState]:
        statement = select(OAuthState).where(
            OAuthState.state == state,
            OAuthState.platform == platform,
            OAuthState.expires_at > now,
        )
        return self.session.exec(statement).first()

    @staticmethod
    def _snapshot(record: OAuthState) -> ConsumedState:
        return ConsumedState(
            state=record.state,
            platform=record.platform,
            user_id=record.user_id,
            redirect_url=record.redirect_url,
            code_verifier=record.code_verifier,
            created_at=record.created_at,
        )
