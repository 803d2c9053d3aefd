from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

import structlog
from sqlalchemy.exc import IntegrityError

from onetime.config import Settings
from onetime.errors import (
    InvalidPassphrase,
    PassphraseRequired,
    SecretAlreadyViewed,
    SecretExpired,
    SecretNotFound,
    SecretValidationError,
)
from onetime.models.secret import Secret, SecretMetadata, SecretState, utcnow
from onetime.services.crypto import CryptoEngine
from onetime.services.secret_store import SecretStore

logger = structlog.get_logger()

KEY_GENERATION_ATTEMPTS = 5


@dataclass(frozen=True, slots=True)
class SecretLimits:
    max_secret_length: int = 10_000
    min_ttl_seconds: int = 60
    max_ttl_seconds: int = 604_800
    min_views: int = 1
    max_views: int = 100
    default_ttl_seconds: int = 86_400
    default_max_views: int = 1

    @classmethod
    def from_settings(cls, settings: Settings) -> "SecretLimits":
        return cls(
            max_secret_length=settings.max_secret_length,
            min_ttl_seconds=settings.min_ttl_seconds,
            max_ttl_seconds=settings.max_ttl_seconds,
            min_views=settings.min_views,
            max_views=settings.max_views,
            default_ttl_seconds=settings.default_ttl_seconds,
            default_max_views=settings.default_max_views,
        )


@dataclass(frozen=True, slots=True)
class CreatedSecret:
    key: str
    url: str
    expires_at: datetime


@dataclass(frozen=True, slots=True)
class SecretStatus:
    needs_passphrase: bool
    expires_at: datetime
    views_remaining: int


@dataclass(frozen=True, slots=True)
class RevealedSecret:
    secret: str
    expires_at: datetime
    views_remaining: int


class SecretLifecycle:
    """
    Create, inspect, reveal and destroy secrets.

    Expiry is enforced lazily: whichever call first observes an expired or
    exhausted row deletes it. Reveal counts views with a single conditional
    UPDATE, so no more than max_views callers ever get the plaintext.
    """

    def __init__(
        self,
        store: SecretStore,
        crypto: CryptoEngine,
        *,
        site_url: str,
        limits: SecretLimits | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.crypto = crypto
        self.site_url = site_url.rstrip("/")
        self.limits = limits or SecretLimits()
        self.clock = clock

    def share_url(self, key: str) -> str:
        return f"{self.site_url}/secret/{key}"

    def _validate_create(self, plaintext: str, ttl_seconds: int, max_views: int) -> None:
        limits = self.limits
        errors = []
        if not 1 <= len(plaintext) <= limits.max_secret_length:
            errors.append(
                {
                    "field": "secret",
                    "message": f"Secret must be 1 to {limits.max_secret_length} characters",
                }
            )
        if not limits.min_ttl_seconds <= ttl_seconds <= limits.max_ttl_seconds:
            errors.append(
                {
                    "field": "ttl",
                    "message": (
                        f"TTL must be between {limits.min_ttl_seconds} "
                        f"and {limits.max_ttl_seconds} seconds"
                    ),
                }
            )
        if not limits.min_views <= max_views <= limits.max_views:
            errors.append(
                {
                    "field": "maxViews",
                    "message": f"Max views must be between {limits.min_views} and {limits.max_views}",
                }
            )
        if errors:
            raise SecretValidationError(details=errors)

    def create(
        self,
        plaintext: str,
        *,
        passphrase: str | None = None,
        ttl_seconds: int | None = None,
        max_views: int | None = None,
        recipient_email: str | None = None,
        created_ip: str | None = None,
    ) -> CreatedSecret:
        """
        Encrypt and store a new secret.

        The secret row and its metadata row are committed together. A key
        collision is retried with a fresh key.

        Omitted ttl_seconds and max_views take the configured defaults.
        """
        if ttl_seconds is None:
            ttl_seconds = self.limits.default_ttl_seconds
        if max_views is None:
            max_views = self.limits.default_max_views
        self._validate_create(plaintext, ttl_seconds, max_views)

        passphrase = passphrase or None
        encrypted_content = self.crypto.encrypt(plaintext, passphrase)
        passphrase_hash = self.crypto.hash_passphrase(passphrase) if passphrase else None

        now = self.clock()
        expires_at = now + timedelta(seconds=ttl_seconds)

        for _ in range(KEY_GENERATION_ATTEMPTS):
            key = self.crypto.generate_key()
            secret = Secret(
                key=key,
                encrypted_content=encrypted_content,
                has_passphrase=passphrase is not None,
                passphrase_hash=passphrase_hash,
                max_views=max_views,
                current_views=0,
                expires_at=expires_at,
                created_at=now,
                created_ip=created_ip,
                recipient_email=recipient_email,
            )
            try:
                self.store.insert_secret(secret)
                self.store.insert_metadata(
                    SecretMetadata(
                        secret_id=secret.id,
                        secret_key=key,
                        state=SecretState.NEW,
                        created_at=now,
                        updated_at=now,
                    )
                )
                self.store.commit()
            except IntegrityError:
                self.store.rollback()
                logger.warning("secret_key_collision")
                continue

            logger.info(
                "secret_created",
                has_passphrase=secret.has_passphrase,
                max_views=max_views,
                ttl_seconds=ttl_seconds,
            )
            return CreatedSecret(key=key, url=self.share_url(key), expires_at=expires_at)

        raise RuntimeError("Failed to generate unique secret key")

    def _destroy(self, key: str, reason: str) -> None:
        self.store.delete_secret(key)
        self.store.update_metadata(key, SecretState.DESTROYED)
        self.store.commit()
        logger.info("secret_destroyed", reason=reason)

    def _fetch_viewable(self, key: str, now: datetime) -> Secret:
        """Load a secret, destroying it first if it can no longer be viewed."""
        secret = self.store.get_secret_by_key(key)
        if secret is None:
            raise SecretNotFound()

        if now >= secret.expires_at:
            self._destroy(key, reason="expired")
            raise SecretExpired()

        if secret.current_views >= secret.max_views:
            self._destroy(key, reason="views_exhausted")
            raise SecretAlreadyViewed()

        return secret

    def status(self, key: str) -> SecretStatus:
        """Report whether a secret can be revealed. Never decrypts or counts a view."""
        secret = self._fetch_viewable(key, self.clock())
        status = SecretStatus(
            needs_passphrase=secret.has_passphrase,
            expires_at=secret.expires_at,
            views_remaining=secret.max_views - secret.current_views,
        )
        # Release the read snapshot held by the session
        self.store.rollback()
        return status

    def reveal(
        self, key: str, passphrase: str | None = None, viewer_ip: str | None = None
    ) -> RevealedSecret:
        """
        Decrypt a secret and count the view.

        Passphrase and decryption failures leave the record untouched. When
        the view count reaches max_views the row is deleted in the same
        transaction that counted the view.
        """
        now = self.clock()
        secret = self._fetch_viewable(key, now)
        passphrase = passphrase or None

        if secret.has_passphrase:
            if passphrase is None:
                self.store.rollback()
                raise PassphraseRequired()
            if not secret.passphrase_hash or not self.crypto.verify_passphrase(
                passphrase, secret.passphrase_hash
            ):
                self.store.rollback()
                logger.info("passphrase_rejected")
                raise InvalidPassphrase()
        else:
            # A passphrase sent for an unprotected secret plays no part in the key
            passphrase = None

        encrypted_content = secret.encrypted_content
        expires_at = secret.expires_at
        self.store.rollback()

        # DecryptionError propagates with nothing written
        plaintext = self.crypto.decrypt(encrypted_content, passphrase)

        counted = self.store.increment_views(key, now, viewer_ip)
        if counted is None:
            self.store.rollback()
            logger.info("secret_reveal_race_lost")
            raise SecretAlreadyViewed()

        self.store.update_metadata(key, SecretState.VIEWED)
        destroyed = counted.current_views >= counted.max_views
        if destroyed:
            self.store.delete_secret(key)
            self.store.update_metadata(key, SecretState.DESTROYED)
        self.store.commit()

        views_remaining = counted.max_views - counted.current_views
        logger.info("secret_revealed", views_remaining=views_remaining, destroyed=destroyed)
        return RevealedSecret(
            secret=plaintext,
            expires_at=expires_at,
            views_remaining=views_remaining,
        )

    def metadata_state(self, key: str) -> SecretState | None:
        metadata = self.store.get_metadata(key)
        return metadata.state if metadata else None

    def purge_expired(self) -> int:
        """
        Delete every expired or exhausted secret.

        Storage hygiene only: status() and reveal() enforce expiry on their
        own whether or not this ever runs.
        """
        keys = self.store.unviewable_keys(self.clock())
        for key in keys:
            self.store.delete_secret(key)
            self.store.update_metadata(key, SecretState.DESTROYED)
        self.store.commit()
        if keys:
            logger.info("secrets_purged", count=len(keys))
        return len(keys)
