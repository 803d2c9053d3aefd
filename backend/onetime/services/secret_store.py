"""
Persistence for secrets and their audit metadata.

All database access for the lifecycle goes through SecretStore. Driver-level
timeouts and lock waits surface as StoreUnavailable so callers can retry.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime

import structlog
from sqlalchemy import delete, or_, select, update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session

from onetime.errors import StoreUnavailable
from onetime.models.secret import STATE_PREDECESSORS, Secret, SecretMetadata, SecretState

logger = structlog.get_logger()


@dataclass(frozen=True, slots=True)
class ViewCount:
    current_views: int
    max_views: int


class SecretStore:
    def __init__(self, db_session: Session):
        self.db_session = db_session

    @contextmanager
    def _guard(self, operation: str) -> Iterator[None]:
        try:
            yield
        except (OperationalError, PoolTimeoutError) as e:
            self.db_session.rollback()
            logger.error("store_unavailable", operation=operation, error_type=type(e).__name__)
            raise StoreUnavailable() from e

    def insert_secret(self, secret: Secret) -> Secret:
        """Stage a new secret. Raises IntegrityError on a duplicate key at flush."""
        with self._guard("insert_secret"):
            self.db_session.add(secret)
            self.db_session.flush()
            return secret

    def insert_metadata(self, metadata: SecretMetadata) -> SecretMetadata:
        with self._guard("insert_metadata"):
            self.db_session.add(metadata)
            self.db_session.flush()
            return metadata

    def get_secret_by_key(self, key: str) -> Secret | None:
        with self._guard("get_secret_by_key"):
            return self.db_session.scalars(select(Secret).where(Secret.key == key)).first()

    def get_metadata(self, key: str) -> SecretMetadata | None:
        with self._guard("get_metadata"):
            return self.db_session.scalars(
                select(SecretMetadata).where(SecretMetadata.secret_key == key)
            ).first()

    def update_secret(self, key: str, **fields) -> int:
        """Plain field update. Not for view counts; use increment_views."""
        if "current_views" in fields:
            raise ValueError("current_views may only change through increment_views")
        with self._guard("update_secret"):
            result = self.db_session.execute(
                update(Secret)
                .where(Secret.key == key)
                .values(**fields)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount

    def increment_views(self, key: str, now: datetime, viewer_ip: str | None) -> ViewCount | None:
        """
        Atomically count one view if the secret is still viewable.

        Returns the post-increment counts, or None when no viewable row
        matched (deleted, expired, or exhausted by a concurrent caller).
        """
        stmt = (
            update(Secret)
            .where(
                Secret.key == key,
                Secret.current_views < Secret.max_views,
                Secret.expires_at > now,
            )
            .values(
                current_views=Secret.current_views + 1,
                viewed_at=now,
                viewed_ip=viewer_ip,
            )
            .returning(Secret.current_views, Secret.max_views)
            .execution_options(synchronize_session=False)
        )
        with self._guard("increment_views"):
            row = self.db_session.execute(stmt).one_or_none()
        if row is None:
            return None
        return ViewCount(current_views=row.current_views, max_views=row.max_views)

    def delete_secret(self, key: str) -> int:
        with self._guard("delete_secret"):
            result = self.db_session.execute(
                delete(Secret)
                .where(Secret.key == key)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount

    def update_metadata(self, key: str, state: SecretState) -> int:
        """Advance the audit state. Moves that would go backwards match no rows."""
        allowed_from = STATE_PREDECESSORS[state]
        if not allowed_from:
            return 0
        with self._guard("update_metadata"):
            result = self.db_session.execute(
                update(SecretMetadata)
                .where(
                    SecretMetadata.secret_key == key,
                    SecretMetadata.state.in_(allowed_from),
                )
                .values(state=state)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount

    def unviewable_keys(self, now: datetime) -> list[str]:
        """Keys of rows that are expired or have used up their views."""
        with self._guard("unviewable_keys"):
            return list(
                self.db_session.scalars(
                    select(Secret.key).where(
                        or_(Secret.expires_at <= now, Secret.current_views >= Secret.max_views)
                    )
                )
            )

    def commit(self) -> None:
        try:
            with self._guard("commit"):
                self.db_session.commit()
        except IntegrityError:
            self.db_session.rollback()
            raise

    def rollback(self) -> None:
        self.db_session.rollback()
