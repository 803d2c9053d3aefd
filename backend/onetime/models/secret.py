import enum
import uuid
from datetime import UTC, datetime

from sqlalchemy import Boolean, CheckConstraint, DateTime, Enum, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from onetime.database import Base


def utcnow() -> datetime:
    """Current UTC time as a naive datetime (the storage convention)."""
    return datetime.now(UTC).replace(tzinfo=None)


class Secret(Base):
    """
    An encrypted secret that can still be viewed.

    A row only exists while current_views < max_views and now < expires_at;
    anything else is deleted the moment it is observed.
    """

    __tablename__ = "secrets"
    __table_args__ = (
        CheckConstraint("current_views >= 0", name="ck_secrets_current_views_non_negative"),
        CheckConstraint("current_views <= max_views", name="ck_secrets_views_within_max"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    key: Mapped[str] = mapped_column(String(64), unique=True, index=True, nullable=False)

    # Encrypted payload
    encrypted_content: Mapped[str] = mapped_column(Text, nullable=False)
    has_passphrase: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    passphrase_hash: Mapped[str | None] = mapped_column(String(128), nullable=True)

    # View accounting
    max_views: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    current_views: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Timing
    expires_at: Mapped[datetime] = mapped_column(DateTime, index=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    viewed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True, default=None)

    # Metadata
    created_ip: Mapped[str | None] = mapped_column(String(64), nullable=True)
    viewed_ip: Mapped[str | None] = mapped_column(String(64), nullable=True)
    recipient_email: Mapped[str | None] = mapped_column(String(254), nullable=True)


class SecretState(str, enum.Enum):
    NEW = "new"
    VIEWED = "viewed"
    DESTROYED = "destroyed"


# States a record may move out of, per target state. Never backwards.
STATE_PREDECESSORS: dict[SecretState, tuple[SecretState, ...]] = {
    SecretState.NEW: (),
    SecretState.VIEWED: (SecretState.NEW,),
    SecretState.DESTROYED: (SecretState.NEW, SecretState.VIEWED),
}


class SecretMetadata(Base):
    """Audit trail for a key. Outlives the secret row it describes."""

    __tablename__ = "secret_metadata"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    secret_id: Mapped[str] = mapped_column(String(36), nullable=False)
    secret_key: Mapped[str] = mapped_column(String(64), unique=True, index=True, nullable=False)
    state: Mapped[SecretState] = mapped_column(
        Enum(
            SecretState,
            name="secret_state",
            native_enum=False,
            length=16,
            values_callable=lambda e: [m.value for m in e],
        ),
        default=SecretState.NEW,
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow, nullable=False
    )
