# avatar_agent/entities.py
import enum
from datetime import datetime, timedelta, timezone
from uuid import uuid4

from sqlalchemy import (
    JSON,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, declarative_base, mapped_column

from typing import TypeAlias

UUID: TypeAlias = str
Base = declarative_base()

SESSION_TTL = timedelta(minutes=30)
PRESENTATION_TTL = timedelta(minutes=10)


def utcnow() -> datetime:
    # naive UTC; SQLite drops tzinfo and Postgres columns are declared without it
    return datetime.now(timezone.utc).replace(tzinfo=None)


class WizardStep(str, enum.Enum):
    AVATAR_SELECTION = "avatar_selection"
    AVATAR_MANUAL_ENTRY = "avatar_manual_entry"
    VOICE_SELECTION = "voice_selection"
    VOICE_MANUAL_ENTRY = "voice_manual_entry"
    LANGUAGE_SELECTION = "language_selection"
    NAME_INPUT = "name_input"
    PROMPT_INPUT = "prompt_input"
    CONFIRMATION = "confirmation"


class PresentationStatus(str, enum.Enum):
    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"
    EXPIRED = "expired"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False),
        nullable=False,
        default=utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )


class WizardSession(Base):
    """In-progress avatar creation, one row per connection."""
    __tablename__ = "avatar_creation_session"

    connection_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    current_step: Mapped[str] = mapped_column(String(50), nullable=False)

    selected_avatar_id: Mapped[str | None] = mapped_column(String(255))
    selected_voice_id: Mapped[str | None] = mapped_column(String(255))
    selected_language: Mapped[str | None] = mapped_column(String(10))
    custom_name: Mapped[str | None] = mapped_column(String(255))
    system_prompt: Mapped[str | None] = mapped_column(Text)

    # option ids of the last numbered list shown to the user (1-based on the wire)
    rendered_options: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)

    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False))

    @property
    def step(self) -> WizardStep:
        return WizardStep(self.current_step)


class AvatarConfig(Base, TimestampMixin):
    __tablename__ = "avatar_config"

    id: Mapped[UUID] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    connection_id: Mapped[str] = mapped_column(String(255), nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    # lower-cased name, backs the per-owner case-insensitive unique constraint
    name_key: Mapped[str] = mapped_column(String(255), nullable=False)

    avatar_id: Mapped[str] = mapped_column(String(255), nullable=False)
    voice_id: Mapped[str] = mapped_column(String(255), nullable=False)
    language: Mapped[str] = mapped_column(String(10), nullable=False, default="en")
    system_prompt: Mapped[str | None] = mapped_column(Text)

    credential_definition_id: Mapped[str | None] = mapped_column(String(255))
    credential_exchange_ref: Mapped[str | None] = mapped_column(String(255))
    credential_issued_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False))

    __table_args__ = (
        UniqueConstraint("connection_id", "name_key", name="uq_avatar_config_owner_name"),
        Index("ix_avatar_config_connection_id", "connection_id"),
    )

    @property
    def credential_state(self) -> str:
        if self.credential_issued_at is not None:
            return "issued"
        if self.credential_definition_id:
            return "offered"
        return "none"


class PendingPresentation(Base):
    __tablename__ = "pending_presentation"

    id: Mapped[UUID] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4()),
    )

    # correlation token assigned by (or sent to) the credential authority
    proof_exchange_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)

    connection_id: Mapped[str | None] = mapped_column(String(255))
    avatar_config_id: Mapped[UUID] = mapped_column(
        String(36),
        ForeignKey("avatar_config.id", ondelete="CASCADE"),
        nullable=False,
    )

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=PresentationStatus.PENDING.value,  # pending, verified, rejected, expired
    )

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False))
    verified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False))

    __table_args__ = (
        Index("ix_pending_presentation_status", "status"),
    )

    @property
    def is_pending(self) -> bool:
        return self.status == PresentationStatus.PENDING.value
