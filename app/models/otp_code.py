"""
OTP Code Model

Stores one-time codes for registration, email verification and password reset.
"""

import uuid
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import JSON, Boolean, DateTime, Enum, Index, Integer, String, func, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base
from app.models.enums import OTPPurpose


class OTPCode(Base):
    """
    OTP Code model.

    Attributes:
        id: UUID primary key.
        email: Lower-cased email address this OTP is for.
        code_hash: SHA-256 of the numeric code.
        purpose: What the code unlocks.
        attempts / max_attempts: Verification attempt budget.
        is_used: Consumed, expired, superseded or exhausted.
        extra_data: Opaque audit breadcrumbs (flow id, step).

    Only one unused code may exist per (email, purpose); the partial unique
    index enforces it across service instances.
    """

    __tablename__ = "otp_codes"
    __table_args__ = (
        Index(
            "uq_otp_codes_active_email_purpose",
            "email",
            "purpose",
            unique=True,
            postgresql_where=text("is_used = false"),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    email: Mapped[str] = mapped_column(
        String(255),
        index=True,
        nullable=False,
    )
    code_hash: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    purpose: Mapped[OTPPurpose] = mapped_column(
        Enum(OTPPurpose, name="otp_purpose", create_constraint=True),
        nullable=False,
    )
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
    is_used: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
    )
    used_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_attempts: Mapped[int] = mapped_column(Integer, default=3, nullable=False)
    extra_data: Mapped[Dict[str, Any]] = mapped_column(
        "metadata", JSON, default=dict, nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at

    def __repr__(self) -> str:
        return f"<OTPCode(id={self.id}, email={self.email}, purpose={self.purpose})>"
