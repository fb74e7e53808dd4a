"""
Password Reset Flow Model
"""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base


class PasswordResetFlow(Base):
    """
    Password reset flow model.

    ``verified_code_hash`` is set once the OTP has been checked on its own,
    so the subsequent reset can be completed with the same code.
    """

    __tablename__ = "password_reset_flows"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    email: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        index=True,
        nullable=False,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    verified_code_hash: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at

    def __repr__(self) -> str:
        return f"<PasswordResetFlow(email={self.email}, active={self.is_active})>"
