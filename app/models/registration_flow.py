"""
Registration Flow Model

Tracks a prospective user's progress through the three registration steps.
"""

import uuid
from datetime import datetime
from typing import Any, Dict

from sqlalchemy import JSON, DateTime, Enum, String, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base
from app.models.enums import RegistrationStep


class RegistrationFlow(Base):
    """
    Registration flow model.

    Attributes:
        email: One flow per email address.
        step: Current step of the flow.
        expires_at: The flow must be restarted after this point.
        temp_data: startedAt, userAgent, ipAddress, emailVerifiedAt,
            completedAt and userId breadcrumbs.
    """

    __tablename__ = "registration_flows"

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
    step: Mapped[RegistrationStep] = mapped_column(
        Enum(RegistrationStep, name="registration_step", create_constraint=True),
        default=RegistrationStep.OTP_PENDING,
        nullable=False,
    )
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
    temp_data: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at

    def __repr__(self) -> str:
        return f"<RegistrationFlow(email={self.email}, step={self.step})>"
