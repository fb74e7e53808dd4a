"""
Revoked Token Model

Durable deny-list of token ids. Rows are purged once the token would have
expired anyway.
"""

from datetime import datetime

from sqlalchemy import DateTime, Enum, String
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base
from app.models.enums import TokenType


class RevokedToken(Base):
    __tablename__ = "revoked_tokens"

    jti: Mapped[str] = mapped_column(String(64), primary_key=True)
    token_type: Mapped[TokenType] = mapped_column(
        Enum(TokenType, name="token_type", create_constraint=True),
        nullable=False,
    )
    revoked_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        index=True,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<RevokedToken(jti={self.jti}, type={self.token_type})>"
