"""
User Schemas

Pydantic models for user response serialization.
"""

import uuid
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel

from app.models.enums import UserRole


class UserResponse(BaseModel):
    """Schema for user response (excludes password)."""

    id: uuid.UUID
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    role: UserRole
    permissions: List[str] = []
    is_active: bool
    is_verified: bool
    last_login_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}
