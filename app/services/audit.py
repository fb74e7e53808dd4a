"""
Security event recording shared by the identity services.
"""

import logging
import uuid
from datetime import datetime
from typing import Any, Dict, Optional

from app.models.security_event import SecurityEvent
from app.schemas.auth import RequestContext
from app.store.base import CredentialStore


logger = logging.getLogger(__name__)


async def record_security_event(
    store: CredentialStore,
    now: datetime,
    event_type: str,
    *,
    user_id: Optional[uuid.UUID] = None,
    email: Optional[str] = None,
    success: bool = True,
    context: Optional[RequestContext] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> SecurityEvent:
    event = SecurityEvent(
        id=uuid.uuid4(),
        event_type=event_type,
        user_id=user_id,
        email=email,
        success=success,
        ip_address=context.ip_address if context else None,
        user_agent=context.user_agent if context else None,
        extra_data=dict(metadata or {}),
        created_at=now,
    )
    await store.add_security_event(event)
    logger.info(f"Security event {event_type} for {email or user_id} (success={success})")
    return event
