"""
API v1 Router

Aggregates all v1 endpoint routers.
"""

from fastapi import APIRouter

from app.api.v1.endpoints import auth, password_reset, registration

router = APIRouter()

# Include authentication and session routes
router.include_router(auth.router)

# Include registration routes
router.include_router(registration.router)

# Include password reset routes
router.include_router(password_reset.router)
