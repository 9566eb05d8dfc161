"""API route aggregation.

All routers registered here get mounted in main.py.

Learn: auth is applied at the include_router level using FastAPI's
dependencies parameter. This protects every route of a router without
touching the handlers. Health and the credential endpoints of auth are
open.
"""

from fastapi import APIRouter, Depends

from parley.api.auth import me_router as auth_me_router
from parley.api.auth import router as auth_router
from parley.api.conversations import router as conversations_router
from parley.api.health import router as health_router
from parley.api.messages import router as messages_router
from parley.api.presence import router as presence_router
from parley.api.users import router as users_router
from parley.auth.dependencies import get_current_user

# All protected routers require authentication
_auth = [Depends(get_current_user)]

api_router = APIRouter(prefix="/api/v1")

# Open routes
api_router.include_router(health_router, tags=["health"])
api_router.include_router(auth_router, tags=["auth"])

# Protected routes
api_router.include_router(auth_me_router, tags=["auth"], dependencies=_auth)
api_router.include_router(users_router, tags=["users"], dependencies=_auth)
api_router.include_router(conversations_router, tags=["conversations"], dependencies=_auth)
api_router.include_router(messages_router, tags=["messages"], dependencies=_auth)
api_router.include_router(presence_router, tags=["presence"], dependencies=_auth)
