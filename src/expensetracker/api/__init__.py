"""API route aggregation.

All routers registered here get mounted in main.py.

Learn: Auth is applied at the include_router level using FastAPI's
dependencies parameter. This protects all routes in each router
without modifying individual handlers. Health, auth, and invitation
routers are open; the invitation routes that need a signed-in owner
declare get_current_user themselves.
"""

from fastapi import APIRouter, Depends

from expensetracker.api.auth import router as auth_router
from expensetracker.api.health import router as health_router
from expensetracker.api.team_invites import router as team_invites_router
from expensetracker.api.teams import router as teams_router
from expensetracker.auth.dependencies import get_current_user

# All protected routers require authentication
_auth = [Depends(get_current_user)]

api_router = APIRouter(prefix="/api/v1")

# Open routes, no auth required
api_router.include_router(health_router, tags=["health"])
api_router.include_router(auth_router, tags=["auth"])
api_router.include_router(team_invites_router, tags=["team-invites"])

# Protected routes, require a valid access token
api_router.include_router(teams_router, tags=["orgs", "members"], dependencies=_auth)
