"""Health check endpoint.

Learn: Simple GET endpoint that verifies the server is running
and the database is reachable. It also reports how outgoing mail is
handled: "resend" when a provider key is set, "logged" when reset and
invitation links only go to the server log.
"""

from fastapi import APIRouter
from sqlalchemy import text

from expensetracker import __version__
from expensetracker.config import settings
from expensetracker.db.engine import engine

router = APIRouter()


@router.get("/health")
async def health_check():
    """Check server health and database connectivity."""
    checks = {"server": "ok", "version": __version__}
    email_delivery = "resend" if settings.resend_api_key else "logged"

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except Exception as e:
        checks["database"] = f"error: {e}"

    status = "healthy" if checks["database"] == "ok" else "degraded"
    return {"status": status, **checks, "email_delivery": email_delivery}
