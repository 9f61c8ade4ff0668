"""Health check routes for the Sidequest API."""

from datetime import datetime
from fastapi import APIRouter
from sqlalchemy.sql import text

from sidequest import __version__
from sidequest.c1_database_session.database_manager import get_db

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check():
    """Health check endpoint.

    Returns:
        dict: Health status, database reachability, timestamp, and version
    """
    try:
        with get_db() as db:
            db.execute(text("SELECT 1"))
        database = "ok"
    except Exception as e:
        database = f"error: {e}"

    return {
        "status": "healthy" if database == "ok" else "degraded",
        "database": database,
        "timestamp": datetime.utcnow().isoformat(),
        "version": __version__,
    }
