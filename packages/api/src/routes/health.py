# This project was developed with assistance from AI tools.
"""Liveness and readiness probes."""

from db import DatabaseService, get_db_service
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from .. import __version__
from ..schemas.health import HealthItem

router = APIRouter()


@router.get("/", response_model=list[HealthItem])
async def liveness() -> list[HealthItem]:
    """The process is up. Does not touch the database."""
    return [HealthItem(name="API", status="healthy", message="API is running", version=__version__)]


@router.get("/ready", response_model=list[HealthItem])
async def readiness(db_service: DatabaseService = Depends(get_db_service)):
    """API plus database. Answers 503 while the database is unreachable."""
    db_ok = await db_service.health_check()
    items = [
        HealthItem(name="API", status="healthy", message="API is running", version=__version__),
        HealthItem(
            name="Database",
            status="healthy" if db_ok else "unhealthy",
            message="PostgreSQL connection OK" if db_ok else "PostgreSQL connection failed",
        ),
    ]
    if not db_ok:
        return JSONResponse(status_code=503, content=[i.model_dump() for i in items])
    return items
