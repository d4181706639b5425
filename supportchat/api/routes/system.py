"""
System routes: /health
"""

import logging

from fastapi import APIRouter, Query, Request

from supportchat import __version__
from supportchat.api.models.system import HealthResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["System"])


@router.get("/health", response_model=HealthResponse)
async def health_check(
    request: Request,
    deep: bool = Query(False, description="Also send a test completion upstream"),
):
    """
    Health check endpoint.
    Reports database reachability and, with ``deep=true``, whether the
    upstream provider answers.
    """
    state = request.app.state
    database_ok = state.database.ping()

    upstream_ok = None
    if deep:
        upstream_ok = await state.relay.check_connection()

    healthy = database_ok and upstream_ok is not False
    if not healthy:
        logger.warning("Health check degraded: database=%s, upstream=%s", database_ok, upstream_ok)

    return HealthResponse(
        status="healthy" if healthy else "degraded",
        version=__version__,
        database=database_ok,
        upstream=upstream_ok,
    )
