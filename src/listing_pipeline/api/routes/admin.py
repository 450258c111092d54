"""Administrative catchup and reprocessing endpoints."""

import structlog
from fastapi import APIRouter, Depends, Request

from ..auth import verify_admin_token

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/admin", dependencies=[Depends(verify_admin_token)])


@router.post("/catchup", status_code=202)
async def trigger_catchup(request: Request):
    """Start a catchup run; a run already in progress is not duplicated."""
    started = request.app.state.pipeline.trigger_catchup()
    logger.info("admin.catchup_requested", started=started)
    return {"started": started}


@router.get("/catchup/status")
async def catchup_status(request: Request):
    pipeline = request.app.state.pipeline
    return {
        "running": pipeline.is_catchup_running(),
        "unprocessed": await pipeline.get_unprocessed_count(),
    }


@router.post("/reprocess")
async def reprocess(request: Request):
    """Delete re-extractable listings and re-queue every message."""
    counts = await request.app.state.pipeline.reset_for_reprocessing()
    logger.info("admin.reprocess", **counts)
    return counts
