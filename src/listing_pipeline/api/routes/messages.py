"""POST /messages/{id}/process: synchronous, on-demand pipeline run."""

from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from listing_pipeline.errors import MessageNotFoundError, PipelineError

from ..auth import verify_admin_token

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.post("/messages/{message_id}/process")
async def process_message(
    message_id: UUID,
    request: Request,
    _auth: None = Depends(verify_admin_token),
):
    """Run the pipeline for one message and return the resulting listings."""
    try:
        listings = await request.app.state.pipeline.process_message(message_id)
    except MessageNotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    except PipelineError as e:
        logger.error("messages.process_failed", message_id=str(message_id), error=str(e))
        return JSONResponse(status_code=500, content={"error": e.message})

    return {
        "message_id": str(message_id),
        "listings": [
            {
                "id": str(listing.id),
                "status": listing.status.value,
                "intent": listing.intent.value,
                "description": listing.description,
                "confidence_score": listing.confidence_score,
            }
            for listing in listings
        ],
    }
