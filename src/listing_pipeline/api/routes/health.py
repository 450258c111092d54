"""Health check endpoint."""

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

router = APIRouter()


@router.get("/health")
async def health(request: Request, deep: bool = False):
    """
    Check Postgres connectivity.

    With ``?deep=true`` also check OpenAI and report the unprocessed backlog.
    An unreachable OpenAI only degrades the status, since extraction falls
    back to an empty result and catchup picks the messages up later.
    """
    state = request.app.state
    if not await state.postgres.verify_connectivity():
        return JSONResponse(status_code=503, content={"status": "unhealthy"})
    if not deep:
        return {"status": "ok"}

    openai_health = await state.openai.health_check()
    return {
        "status": "ok" if openai_health["healthy"] else "degraded",
        "openai": openai_health,
        "unprocessed": await state.pipeline.get_unprocessed_count(),
        "catchup_running": state.pipeline.is_catchup_running(),
    }
