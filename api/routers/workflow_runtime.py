import hmac
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel

from config import Config
from routers.deps import get_engine
from services.workflow_engine import WorkflowEngine

router = APIRouter(prefix="/workflow-runtime", tags=["workflow-runtime"])


def _cron_allowed(request: Request) -> bool:
    secret = Config.CRON_SECRET
    if not secret:
        return False
    provided = request.headers.get("X-Cron-Secret") or request.query_params.get("cron_secret") or ""
    return hmac.compare_digest(provided, secret)


class TickRequest(BaseModel):
    now: datetime | None = None


class TickResponse(BaseModel):
    due: int
    processed: int
    running: int = 0
    waiting_delay: int = 0
    waiting_retry: int = 0
    completed: int = 0
    failed: int = 0
    cancelled: int = 0


@router.post("/tick", response_model=TickResponse)
async def tick_workflows(
    request: Request,
    payload: TickRequest | None = None,
    engine: WorkflowEngine = Depends(get_engine),
):
    if not _cron_allowed(request):
        raise HTTPException(status_code=403, detail="Invalid cron secret")
    result = await engine.tick(payload.now if payload else None)
    return TickResponse(**result)
