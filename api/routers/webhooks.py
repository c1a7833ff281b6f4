import hashlib
import hmac
import json
import logging

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request, Response

from config import Config
from routers.deps import get_dispatcher
from services.automation_dispatcher import AutomationDispatcher

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


def _signature_valid(body: bytes, header: str | None) -> bool:
    secret = Config.INSTAGRAM_APP_SECRET
    if not secret:
        if Config.REQUIRE_WEBHOOK_SIGNATURE:
            logger.error("INSTAGRAM_APP_SECRET is not set; rejecting unsigned webhook")
            return False
        return True
    if not header or not header.startswith("sha256="):
        return False
    expected = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(header.split("=", 1)[1], expected)


@router.get("/instagram")
async def verify_instagram_webhook(
    mode: str | None = Query(default=None, alias="hub.mode"),
    token: str | None = Query(default=None, alias="hub.verify_token"),
    challenge: str | None = Query(default=None, alias="hub.challenge"),
):
    verify_token = Config.INSTAGRAM_VERIFY_TOKEN
    if mode == "subscribe" and verify_token and token and hmac.compare_digest(token, verify_token):
        return Response(content=challenge or "", media_type="text/plain")
    raise HTTPException(status_code=403, detail="Verification failed")


@router.post("/instagram")
async def receive_instagram_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    dispatcher: AutomationDispatcher = Depends(get_dispatcher),
):
    body = await request.body()
    if not _signature_valid(body, request.headers.get("X-Hub-Signature-256")):
        raise HTTPException(status_code=401, detail="Invalid signature")
    try:
        payload = json.loads(body or b"null")
    except ValueError:
        logger.info("Instagram webhook body is not JSON; acknowledged and dropped")
        return {"status": "received"}
    background_tasks.add_task(dispatcher.handle_inbound_event, payload)
    return {"status": "received"}
