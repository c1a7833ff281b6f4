from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from fastapi.responses import RedirectResponse
from tortoise.expressions import F

from models import Contact, ContactActivity
from routers.deps import get_engine
from services.tracking import parse_contact_token, verify_click
from services.workflow_engine import WorkflowEngine

router = APIRouter(tags=["tracking"])


PIXEL_GIF = (
    b"GIF89a\x01\x00\x01\x00\x80\x00\x00\x00\x00\x00\xff\xff\xff!\xf9\x04"
    b"\x01\x00\x00\x00\x00,\x00\x00\x00\x00\x01\x00\x01\x00\x00\x02\x02"
    b"D\x01\x00;"
)


async def _contact_for_token(token: str) -> Contact | None:
    parsed = parse_contact_token(token)
    if not parsed:
        return None
    contact_id, email = parsed
    if contact_id is None:
        return None
    return await Contact.filter(id=contact_id, email=email).first()


@router.get("/tracking/open/{token}.gif")
async def tracking_pixel(token: str):
    contact = await _contact_for_token(token)
    if contact:
        now = datetime.now(timezone.utc)
        await Contact.filter(id=contact.id).update(emails_opened=F("emails_opened") + 1, last_opened_at=now)
        await ContactActivity.create(contact=contact, activity_type="email_opened", metadata={"source": "pixel"})
    return Response(content=PIXEL_GIF, media_type="image/gif", headers={"Cache-Control": "no-store"})


@router.get("/tracking/click/{token}")
async def tracking_click(token: str, url: str = Query(...), sig: str = Query(...)):
    if not verify_click(token, url, sig):
        raise HTTPException(status_code=400, detail="Invalid tracking link")
    contact = await _contact_for_token(token)
    if contact:
        now = datetime.now(timezone.utc)
        await Contact.filter(id=contact.id).update(emails_clicked=F("emails_clicked") + 1, last_clicked_at=now)
        await ContactActivity.create(contact=contact, activity_type="email_clicked", metadata={"url": url})
    return RedirectResponse(url, status_code=302)


@router.get("/unsubscribe/{token}")
async def unsubscribe(token: str, engine: WorkflowEngine = Depends(get_engine)):
    parsed = parse_contact_token(token)
    if not parsed:
        raise HTTPException(status_code=400, detail="Invalid unsubscribe token")
    contact = await _contact_for_token(token)
    if contact is None:
        return Response(content="You have been unsubscribed.", media_type="text/plain")

    contact.status = "unsubscribed"  # type: ignore[assignment]
    await contact.save(update_fields=["status", "updated_at"])
    cancelled = await engine.cancel_runs_for_contact(contact)

    await ContactActivity.create(
        contact=contact,
        activity_type="unsubscribed",
        metadata={"cancelled_runs": cancelled},
    )

    return Response(content="You have been unsubscribed. Thank you.", media_type="text/plain")
