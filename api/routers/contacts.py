from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from auth.authenticate import authenticate, ensure_store_access
from models import Contact, ContactActivity, User
from routers.deps import get_engine
from services.triggers import add_contact_tag, record_purchase, record_signup, remove_contact_tag
from services.workflow_engine import RunHandle, WorkflowEngine

router = APIRouter(prefix="/contacts", tags=["contacts"])


class SignupIn(BaseModel):
    store_id: str
    email: str = Field(min_length=3)
    first_name: str | None = None
    last_name: str | None = None
    source: str | None = None
    product_id: str | None = None
    product_name: str | None = None


class PurchaseIn(BaseModel):
    store_id: str
    customer_email: str = Field(min_length=3)
    customer_name: str | None = None
    product_id: str | None = None
    course_id: str | None = None
    product_name: str | None = None
    order_id: str | None = None
    amount_cents: int = Field(default=0, ge=0)


class TagIn(BaseModel):
    tag: str = Field(min_length=1, max_length=100)


def _runs(handles: list[RunHandle]) -> list[dict]:
    return [{"run_id": h.run_id, "status": h.status, "created": h.created} for h in handles]


def _contact_out(contact: Contact) -> dict:
    return {
        "id": contact.id,
        "store_id": contact.store_id,
        "email": contact.email,
        "first_name": contact.first_name,
        "last_name": contact.last_name,
        "status": contact.status,
        "tags": contact.tags or [],
        "emails_sent": contact.emails_sent,
        "emails_opened": contact.emails_opened,
        "emails_clicked": contact.emails_clicked,
    }


async def _get_contact(contact_id: int, user: User) -> Contact:
    contact = await Contact.get_or_none(id=contact_id)
    if contact is None:
        raise HTTPException(status_code=404, detail="Contact not found")
    ensure_store_access(user, contact.store_id)
    return contact


## Lifecycle events

@router.post("/signup", response_model=dict)
async def signup(payload: SignupIn, user: User = Depends(authenticate), engine: WorkflowEngine = Depends(get_engine)):
    ensure_store_access(user, payload.store_id)
    contact, handles = await record_signup(engine, **payload.model_dump())
    return {"contact": _contact_out(contact), "runs": _runs(handles)}


@router.post("/purchases", response_model=dict)
async def purchase(payload: PurchaseIn, user: User = Depends(authenticate), engine: WorkflowEngine = Depends(get_engine)):
    ensure_store_access(user, payload.store_id)
    if not (payload.product_id or payload.course_id):
        raise HTTPException(status_code=400, detail="product_id or course_id is required")
    stored, handles, created = await record_purchase(engine, **payload.model_dump())
    return {"purchase_id": stored.id, "created": created, "runs": _runs(handles)}


## Contacts

@router.get("/{contact_id}", response_model=dict)
async def get_contact(contact_id: int, user: User = Depends(authenticate)):
    contact = await _get_contact(contact_id, user)
    activities = await ContactActivity.filter(contact=contact).order_by("-id").limit(50)
    return {
        **_contact_out(contact),
        "activities": [
            {"type": a.activity_type, "metadata": a.metadata, "occurred_at": a.occurred_at.isoformat()}
            for a in activities
        ],
    }


@router.post("/{contact_id}/tags", response_model=dict)
async def tag_contact(
    contact_id: int,
    payload: TagIn,
    user: User = Depends(authenticate),
    engine: WorkflowEngine = Depends(get_engine),
):
    contact = await _get_contact(contact_id, user)
    handles = await add_contact_tag(engine, contact, payload.tag)
    return {"tags": contact.tags, "runs": _runs(handles)}


@router.delete("/{contact_id}/tags/{tag}", response_model=dict)
async def untag_contact(contact_id: int, tag: str, user: User = Depends(authenticate)):
    contact = await _get_contact(contact_id, user)
    removed = await remove_contact_tag(contact, tag)
    return {"tags": contact.tags, "removed": removed}
