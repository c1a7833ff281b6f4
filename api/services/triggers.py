"""Contact lifecycle events that enroll contacts in triggered workflows.

Signups, purchases and tag changes arrive from the storefront (or from
workflow action nodes) and fan out to every active workflow of the store
whose ``trigger_type`` and ``trigger_config`` match.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from tortoise.exceptions import IntegrityError

from models import Contact, ContactActivity, Purchase
from services.workflow_engine import RunHandle, Subject, WorkflowEngine

logger = logging.getLogger(__name__)


async def _upsert_contact(
    store_id: str,
    email: str,
    first_name: str | None = None,
    last_name: str | None = None,
) -> tuple[Contact, bool]:
    contact, created = await Contact.get_or_create(
        store_id=store_id,
        email=email,
        defaults={"first_name": first_name, "last_name": last_name},
    )
    if not created:
        changed = []
        if first_name and not contact.first_name:
            contact.first_name = first_name
            changed.append("first_name")
        if last_name and not contact.last_name:
            contact.last_name = last_name
            changed.append("last_name")
        if changed:
            await contact.save(update_fields=[*changed, "updated_at"])
    return contact, created


def _split_name(name: str | None) -> tuple[str | None, str | None]:
    if not name or not name.strip():
        return None, None
    first, _, last = name.strip().partition(" ")
    return first, last.strip() or None


async def record_signup(
    engine: WorkflowEngine,
    *,
    store_id: str,
    email: str,
    first_name: str | None = None,
    last_name: str | None = None,
    source: str | None = None,
    product_id: str | None = None,
    product_name: str | None = None,
) -> tuple[Contact, list[RunHandle]]:
    """Create or re-subscribe a lead and start its ``lead_signup`` workflows."""
    email = email.strip().lower()
    contact, created = await _upsert_contact(store_id, email, first_name, last_name)
    if contact.status != "subscribed" or contact.subscribed_at is None:
        contact.status = "subscribed"
        contact.subscribed_at = datetime.now(timezone.utc)  # type: ignore[assignment]
        await contact.save(update_fields=["status", "subscribed_at", "updated_at"])

    context = {k: v for k, v in {"source": source, "productId": product_id, "productName": product_name}.items() if v}
    await ContactActivity.create(contact=contact, activity_type="signed_up", metadata=context)
    logger.info("Signup %s for store %s (new=%s)", email, store_id, created)

    handles = await engine.start_for_trigger(
        "lead_signup",
        Subject(customer_email=email, store_id=store_id, contact_id=contact.id),
        context=context,
    )
    return contact, handles


async def record_purchase(
    engine: WorkflowEngine,
    *,
    store_id: str,
    customer_email: str,
    product_id: str | None = None,
    course_id: str | None = None,
    product_name: str | None = None,
    order_id: str | None = None,
    amount_cents: int = 0,
    customer_name: str | None = None,
) -> tuple[Purchase, list[RunHandle], bool]:
    """Store a purchase and start its ``product_purchase`` workflows.

    Replays of the same ``order_id`` return the stored purchase without
    enrolling anyone again; the last element of the result is ``False`` then.
    """
    email = customer_email.strip().lower()
    if order_id:
        existing = await Purchase.filter(store_id=store_id, order_id=order_id).first()
        if existing:
            logger.info("Purchase %s for store %s already recorded", order_id, store_id)
            return existing, [], False

    try:
        purchase = await Purchase.create(
            store_id=store_id,
            customer_email=email,
            product_id=product_id,
            course_id=course_id,
            product_name=product_name,
            order_id=order_id,
            amount_cents=amount_cents,
        )
    except IntegrityError:
        # Another request stored the same order first.
        existing = await Purchase.get(store_id=store_id, order_id=order_id)
        return existing, [], False

    first_name, last_name = _split_name(customer_name)
    contact, _ = await _upsert_contact(store_id, email, first_name, last_name)
    context = {
        k: v
        for k, v in {
            "productId": product_id,
            "courseId": course_id,
            "productName": product_name,
            "orderId": order_id,
            "amountCents": amount_cents,
        }.items()
        if v
    }
    await ContactActivity.create(contact=contact, activity_type="purchased", metadata=context)
    logger.info("Purchase %s by %s for store %s", order_id or purchase.id, email, store_id)

    handles = await engine.start_for_trigger(
        "product_purchase",
        Subject(customer_email=email, store_id=store_id, contact_id=contact.id),
        context=context,
    )
    return purchase, handles, True


async def add_contact_tag(engine: WorkflowEngine, contact: Contact, tag: str) -> list[RunHandle]:
    """Tag a contact; a tag it did not have yet starts its ``tag_added`` workflows."""
    tag = tag.strip()
    tags = list(contact.tags or [])
    if not tag or tag in tags:
        return []
    tags.append(tag)
    contact.tags = tags  # type: ignore[assignment]
    await contact.save(update_fields=["tags", "updated_at"])
    await ContactActivity.create(contact=contact, activity_type="tag_added", metadata={"tag": tag})
    return await engine.start_for_trigger(
        "tag_added",
        Subject(customer_email=contact.email, store_id=contact.store_id, contact_id=contact.id),
        context={"tagName": tag},
    )


async def remove_contact_tag(contact: Contact, tag: str) -> bool:
    tags = list(contact.tags or [])
    if tag not in tags:
        return False
    contact.tags = [t for t in tags if t != tag]  # type: ignore[assignment]
    await contact.save(update_fields=["tags", "updated_at"])
    await ContactActivity.create(contact=contact, activity_type="tag_removed", metadata={"tag": tag})
    return True
