from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Mapping

from models import Contact, ContactActivity, Purchase

logger = logging.getLogger(__name__)

DAY_SECONDS = 86400


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _days_since(value: datetime | None, now: datetime) -> int | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int((now - value).total_seconds() // DAY_SECONDS)


def _as_number(value: Any) -> float | None:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).lower()


def _is_empty(value: Any) -> bool:
    if value is None or value == "":
        return True
    if isinstance(value, (list, tuple, set, dict)):
        return len(value) == 0
    return False


def contact_attributes(contact: Contact | None, context: Mapping[str, Any] | None = None, now: datetime | None = None) -> dict:
    """Attribute map a condition is evaluated against.

    Contact columns are exposed under their camelCase editor names plus the
    derived fields (rates, day counts, tag count). Without a contact only the
    subject context is available.
    """
    now = now or _now()
    context = context or {}
    attrs: dict[str, Any] = dict(context.get("executionData") or {})
    attrs["email"] = context.get("customerEmail")
    attrs["storeId"] = context.get("storeId")
    if contact is None:
        return attrs

    sent = contact.emails_sent or 0
    opened = contact.emails_opened or 0
    clicked = contact.emails_clicked or 0
    tags = list(contact.tags or [])
    attrs.update(contact.custom_fields or {})
    attrs.update(
        {
            "email": contact.email,
            "firstName": contact.first_name,
            "lastName": contact.last_name,
            "fullName": f"{contact.first_name or ''} {contact.last_name or ''}".strip(),
            "status": contact.status,
            "tags": tags,
            "tagCount": len(tags),
            "emailsSent": sent,
            "emailsOpened": opened,
            "emailsClicked": clicked,
            "openRate": (opened / sent * 100) if sent else 0,
            "clickRate": (clicked / sent * 100) if sent else 0,
            "createdAt": contact.created_at,
            "subscribedAt": contact.subscribed_at,
            "lastOpenedAt": contact.last_opened_at,
            "lastClickedAt": contact.last_clicked_at,
            "daysSinceSignup": _days_since(contact.subscribed_at or contact.created_at, now),
            "daysSinceLastOpen": _days_since(contact.last_opened_at, now),
        }
    )
    return attrs


def evaluate(attributes: Mapping[str, Any], condition: Mapping[str, Any]) -> bool:
    """Evaluate a ``{field, operator, value}`` descriptor against an attribute map."""
    field = condition.get("field")
    operator = (condition.get("operator") or "equals").strip().lower()
    value = condition.get("value")
    actual = attributes.get(field) if field else None

    if operator == "equals":
        return _text(actual) == _text(value)
    if operator == "not_equals":
        return _text(actual) != _text(value)
    if operator in {"contains", "not_contains"}:
        needle = _text(value)
        if isinstance(actual, (list, tuple, set)):
            found = any(needle in _text(item) for item in actual)
        else:
            found = needle in _text(actual)
        return found if operator == "contains" else not found
    if operator == "starts_with":
        return _text(actual).startswith(_text(value))
    if operator == "ends_with":
        return _text(actual).endswith(_text(value))
    if operator in {"greater_than", "less_than"}:
        left, right = _as_number(actual), _as_number(value)
        if left is None or right is None:
            return False
        return left > right if operator == "greater_than" else left < right
    if operator == "is_set":
        return actual is not None
    if operator == "is_not_set":
        return actual is None
    if operator == "is_empty":
        return _is_empty(actual)
    if operator == "is_not_empty":
        return not _is_empty(actual)
    if operator in {"in_list", "not_in_list"}:
        if not isinstance(value, (list, tuple, set)):
            return operator == "not_in_list"
        options = {_text(v) for v in value}
        if isinstance(actual, (list, tuple, set)):
            found = any(_text(item) in options for item in actual)
        else:
            found = _text(actual) in options
        return found if operator == "in_list" else not found

    logger.info("Unknown condition operator %r, treating as true", operator)
    return True


async def _has_activity(contact: Contact | None, activity_type: str, link_url: str | None = None) -> bool:
    if contact is None:
        return False
    qs = ContactActivity.filter(contact=contact, activity_type=activity_type)
    if not link_url:
        return await qs.exists()
    for activity in await qs:
        if link_url in str((activity.metadata or {}).get("url") or ""):
            return True
    return False


async def _has_purchase(
    store_id: str | None,
    customer_email: str,
    product_id: str | None = None,
    course_id: str | None = None,
) -> bool:
    qs = Purchase.filter(customer_email=customer_email.lower(), status="completed")
    if store_id:
        qs = qs.filter(store_id=store_id)
    if product_id:
        qs = qs.filter(product_id=str(product_id))
    if course_id:
        qs = qs.filter(course_id=str(course_id))
    return await qs.exists()


def _has_tag(contact: Contact | None, tag: Any) -> bool:
    if contact is None or not tag:
        return False
    wanted = _text(tag)
    return any(_text(t) == wanted for t in contact.tags or [])


async def evaluate_condition_type(
    condition_type: str,
    data: Mapping[str, Any],
    *,
    contact: Contact | None,
    store_id: str | None,
    customer_email: str,
    now: datetime | None = None,
) -> bool:
    """Typed workflow conditions stored as ``conditionType`` on a node."""
    now = now or _now()
    if condition_type == "opened_email":
        return await _has_activity(contact, "email_opened")
    if condition_type == "clicked_link":
        return await _has_activity(contact, "email_clicked", data.get("linkUrl"))
    if condition_type == "has_tag":
        return _has_tag(contact, data.get("tagName") or data.get("value"))
    if condition_type == "has_purchased_product":
        return await _has_purchase(store_id, customer_email, data.get("productId"), data.get("courseId"))
    if condition_type == "time_based":
        if contact is None:
            return False
        attrs = contact_attributes(contact, now=now)
        field = data.get("timeField") or "subscribedAt"
        value = attrs.get(field)
        if not isinstance(value, datetime):
            return False
        days = _days_since(value, now)
        target = _as_number(data.get("timeDays")) or 0
        operator = data.get("timeOperator") or "greater_than"
        if operator == "greater_than":
            return days > target
        if operator == "less_than":
            return days < target
        if operator == "equals":
            return days == target
        return False

    logger.info("Unknown condition type %r, treating as true", condition_type)
    return True


async def check_goal(
    goal_type: str,
    goal_value: Any,
    *,
    contact: Contact | None,
    store_id: str | None,
    customer_email: str,
) -> bool:
    if goal_type == "has_purchased":
        return await _has_purchase(store_id, customer_email, goal_value or None)
    if goal_type == "has_opened_email":
        return await _has_activity(contact, "email_opened")
    if goal_type == "has_clicked_link":
        return await _has_activity(contact, "email_clicked")
    if goal_type == "tag_applied":
        return _has_tag(contact, goal_value)
    return False
