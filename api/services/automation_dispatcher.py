from __future__ import annotations

import asyncio
import logging
import weakref
from dataclasses import dataclass
from typing import Any

from openai import AsyncOpenAI
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from tortoise.expressions import F

from config import Config
from models import (
    Automation,
    AutomationListener,
    AutomationPost,
    AutomationTrigger,
    ChatHistory,
    SocialIntegration,
    User,
)
from services.delivery import DeliveryAdapters
from services.keyword_index import KeywordIndex, keyword_index
from services.smart_ai import build_chat_messages, generate_reply, get_openai_client, is_entitled

logger = logging.getLogger(__name__)

ALL_POSTS = "ALL_POSTS_AND_FUTURE"
DM = "DM"
COMMENT = "COMMENT"


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True, coerce_numbers_to_str=True)


class _Ref(_Payload):
    id: str


class _Message(_Payload):
    mid: str | None = None
    text: str | None = None
    is_echo: bool = False


class MessagingEvent(_Payload):
    sender: _Ref
    recipient: _Ref | None = None
    message: _Message | None = None


class CommentValue(_Payload):
    id: str | None = None
    text: str | None = None
    from_: _Ref = Field(alias="from")
    media: _Ref | None = None


class ChangeEvent(_Payload):
    field: str | None = None
    value: CommentValue


class Entry(_Payload):
    id: str | None = None
    messaging: list[MessagingEvent] = Field(default_factory=list)
    changes: list[ChangeEvent] = Field(default_factory=list)


class WebhookEnvelope(_Payload):
    object: str | None = None
    entry: list[Entry]


@dataclass(frozen=True)
class InboundEvent:
    kind: str
    sender_id: str
    text: str
    account_id: str | None = None
    media_id: str | None = None
    comment_id: str | None = None


def _from_messaging(event: MessagingEvent, account_id: str | None) -> InboundEvent | None:
    message = event.message
    if message is None or message.is_echo or not (message.text or "").strip():
        return None
    account_id = event.recipient.id if event.recipient else account_id
    if account_id and event.sender.id == account_id:
        return None
    return InboundEvent(kind=DM, sender_id=event.sender.id, text=message.text or "", account_id=account_id)


def _from_change(change: ChangeEvent, account_id: str | None) -> InboundEvent | None:
    if change.field not in (None, "comments"):
        return None
    value = change.value
    if not (value.text or "").strip():
        return None
    if account_id and value.from_.id == account_id:
        return None
    return InboundEvent(
        kind=COMMENT,
        sender_id=value.from_.id,
        text=value.text or "",
        account_id=account_id,
        media_id=value.media.id if value.media else None,
        comment_id=value.id,
    )


def parse_inbound_events(payload: Any) -> list[InboundEvent]:
    """Normalise an Instagram webhook body into DM and comment events.

    Accepts the full ``{"object", "entry": [...]}`` envelope, a bare messaging
    event or a bare comment change. Echoes and the account's own messages are
    dropped. Raises ``ValueError`` (or ``ValidationError``) for anything else.
    """
    if not isinstance(payload, dict):
        raise ValueError("webhook payload must be a JSON object")
    events: list[InboundEvent | None] = []
    if "entry" in payload:
        envelope = WebhookEnvelope.model_validate(payload)
        for entry in envelope.entry:
            events.extend(_from_messaging(m, entry.id) for m in entry.messaging)
            events.extend(_from_change(c, entry.id) for c in entry.changes)
    elif "sender" in payload:
        events.append(_from_messaging(MessagingEvent.model_validate(payload), None))
    elif "value" in payload:
        events.append(_from_change(ChangeEvent.model_validate(payload), None))
    else:
        raise ValueError("unrecognised webhook payload")
    return [event for event in events if event is not None]


class AutomationDispatcher:
    """Routes inbound Instagram comments and DMs to keyword automations."""

    def __init__(
        self,
        delivery: DeliveryAdapters,
        ai_client: AsyncOpenAI | None = None,
        *,
        index: KeywordIndex | None = None,
        model: str | None = None,
        smart_ai_plans: set[str] | None = None,
        upsell_message: str | None = None,
    ):
        self.delivery = delivery
        self._ai_client = ai_client
        self.index = index or keyword_index
        self.model = model or Config.OPENAI_MODEL
        self.smart_ai_plans = smart_ai_plans if smart_ai_plans is not None else Config.SMART_AI_PLANS
        self.upsell_message = upsell_message or Config.SMART_AI_UPSELL_MESSAGE
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    @property
    def ai_client(self) -> AsyncOpenAI:
        if self._ai_client is None:
            self._ai_client = get_openai_client()
        return self._ai_client

    def _lock_for(self, sender_id: str) -> asyncio.Lock:
        lock = self._locks.get(sender_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[sender_id] = lock
        return lock

    async def handle_inbound_event(self, payload: Any) -> None:
        try:
            events = parse_inbound_events(payload)
        except (ValidationError, ValueError) as exc:
            logger.info("Dropping malformed webhook payload: %s", exc)
            return
        for event in events:
            try:
                await self.dispatch(event)
            except Exception:
                logger.exception("Automation dispatch failed for %s from %s", event.kind, event.sender_id)

    async def dispatch(self, event: InboundEvent) -> None:
        async with self._lock_for(event.sender_id):
            automation_id = await self.index.match(event.text, event.account_id)
            if automation_id is None:
                if event.kind == DM:
                    await self._continue_conversation(event)
                else:
                    logger.info("No automation keyword in comment %s", event.comment_id)
                return

            automation = await Automation.get_or_none(id=automation_id, active=True)
            if automation is None:
                # Stale entry; the automation was deleted or paused.
                self.index.invalidate()
                return
            if not await self._applies(automation, event):
                logger.info("Automation %s does not apply to %s on %s", automation.id, event.kind, event.media_id)
                return
            listener = await AutomationListener.filter(automation=automation).first()
            if listener is None:
                logger.info("Automation %s has no listener configured", automation.id)
                return
            await self._respond(automation, listener, event)

    async def _applies(self, automation: Automation, event: InboundEvent) -> bool:
        trigger_types = set(await AutomationTrigger.filter(automation=automation).values_list("type", flat=True))
        if event.kind not in trigger_types:
            return False
        if event.kind == COMMENT:
            post_ids = [ALL_POSTS] + ([event.media_id] if event.media_id else [])
            return await AutomationPost.filter(automation=automation, post_id__in=post_ids).exists()
        return True

    async def _integration(self, automation: Automation, account_id: str | None) -> SocialIntegration | None:
        qs = SocialIntegration.filter(
            user_id=automation.user_id,  # type: ignore[attr-defined]
            platform="instagram",
            is_connected=True,
        )
        if account_id:
            qs = qs.filter(platform_user_id=account_id)
        return await qs.first()

    async def _continue_conversation(self, event: InboundEvent) -> None:
        qs = ChatHistory.filter(sender_id=event.sender_id)
        if event.account_id:
            qs = qs.filter(receiver_id=event.account_id)
        latest = await qs.order_by("-id").first()
        if latest is None:
            logger.info("No automation keyword or conversation for DM from %s", event.sender_id)
            return
        automation = await Automation.get_or_none(id=latest.automation_id, active=True)  # type: ignore[attr-defined]
        if automation is None:
            return
        listener = await AutomationListener.filter(automation=automation).first()
        if listener is None or listener.listener != "SMART_AI":
            return
        await self._respond(automation, listener, event)

    async def _respond(self, automation: Automation, listener: AutomationListener, event: InboundEvent) -> None:
        integration = await self._integration(automation, event.account_id)
        if integration is None:
            logger.info("Automation %s owner has no connected Instagram account %s", automation.id, event.account_id)
            return
        if listener.listener == "SMART_AI":
            await self._smart_ai(automation, listener, integration, event)
        else:
            await self._message(listener, integration, event)

    async def _record_response(self, listener: AutomationListener, event: InboundEvent) -> None:
        counter = "comment_count" if event.kind == COMMENT else "dm_count"
        await AutomationListener.filter(id=listener.id).update(**{counter: F(counter) + 1})

    async def _message(self, listener: AutomationListener, integration: SocialIntegration, event: InboundEvent) -> None:
        token = integration.access_token
        result = await self.delivery.send_direct_message(token, event.sender_id, listener.prompt)
        if result.ok:
            await self._record_response(listener, event)
        else:
            logger.warning("DM to %s failed: %s", event.sender_id, result.reason)

        if event.kind == COMMENT and listener.comment_reply and event.comment_id:
            reply = await self.delivery.post_comment_reply(token, event.comment_id, listener.comment_reply)
            if not reply.ok:
                logger.warning("Comment reply on %s failed: %s", event.comment_id, reply.reason)

    async def _smart_ai(
        self,
        automation: Automation,
        listener: AutomationListener,
        integration: SocialIntegration,
        event: InboundEvent,
    ) -> None:
        token = integration.access_token
        owner = await User.get_or_none(id=automation.user_id)  # type: ignore[attr-defined]
        if not is_entitled(owner, self.smart_ai_plans):
            result = await self.delivery.send_direct_message(token, event.sender_id, self.upsell_message)
            if not result.ok:
                logger.warning("Upsell DM to %s failed: %s", event.sender_id, result.reason)
            return

        history = await ChatHistory.filter(automation=automation, sender_id=event.sender_id).order_by("id")
        messages = build_chat_messages(listener.prompt, history, event.text)
        reply = await generate_reply(self.ai_client, messages, self.model)

        receiver_id = event.account_id or integration.platform_user_id
        await ChatHistory.create(
            automation=automation,
            sender_id=event.sender_id,
            receiver_id=receiver_id,
            message=event.text,
            role="user",
        )
        await ChatHistory.create(
            automation=automation,
            sender_id=event.sender_id,
            receiver_id=receiver_id,
            message=reply,
            role="assistant",
        )

        result = await self.delivery.send_direct_message(token, event.sender_id, reply)
        if result.ok:
            await self._record_response(listener, event)
        else:
            logger.warning("Smart AI DM to %s failed: %s", event.sender_id, result.reason)
