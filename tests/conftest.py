# tests/conftest.py
"""Shared fixtures: in-memory database runner, fake delivery adapters and a controllable clock."""

import asyncio
import os
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

os.environ.setdefault("ENV", "local")
os.environ.setdefault("UNSUBSCRIBE_SECRET", "test-unsubscribe-secret")

from tortoise import Tortoise, connections  # noqa: E402

from services.delivery import DeliveryResult  # noqa: E402


def run_db(scenario):
    """Run ``scenario()`` against a fresh in-memory SQLite schema."""

    async def _runner():
        await Tortoise.init(db_url="sqlite://:memory:", modules={"models": ["models"]}, use_tz=True)
        await Tortoise.generate_schemas()
        try:
            return await scenario()
        finally:
            await connections.close_all()

    return asyncio.run(_runner())


class FakeClock:
    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 1, 5, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class FakeDelivery:
    """Records every outbound call; results are popped from per-channel queues (success when empty)."""

    def __init__(self):
        self.emails: list[tuple] = []
        self.custom_emails: list[tuple] = []
        self.webhooks: list[tuple] = []
        self.direct_messages: list[tuple] = []
        self.comment_replies: list[tuple] = []
        self.notifications: list[tuple] = []
        self.email_results: list[DeliveryResult] = []
        self.webhook_results: list[DeliveryResult] = []
        self.dm_results: list[DeliveryResult] = []

    @staticmethod
    def _next(queue: list[DeliveryResult]) -> DeliveryResult:
        return queue.pop(0) if queue else DeliveryResult.success()

    async def send_templated_email(self, template_id, recipient):
        self.emails.append((template_id, recipient.email))
        return self._next(self.email_results)

    async def send_custom_email(self, subject, content, recipient):
        self.custom_emails.append((subject, content, recipient.email))
        return self._next(self.email_results)

    async def post_webhook(self, url, payload):
        self.webhooks.append((url, payload))
        return self._next(self.webhook_results)

    async def send_direct_message(self, access_token, recipient_id, text):
        self.direct_messages.append((access_token, recipient_id, text))
        return self._next(self.dm_results)

    async def post_comment_reply(self, access_token, comment_id, text):
        self.comment_replies.append((access_token, comment_id, text))
        return DeliveryResult.success()

    async def send_notification(self, to, subject, message):
        self.notifications.append((to, subject, message))
        return DeliveryResult.success()


class _FakeCompletions:
    def __init__(self, replies):
        self.replies = list(replies)
        self.calls: list[dict] = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        content = self.replies.pop(0) if self.replies else "Happy to help!"
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


class FakeOpenAI:
    def __init__(self, replies=()):
        self.completions = _FakeCompletions(replies)
        self.chat = SimpleNamespace(completions=self.completions)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def delivery() -> FakeDelivery:
    return FakeDelivery()
