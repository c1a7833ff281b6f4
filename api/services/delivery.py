from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Protocol

import httpx
from botocore.exceptions import BotoCoreError, ClientError

from config import Config
from models import EmailTemplate
from services.email_sender import (
    build_raw_email,
    decorate_html,
    html_to_text,
    normalize_subject,
    personalize,
    send_raw_email,
    ses_client,
)
from services.tracking import build_click_url, build_contact_token, build_open_pixel_url, build_unsubscribe_url

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeliveryResult:
    ok: bool
    reason: str | None = None
    external_id: str | None = None

    @classmethod
    def success(cls, external_id: str | None = None) -> "DeliveryResult":
        return cls(ok=True, external_id=external_id)

    @classmethod
    def failed(cls, reason: str) -> "DeliveryResult":
        return cls(ok=False, reason=reason)


@dataclass(frozen=True)
class Recipient:
    email: str
    first_name: str | None = None
    last_name: str | None = None
    contact_id: int | None = None

    @property
    def display_first_name(self) -> str:
        return self.first_name or self.email.split("@")[0]

    @property
    def full_name(self) -> str:
        return f"{self.display_first_name} {self.last_name or ''}".strip()


class DeliveryAdapters(Protocol):
    async def send_templated_email(self, template_id: int | str, recipient: Recipient) -> DeliveryResult: ...

    async def send_custom_email(self, subject: str, content: str, recipient: Recipient) -> DeliveryResult: ...

    async def post_webhook(self, url: str, payload: dict[str, Any]) -> DeliveryResult: ...

    async def send_direct_message(self, access_token: str, recipient_id: str, text: str) -> DeliveryResult: ...

    async def post_comment_reply(self, access_token: str, comment_id: str, text: str) -> DeliveryResult: ...

    async def send_notification(self, to: str, subject: str, message: str) -> DeliveryResult: ...


def _json_body(response: httpx.Response) -> dict:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def _graph_error(response: httpx.Response) -> str:
    message = (_json_body(response).get("error") or {}).get("message")
    return f"HTTP {response.status_code}: {message or response.reason_phrase}"


class LiveDelivery:
    """SES for email, httpx for webhooks and the Instagram Graph API."""

    def __init__(
        self,
        http: httpx.AsyncClient | None = None,
        ses=None,
        *,
        timeout: float | None = None,
        graph_base: str | None = None,
        from_email: str | None = None,
        from_name: str | None = None,
        configuration_set: str | None = None,
    ):
        self.timeout = timeout if timeout is not None else Config.DELIVERY_TIMEOUT_SECONDS
        self.graph_base = (graph_base or Config.GRAPH_API_BASE).rstrip("/")
        self.from_email = from_email or Config.FROM_EMAIL
        self.from_name = from_name or Config.FROM_NAME
        self.configuration_set = configuration_set or Config.SES_CONFIGURATION_SET
        self._http = http
        self._owns_http = http is None
        self._ses = ses

    @property
    def http(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=self.timeout)
        return self._http

    @property
    def ses(self):
        if self._ses is None:
            self._ses = ses_client(Config.AWS_REGION, self.timeout)
        return self._ses

    async def aclose(self) -> None:
        if self._http is not None and self._owns_http:
            await self._http.aclose()
            self._http = None

    async def _send_raw(self, *, to_email: str, subject: str, text_body: str, html_body: str | None, unsubscribe_url: str | None) -> DeliveryResult:
        raw_bytes, _ = build_raw_email(
            from_email=self.from_email,
            from_name=self.from_name,
            to_email=to_email,
            subject=subject,
            text_body=text_body,
            html_body=html_body,
            list_unsubscribe=unsubscribe_url,
        )
        try:
            message_id = await asyncio.wait_for(
                asyncio.to_thread(
                    send_raw_email,
                    self.ses,
                    raw_bytes=raw_bytes,
                    source=self.from_email,
                    to_email=to_email,
                    configuration_set=self.configuration_set,
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            return DeliveryResult.failed(f"SES send timed out after {self.timeout}s")
        except (BotoCoreError, ClientError) as exc:
            return DeliveryResult.failed(f"SES error: {exc}")
        return DeliveryResult.success(message_id)

    async def send_templated_email(self, template_id: int | str, recipient: Recipient) -> DeliveryResult:
        try:
            template = await EmailTemplate.get_or_none(id=int(template_id))
        except (TypeError, ValueError):
            template = None
        if template is None:
            logger.warning("Email template %s not found for %s", template_id, recipient.email)
            return DeliveryResult.failed(f"template {template_id} not found")

        html = template.html_content or template.body or ""
        if not html.strip():
            return DeliveryResult.failed(f"template {template_id} has no content")
        return await self._compose(
            recipient,
            subject=template.subject,
            html=html,
            text=template.body,
            preview_text=template.preview_text,
        )

    async def send_custom_email(self, subject: str, content: str, recipient: Recipient) -> DeliveryResult:
        if not (content or "").strip():
            return DeliveryResult.failed("custom email has no content")
        if "<" not in content:
            # Plain text from the editor; keep its line breaks.
            html = "".join(f"<p>{line}</p>" for line in content.split("\n\n"))
            return await self._compose(recipient, subject=subject, html=html.replace("\n", "<br>"), text=content)
        return await self._compose(recipient, subject=subject, html=content, text=None)

    async def _compose(
        self,
        recipient: Recipient,
        *,
        subject: str | None,
        html: str,
        text: str | None,
        preview_text: str | None = None,
    ) -> DeliveryResult:
        try:
            token = build_contact_token(recipient.contact_id, recipient.email)
        except RuntimeError as exc:
            return DeliveryResult.failed(str(exc))
        unsubscribe_url = build_unsubscribe_url(token)
        values = {
            "firstName": recipient.display_first_name,
            "first_name": recipient.display_first_name,
            "name": recipient.full_name or "there",
            "email": recipient.email,
            "unsubscribeLink": unsubscribe_url,
            "unsubscribe_link": unsubscribe_url,
        }
        html = decorate_html(
            personalize(html, values),
            preview_text=preview_text,
            unsubscribe_url=unsubscribe_url,
            pixel_url=build_open_pixel_url(token),
            link_wrapper=lambda url: build_click_url(token, url),
        )
        text_body = personalize(text, values) if text else html_to_text(html)
        return await self._send_raw(
            to_email=recipient.email,
            subject=personalize(normalize_subject(subject), values),
            text_body=text_body,
            html_body=html,
            unsubscribe_url=unsubscribe_url,
        )

    async def send_notification(self, to: str, subject: str, message: str) -> DeliveryResult:
        html = f'<pre style="font-family: sans-serif; white-space: pre-wrap;">{message}</pre>'
        return await self._send_raw(to_email=to, subject=subject, text_body=message, html_body=html, unsubscribe_url=None)

    async def post_webhook(self, url: str, payload: dict[str, Any]) -> DeliveryResult:
        try:
            response = await self.http.post(url, json=payload, timeout=self.timeout)
        except httpx.HTTPError as exc:
            return DeliveryResult.failed(f"{type(exc).__name__}: {exc}")
        if response.is_success:
            return DeliveryResult.success()
        return DeliveryResult.failed(f"HTTP {response.status_code}: {response.reason_phrase}")

    async def send_direct_message(self, access_token: str, recipient_id: str, text: str) -> DeliveryResult:
        try:
            response = await self.http.post(
                f"{self.graph_base}/me/messages",
                params={"access_token": access_token},
                json={"recipient": {"id": recipient_id}, "message": {"text": text}},
                timeout=self.timeout,
            )
        except httpx.HTTPError as exc:
            return DeliveryResult.failed(f"{type(exc).__name__}: {exc}")
        if not response.is_success:
            return DeliveryResult.failed(_graph_error(response))
        return DeliveryResult.success(_json_body(response).get("message_id"))

    async def post_comment_reply(self, access_token: str, comment_id: str, text: str) -> DeliveryResult:
        try:
            response = await self.http.post(
                f"{self.graph_base}/{comment_id}/replies",
                params={"access_token": access_token, "message": text},
                timeout=self.timeout,
            )
        except httpx.HTTPError as exc:
            return DeliveryResult.failed(f"{type(exc).__name__}: {exc}")
        if not response.is_success:
            return DeliveryResult.failed(_graph_error(response))
        return DeliveryResult.success(_json_body(response).get("id"))
