from __future__ import annotations

import re
import uuid
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr
from typing import Callable, Iterable

import boto3
from botocore.config import Config as BotoConfig

PLACEHOLDER_REGEX = re.compile(r"\{\{\s*(\w+)\s*\}\}")
HREF_REGEX = re.compile(r"""href=(["'])(https?://[^"']+)\1""", re.IGNORECASE)


def ses_client(region: str, timeout: float):
    return boto3.client(
        "ses",
        region_name=region,
        config=BotoConfig(connect_timeout=timeout, read_timeout=timeout, retries={"max_attempts": 1}),
    )


def _build_message_id(domain: str | None) -> str:
    safe_domain = domain or "mail.local"
    return f"<{uuid.uuid4().hex}@{safe_domain}>"


def normalize_subject(subject: str | None, fallback: str = "A quick update") -> str:
    if not subject:
        return fallback
    trimmed = subject.strip()
    return trimmed or fallback


def personalize(text: str, values: dict[str, str]) -> str:
    """Fill ``{{firstName}}`` style placeholders; unknown placeholders are left as-is."""

    def _sub(match: re.Match) -> str:
        key = match.group(1)
        return values.get(key, match.group(0))

    return PLACEHOLDER_REGEX.sub(_sub, text)


def html_to_text(html: str) -> str:
    text = re.sub(r"<br\s*/?>", "\n", html, flags=re.IGNORECASE)
    text = re.sub(r"</p\s*>", "\n\n", text, flags=re.IGNORECASE)
    text = re.sub(r"<[^>]+>", "", text)
    return re.sub(r"\n{3,}", "\n\n", text).strip()


def rewrite_links(html: str, wrap: Callable[[str], str], skip: Iterable[str] = ()) -> str:
    """Point every http(s) href through ``wrap``, leaving ``skip`` urls untouched."""
    skipped = set(skip)

    def _sub(match: re.Match) -> str:
        quote, url = match.group(1), match.group(2)
        if url in skipped or "/unsubscribe/" in url:
            return match.group(0)
        return f"href={quote}{wrap(url)}{quote}"

    return HREF_REGEX.sub(_sub, html)


def decorate_html(
    html: str,
    *,
    preview_text: str | None,
    unsubscribe_url: str,
    pixel_url: str | None,
    link_wrapper: Callable[[str], str] | None = None,
) -> str:
    if link_wrapper:
        html = rewrite_links(html, link_wrapper, skip=[unsubscribe_url])
    if preview_text:
        html = f'<div style="display:none;max-height:0;overflow:hidden;">{preview_text}</div>{html}'
    if "unsubscribe" not in html.lower():
        html += (
            '<div style="margin-top:20px;padding-top:20px;border-top:1px solid #eee;font-size:12px;color:#666;">'
            f'<a href="{unsubscribe_url}" style="color:#666;">Unsubscribe</a></div>'
        )
    if pixel_url:
        html += f'<img src="{pixel_url}" alt="" width="1" height="1" style="display:none;" />'
    return html


def build_raw_email(
    *,
    from_email: str,
    from_name: str | None,
    to_email: str,
    subject: str,
    text_body: str,
    html_body: str | None,
    reply_to: str | None = None,
    list_unsubscribe: str | None = None,
    message_id: str | None = None,
) -> tuple[bytes, str]:
    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["From"] = formataddr((from_name or "", from_email))
    msg["To"] = to_email
    if reply_to:
        msg["Reply-To"] = reply_to
    if list_unsubscribe:
        msg["List-Unsubscribe"] = f"<{list_unsubscribe}>"
        msg["List-Unsubscribe-Post"] = "List-Unsubscribe=One-Click"

    header_message_id = message_id or _build_message_id(from_email.split("@")[-1] if "@" in from_email else None)
    msg["Message-ID"] = header_message_id

    msg.attach(MIMEText(text_body, "plain", "utf-8"))
    if html_body:
        msg.attach(MIMEText(html_body, "html", "utf-8"))

    return msg.as_bytes(), header_message_id


def send_raw_email(
    client,
    *,
    raw_bytes: bytes,
    source: str,
    to_email: str,
    configuration_set: str | None = None,
) -> str:
    payload = {
        "Source": source,
        "Destinations": [to_email],
        "RawMessage": {"Data": raw_bytes},
    }
    if configuration_set:
        payload["ConfigurationSetName"] = configuration_set
    response = client.send_raw_email(**payload)
    return response.get("MessageId") or ""
