from __future__ import annotations

from typing import Iterable

from openai import AsyncOpenAI

from config import Config
from models import ChatHistory, User

DEFAULT_MODEL = Config.OPENAI_MODEL

SYSTEM_SUFFIX = (
    "You are replying to an Instagram direct message on behalf of a creator. "
    "Keep replies short, friendly and conversational. Never invent prices, links or facts."
)


def get_openai_client(api_key: str | None = None, base_url: str | None = None) -> AsyncOpenAI:
    api_key = api_key or Config.OPENAI_API_KEY
    if not api_key:
        raise RuntimeError("OPENAI_API_KEY not configured")
    return AsyncOpenAI(api_key=api_key, base_url=base_url or Config.OPENAI_BASE_URL)


def is_entitled(user: User | None, plans: Iterable[str] | None = None) -> bool:
    if user is None:
        return False
    allowed = {p.lower() for p in (plans if plans is not None else Config.SMART_AI_PLANS)}
    return (user.plan or "").lower() in allowed


def build_chat_messages(prompt: str, history: Iterable[ChatHistory], text: str) -> list[dict[str, str]]:
    system = f"{prompt.strip()}\n\n{SYSTEM_SUFFIX}" if prompt and prompt.strip() else SYSTEM_SUFFIX
    messages = [{"role": "system", "content": system}]
    for turn in history:
        role = "assistant" if turn.role == "assistant" else "user"
        messages.append({"role": role, "content": turn.message})
    messages.append({"role": "user", "content": text})
    return messages


async def generate_reply(client: AsyncOpenAI, messages: list[dict[str, str]], model: str | None = None) -> str:
    completion = await client.chat.completions.create(
        model=model or DEFAULT_MODEL,
        messages=messages,  # type: ignore[arg-type]
        temperature=0.7,
        max_tokens=300,
    )
    content = (completion.choices[0].message.content or "").strip()
    if not content:
        raise ValueError("Empty response from model")
    return content
