from __future__ import annotations

import asyncio
import logging
import re
import time
from typing import Callable

from config import Config
from models import Automation, AutomationKeyword, SocialIntegration

logger = logging.getLogger(__name__)

_TOKEN = re.compile(r"[\w']+", re.UNICODE)


def tokenize(text: str | None) -> list[str]:
    return _TOKEN.findall((text or "").lower())


def normalize_keyword(word: str | None) -> str:
    return " ".join(tokenize(word))


class KeywordIndex:
    """Per-account keyword -> automation id map over active automations.

    Keywords are scoped to the Instagram account (``platform_user_id``) of the
    automation's owner, so two creators can use the same keyword. The map is
    rebuilt after :meth:`invalidate` (called by the automation API of this
    process) and at least every ``ttl_seconds`` so edits made through another
    instance are picked up.

    A message matches a keyword when the keyword is the whole message or
    appears in it as a whole word or phrase; the longest keyword wins.
    """

    def __init__(self, ttl_seconds: float | None = None, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else Config.KEYWORD_INDEX_TTL_SECONDS
        self._clock = clock
        self._accounts: dict[str, dict[str, int]] | None = None
        self._built_at = 0.0
        self._longest = 0
        self._lock = asyncio.Lock()

    def invalidate(self) -> None:
        self._accounts = None

    def _stale(self) -> bool:
        if self._accounts is None:
            return True
        return self.ttl_seconds > 0 and self._clock() - self._built_at >= self.ttl_seconds

    async def _load(self) -> dict[str, dict[str, int]]:
        owners = dict(await Automation.filter(active=True).values_list("id", "user_id"))
        accounts_by_user: dict[int, list[str]] = {}
        for user_id, account_id in await SocialIntegration.filter(
            platform="instagram", is_connected=True
        ).values_list("user_id", "platform_user_id"):
            accounts_by_user.setdefault(user_id, []).append(account_id)

        rows = await AutomationKeyword.filter(automation_id__in=list(owners)).order_by("id").values_list(
            "word", "automation_id"
        )
        accounts: dict[str, dict[str, int]] = {}
        for word, automation_id in rows:
            key = normalize_keyword(word)
            if not key:
                continue
            for account_id in accounts_by_user.get(owners[automation_id], []):
                words = accounts.setdefault(account_id, {})
                if key in words and words[key] != automation_id:
                    logger.warning(
                        "Keyword %r on account %s is used by automations %s and %s",
                        key,
                        account_id,
                        words[key],
                        automation_id,
                    )
                    continue
                words[key] = automation_id
        return accounts

    async def accounts(self) -> dict[str, dict[str, int]]:
        if self._stale():
            async with self._lock:
                if self._stale():
                    accounts = await self._load()
                    self._longest = max(
                        (len(w.split(" ")) for words in accounts.values() for w in words),
                        default=0,
                    )
                    self._accounts = accounts
                    self._built_at = self._clock()
                    logger.debug("Keyword index rebuilt for %s accounts", len(accounts))
        return self._accounts or {}

    async def match(self, text: str | None, account_id: str | None) -> int | None:
        tokens = tokenize(text)
        if not tokens or not account_id:
            return None
        words = (await self.accounts()).get(account_id)
        if not words:
            return None
        best: str | None = None
        for size in range(min(self._longest, len(tokens)), 0, -1):
            for start in range(len(tokens) - size + 1):
                phrase = " ".join(tokens[start : start + size])
                if phrase in words and (best is None or len(phrase) > len(best)):
                    best = phrase
        return words[best] if best else None


keyword_index = KeywordIndex()
