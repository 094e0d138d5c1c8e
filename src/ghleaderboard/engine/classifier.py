from __future__ import annotations

import logging
import re
from typing import Any, Mapping

from pydantic import ValidationError

from ghleaderboard.core.errors import MalformedEvent
from ghleaderboard.core.models import (
    CATEGORY_KIND,
    DEFAULT_POINTS,
    ActivityKind,
    ClassifiedEvent,
    EventCategory,
    RawActor,
    RawEvent,
    ensure_utc,
)

logger = logging.getLogger("Classifier")

HUMAN_ACCOUNT_TYPE = "User"
BOT_LOGIN_SUFFIX = "[bot]"

_BRACKETS = re.compile(r"[\[\]]")
_WHITESPACE = re.compile(r"\s+")


def is_bot_user(user: RawActor | None) -> bool:
    """True for anything that should not earn points: bots, apps, deleted accounts."""
    if user is None or not user.login:
        return True
    if user.type and user.type != HUMAN_ACCOUNT_TYPE:
        return True
    return user.login.lower().endswith(BOT_LOGIN_SUFFIX)


def sanitize_title(title: str | None) -> str | None:
    """Strip characters that collide with downstream template delimiters."""
    if not title:
        return None
    cleaned = _BRACKETS.sub("", title).replace(":", " - ")
    cleaned = _WHITESPACE.sub(" ", cleaned).strip()
    return cleaned or None


class ActivityClassifier:
    def __init__(self, points: Mapping[ActivityKind, int] | None = None) -> None:
        self._points = {**DEFAULT_POINTS, **(points or {})}

    def classify(self, category: EventCategory, item: dict[str, Any]) -> ClassifiedEvent | None:
        try:
            return self._classify(category, item)
        except MalformedEvent as exc:
            logger.debug(
                "Skipping malformed search result",
                extra={"category": category.value, "reason": str(exc), "url": _safe_url(item)},
            )
            return None

    def _classify(self, category: EventCategory, item: dict[str, Any]) -> ClassifiedEvent | None:
        try:
            raw = RawEvent.model_validate(item)
        except ValidationError as exc:
            raise MalformedEvent(f"{exc.error_count()} validation error(s)") from exc
        if is_bot_user(raw.user):
            return None

        kind = CATEGORY_KIND[category]
        if category == EventCategory.PR_MERGED:
            merged_at = raw.pull_request.merged_at if raw.pull_request else None
            occurred_at = merged_at or raw.closed_at
            if occurred_at is None:
                raise MalformedEvent("merged pull request without merge or close timestamp")
        else:
            occurred_at = raw.created_at

        identity = raw.id if raw.id is not None else raw.html_url
        if identity is None:
            raise MalformedEvent("search result has neither id nor html_url")

        return ClassifiedEvent(
            key=(category.value, str(identity)),
            username=raw.user.login,
            name=raw.user.name,
            avatar_url=raw.user.avatar_url,
            kind=kind,
            occurred_at=ensure_utc(occurred_at),
            title=sanitize_title(raw.title),
            link=raw.html_url,
            points=self._points[kind],
        )


def _safe_url(item: Any) -> str | None:
    if isinstance(item, dict):
        url = item.get("html_url")
        return url if isinstance(url, str) else None
    return None
