"""
Exercise catalog client — read-only, best-effort.

Service: the exercises service of the wellbeing backend
  GET {base_url}/exercises?category=<category>&limit=<n>
  → {"exercises": [{"_id": "...", "title": "...", "duration_seconds": 300, ...}]}

The recommendation selector uses at most one item per prediction to attach a
concrete exercise to a recommendation.  Every failure mode (timeout,
connection error, non-2xx, malformed payload) surfaces as
``CatalogUnavailableError`` so callers have exactly one exception to contain.

Timeouts are short (``CatalogConfig.timeout_seconds``, default 2 s): a slow
catalog must never delay a prediction noticeably.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional, Protocol

import httpx

from stress_forecaster.errors import CatalogUnavailableError

logger = logging.getLogger(__name__)


# ── Response types ─────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class CatalogItem:
    """One exercise returned by the catalog."""

    exercise_id: str
    title: str
    category: str
    duration_seconds: Optional[int] = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any], category: str) -> "CatalogItem":
        """Parse one ``exercises[]`` element.

        Raises:
            KeyError / ValueError: If required fields are missing or invalid.
        """
        exercise_id = payload.get("_id") or payload["id"]
        title = str(payload["title"]).strip()
        if not title:
            raise ValueError("Catalog item has an empty title.")
        duration = payload.get("duration_seconds")
        return cls(
            exercise_id=str(exercise_id),
            title=title,
            category=str(payload.get("category") or category),
            duration_seconds=int(duration) if duration is not None else None,
        )


class CatalogClient(Protocol):
    """Interface consumed by the recommendation selector."""

    def fetch_items(self, category: str, limit: int) -> list[CatalogItem]:
        ...


# ── Client ─────────────────────────────────────────────────────────────────────

class HttpCatalogClient:
    """httpx-backed ``CatalogClient``.

    Usage::

        client = HttpCatalogClient("http://localhost:3004", timeout_seconds=2.0)
        items = client.fetch_items("breathing", limit=2)

    Attributes:
        base_url:        Service root, without trailing slash.
        timeout_seconds: Per-request timeout (connect + read).
    """

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = 2.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.base_url        = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self._transport      = transport

    def fetch_items(self, category: str, limit: int) -> list[CatalogItem]:
        """Fetch up to ``limit`` exercises in ``category``.

        Raises:
            CatalogUnavailableError: On timeout, transport error, non-2xx
                status or a malformed payload.
        """
        try:
            with httpx.Client(timeout=self.timeout_seconds, transport=self._transport) as client:
                resp = client.get(
                    f"{self.base_url}/exercises",
                    params={"category": category, "limit": limit},
                )
                resp.raise_for_status()
                payload = resp.json()
        except httpx.TimeoutException as exc:
            raise CatalogUnavailableError(category, f"timeout after {self.timeout_seconds}s") from exc
        except httpx.HTTPError as exc:
            raise CatalogUnavailableError(category, str(exc)) from exc
        except ValueError as exc:
            raise CatalogUnavailableError(category, f"invalid JSON: {exc}") from exc

        raw_items = payload.get("exercises") if isinstance(payload, dict) else None
        if not isinstance(raw_items, list):
            raise CatalogUnavailableError(category, "response has no 'exercises' list")

        items: list[CatalogItem] = []
        for raw in raw_items[:limit]:
            try:
                items.append(CatalogItem.from_payload(raw, category))
            except (KeyError, TypeError, ValueError, AttributeError) as exc:
                logger.warning("Skipping malformed catalog item: %s", exc)

        logger.debug("Catalog returned %d item(s) for category=%s", len(items), category)
        return items
