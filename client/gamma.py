"""
Gamma API catalog client for Up/Down market lookup by slug. Pure REST, no SDK dependency.
One round trip per lookup, no caching, no retries (retry policy belongs to the scheduler).
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any

import httpx

logger = logging.getLogger(__name__)

_TIMEOUT = 5.0


class CatalogError(Exception):
    """Raised on timeout, non-success status, or malformed catalog response."""
    pass


@dataclass(frozen=True)
class CatalogMarket:
    """Market record as returned by GET /markets?slug=..."""
    id: int
    question: str
    slug: str
    clob_token_ids: tuple[str, ...]
    active: bool
    closed: bool
    accepting_orders: bool
    start_date: str = ""
    end_date: str = ""
    outcomes: tuple[str, ...] = ()

    @property
    def is_tradeable(self) -> bool:
        return self.active and not self.closed and self.accepting_orders

    @property
    def token_pair(self) -> tuple[str, str] | None:
        """(yes, no) token ids when exactly two distinct ids are present."""
        if len(self.clob_token_ids) != 2:
            return None
        yes, no = self.clob_token_ids
        if not yes or not no or yes == no:
            return None
        return yes, no


def _json_string_list(raw: Any, field_name: str) -> tuple[str, ...]:
    """Accept a list or a JSON-encoded string list (Gamma sends both)."""
    if raw is None:
        return ()
    if isinstance(raw, str):
        if not raw:
            return ()
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as e:
            raise CatalogError(f"{field_name} is not valid JSON: {raw[:80]!r}") from e
    if not isinstance(raw, list):
        raise CatalogError(f"{field_name} must be a list, got {type(raw).__name__}")
    return tuple(str(x) for x in raw)


def _int_id(raw: Any) -> int:
    """Market id arrives as a number or a numeric string."""
    if isinstance(raw, bool):
        raise CatalogError(f"invalid market id: {raw!r}")
    try:
        return int(raw)
    except (TypeError, ValueError) as e:
        raise CatalogError(f"invalid market id: {raw!r}") from e


def parse_market(raw: dict) -> CatalogMarket:
    """Convert one Gamma market object into a CatalogMarket. Raises CatalogError if malformed."""
    if not isinstance(raw, dict):
        raise CatalogError(f"market entry must be an object, got {type(raw).__name__}")
    try:
        question = raw["question"]
        slug = raw["slug"]
    except KeyError as e:
        raise CatalogError(f"market missing field {e}") from e

    return CatalogMarket(
        id=_int_id(raw.get("id")),
        question=str(question),
        slug=str(slug),
        clob_token_ids=_json_string_list(raw.get("clobTokenIds"), "clobTokenIds"),
        # Missing flags are treated as "not tradeable"
        active=bool(raw.get("active", False)),
        closed=bool(raw.get("closed", True)),
        accepting_orders=bool(raw.get("acceptingOrders", False)),
        start_date=str(raw.get("startDate") or ""),
        end_date=str(raw.get("endDate") or ""),
        outcomes=_json_string_list(raw.get("outcomes"), "outcomes"),
    )


class GammaCatalog:
    """Async Gamma client. Share one instance; it owns a pooled httpx.AsyncClient."""

    def __init__(
        self,
        gamma_host: str = "https://gamma-api.polymarket.com",
        timeout: float = _TIMEOUT,
        http: httpx.AsyncClient | None = None,
    ):
        self._host = gamma_host.rstrip("/")
        self._http = http or httpx.AsyncClient(timeout=timeout)

    async def lookup(self, slug: str) -> CatalogMarket | None:
        """
        Fetch the market for slug. Returns None if the catalog has no such market.
        Raises CatalogError on timeout, non-2xx status or malformed body.
        """
        url = f"{self._host}/markets"
        try:
            resp = await self._http.get(url, params={"slug": slug})
            resp.raise_for_status()
            data = resp.json()
        except httpx.TimeoutException as e:
            raise CatalogError(f"timeout looking up {slug}") from e
        except httpx.HTTPStatusError as e:
            raise CatalogError(f"HTTP {e.response.status_code} looking up {slug}") from e
        except httpx.HTTPError as e:
            raise CatalogError(f"request failed for {slug}: {e}") from e
        except ValueError as e:
            raise CatalogError(f"non-JSON body for {slug}") from e

        if not isinstance(data, list):
            raise CatalogError(f"expected JSON array for {slug}, got {type(data).__name__}")
        if not data:
            return None
        return parse_market(data[0])

    async def aclose(self) -> None:
        await self._http.aclose()
