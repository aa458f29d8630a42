"""
Dome API transport shared by the Polymarket and Kalshi adapters.

Dome aggregates both venues behind one REST surface:
  GET /polymarket/markets, /polymarket/orderbooks?token_id=
  GET /kalshi/markets,     /kalshi/orderbooks?ticker=
Auth is a Bearer API key. Errors map onto the scanner's adapter taxonomy.
"""

from __future__ import annotations

import logging
import math
import random
import time
from typing import Any, Callable

import httpx

from scanner.errors import AdapterTimeout, AdapterUnavailable
from scanner.models import OrderBook, Platform, PriceLevel

logger = logging.getLogger(__name__)

DEFAULT_HOST = "https://api.domeapi.io/v1"
DEFAULT_TIMEOUT = 10.0
PAGE_SIZE = 100
_429_MAX_RETRIES = 3
_429_BACKOFF_SEC = 1.0
_429_JITTER_FRAC = 0.15


class DomeClient:
    """
    Thin httpx wrapper for one platform's slice of the Dome API.

    Retries 429 with exponential backoff (honoring Retry-After), then maps
    timeouts to AdapterTimeout and any other failure to AdapterUnavailable.
    """

    def __init__(
        self,
        platform: Platform,
        api_key: str = "",
        host: str = DEFAULT_HOST,
        timeout: float = DEFAULT_TIMEOUT,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.platform = platform
        self._host = host.rstrip("/")
        headers = {"Accept": "application/json", "Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._http = httpx.Client(timeout=timeout, headers=headers)
        self._sleep = sleep

    def close(self) -> None:
        self._http.close()

    def get(self, path: str, params: dict | None = None, timeout: float | None = None) -> Any:
        """GET {host}/{platform}{path} and return the decoded JSON body."""
        endpoint = f"/{self.platform.value}{path}"
        url = f"{self._host}{endpoint}"
        kwargs: dict[str, Any] = {"params": params}
        if timeout is not None:
            kwargs["timeout"] = timeout

        try:
            for attempt in range(_429_MAX_RETRIES + 1):
                resp = self._http.get(url, **kwargs)
                if resp.status_code != 429 or attempt == _429_MAX_RETRIES:
                    break
                wait = _retry_after(resp) or _429_BACKOFF_SEC * (2 ** attempt)
                wait *= 1.0 + random.uniform(-_429_JITTER_FRAC, _429_JITTER_FRAC)
                logger.warning(
                    "Dome 429 rate limited on %s (attempt %d/%d, waiting %.1fs)",
                    endpoint, attempt + 1, _429_MAX_RETRIES + 1, wait,
                )
                self._sleep(max(0.1, wait))
            resp.raise_for_status()
            return resp.json()
        except httpx.TimeoutException as e:
            raise AdapterTimeout(self.platform, endpoint, f"timed out ({e})") from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            raise AdapterUnavailable(
                self.platform, endpoint, f"HTTP {status}", status_code=status,
            ) from e
        except httpx.TransportError as e:
            raise AdapterUnavailable(self.platform, endpoint, f"transport error: {e}") from e
        except ValueError as e:
            raise AdapterUnavailable(self.platform, endpoint, "malformed JSON body") from e

    def get_paginated(self, path: str, max_items: int, params: dict | None = None) -> list[dict]:
        """
        Offset-paginate a list endpoint up to max_items rows.
        Any page failure propagates: callers never see a partial listing.
        """
        rows: list[dict] = []
        offset = 0
        while len(rows) < max_items:
            page_params = {**(params or {}), "limit": PAGE_SIZE, "offset": offset}
            data = self.get(path, page_params)
            page = _unwrap_list(data, "markets")
            if page is None:
                raise AdapterUnavailable(
                    self.platform, f"/{self.platform.value}{path}", "expected a market list",
                )
            rows.extend(page)
            if len(page) < PAGE_SIZE:
                break
            offset += PAGE_SIZE
        logger.debug("Fetched %d %s rows from %s", len(rows), self.platform.value, path)
        return rows[:max_items]

    def parse_book(self, data: Any, book_id: str, endpoint: str) -> OrderBook:
        """Convert {bids: [{price, size}], asks: [...]} into a sorted OrderBook."""
        if not isinstance(data, dict):
            raise AdapterUnavailable(self.platform, endpoint, "expected an orderbook object")
        book = data.get("orderbook", data)
        try:
            bids = _parse_levels(book.get("bids") or [])
            asks = _parse_levels(book.get("asks") or [])
        except (TypeError, ValueError, KeyError, AttributeError) as e:
            raise AdapterUnavailable(self.platform, endpoint, f"malformed orderbook: {e}") from e
        return OrderBook(
            token_id=book_id,
            bids=tuple(sorted(bids, key=lambda lvl: lvl.price, reverse=True)),
            asks=tuple(sorted(asks, key=lambda lvl: lvl.price)),
        )


def _retry_after(resp: httpx.Response) -> float:
    raw = resp.headers.get("Retry-After")
    if not raw:
        return 0.0
    try:
        return max(0.0, float(raw))
    except ValueError:
        return 0.0


def _unwrap_list(data: Any, key: str) -> list[dict] | None:
    if isinstance(data, list):
        return data
    if isinstance(data, dict) and isinstance(data.get(key), list):
        return data[key]
    return None


def to_probability(raw: Any, cents: bool = False) -> float:
    """
    Parse a price into 0.0-1.0. With cents=True the value is always divided
    by 100; otherwise only values above 1 are taken as cents.
    Raises ValueError on NaN, Inf, negative, or > 100.
    """
    price = float(raw)
    if not math.isfinite(price) or price < 0.0:
        raise ValueError(f"invalid price {raw!r}")
    if cents or price > 1.0:
        price /= 100.0
    if price > 1.0:
        raise ValueError(f"price {raw!r} out of range")
    return price


def _parse_levels(raw_levels: list) -> list[PriceLevel]:
    levels = []
    for lvl in raw_levels:
        if isinstance(lvl, dict):
            price, size = lvl["price"], lvl.get("size", 0)
        else:
            price, size = lvl[0], lvl[1]
        size = float(size)
        if not math.isfinite(size) or size < 0.0:
            raise ValueError(f"invalid size {size!r}")
        if size == 0.0:
            continue
        levels.append(PriceLevel(price=to_probability(price), size=size))
    return levels
