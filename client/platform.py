"""
Platform adapter protocol. Any market venue the scanner reads from satisfies this.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from scanner.models import Market, OrderBook, Platform


@runtime_checkable
class PlatformAdapter(Protocol):
    """
    Fetch + schema translation only, no matching logic.

    Implementations raise AdapterTimeout / AdapterUnavailable (tagged with
    platform and endpoint) instead of returning partial or garbled data.
    """

    @property
    def platform(self) -> Platform:
        """Which venue this adapter reads."""
        ...

    def fetch_markets(self, category: str | None = None) -> list[Market]:
        """Fetch open markets, optionally restricted to one detected category."""
        ...

    def fetch_orderbook(self, market: Market) -> OrderBook:
        """Fetch the live YES order book for a market (prices 0.0-1.0)."""
        ...

    def close(self) -> None:
        """Release the underlying HTTP connection pool."""
        ...
