"""
Scanner error taxonomy.

Adapter errors degrade a cycle, orderbook failures are recorded per pair,
and only a scan where every platform failed is surfaced as ScanFailed.
An empty match set is not an error (see the "no_candidates_found" warning).
"""

from __future__ import annotations

from scanner.models import Platform


class ScannerError(Exception):
    """Base class for all scanner errors."""
    code = "scanner_error"


class AdapterError(ScannerError):
    """A platform adapter call failed. Tagged with platform and endpoint."""
    code = "adapter_error"

    def __init__(self, platform: Platform, endpoint: str, message: str) -> None:
        self.platform = platform
        self.endpoint = endpoint
        super().__init__(f"{platform.value} {endpoint}: {message}")


class AdapterTimeout(AdapterError):
    code = "adapter_timeout"


class AdapterUnavailable(AdapterError):
    """Non-2xx status, transport failure, or malformed response body."""
    code = "adapter_unavailable"

    def __init__(
        self,
        platform: Platform,
        endpoint: str,
        message: str,
        status_code: int | None = None,
    ) -> None:
        self.status_code = status_code
        super().__init__(platform, endpoint, message)


class OrderbookFetchFailed(ScannerError):
    """Per-pair orderbook failure. Recorded on the scan, never raised to callers."""
    code = "orderbook_fetch_failed"

    def __init__(self, platform: Platform, market_id: str, cause: Exception) -> None:
        self.platform = platform
        self.market_id = market_id
        self.cause = cause
        super().__init__(f"{platform.value} orderbook {market_id}: {cause}")


class ScanAborted(ScannerError):
    """The scan was cancelled. Partial results are discarded."""
    code = "scan_aborted"


class ScanFailed(ScannerError):
    """Every platform failed this cycle. Retryable on the next tick."""
    code = "scan_failed"
    retryable = True

    def __init__(self, errors: list[AdapterError]) -> None:
        self.errors = tuple(errors)
        detail = "; ".join(str(e) for e in errors) or "no platform data"
        super().__init__(f"Scan failed: {detail}")
