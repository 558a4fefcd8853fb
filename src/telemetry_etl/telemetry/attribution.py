"""
Font source attribution.

Events that carry a ``source_url`` in their payload get a ``source_name``
resolved by fetching that URL and reading the ``name`` field of its JSON
body. SourceAttributionClient performs one validated, bounded HTTP lookup;
SourceAttributionCache memoizes successful lookups for the process lifetime
and collapses concurrent lookups of the same URL into one fetch.
"""

import asyncio
import logging
from typing import Any
from urllib.parse import urljoin

import aiohttp

from core.errors.exceptions import AttributionLookupError, classify_exception, classify_http_status
from core.security.url_validation import sanitize_url, validate_source_url
from core.types import ErrorCategory
from telemetry_etl.common.metrics import record_attribution_lookup

logger = logging.getLogger(__name__)

REDIRECT_STATUSES = frozenset({301, 302, 303, 307, 308})
MAX_REDIRECTS = 3


class SourceAttributionClient:
    """
    Async HTTP client resolving a font-source URL to its display name.

    Every URL, including each redirect target, is validated before it is
    requested. Any failure raises AttributionLookupError with a category.
    """

    def __init__(
        self,
        timeout_seconds: float = 10.0,
        max_concurrent: int = 20,
        allowed_domains: list[str] | set[str] | None = None,
    ):
        self.timeout_seconds = timeout_seconds
        self.max_concurrent = max_concurrent
        self.allowed_domains = set(allowed_domains) if allowed_domains else None

        self._session: aiohttp.ClientSession | None = None
        self._semaphore: asyncio.Semaphore | None = None
        self._closed = False

        logger.info(
            "SourceAttributionClient initialized",
            extra={
                "timeout_seconds": self.timeout_seconds,
                "in_flight": self.max_concurrent,
            },
        )

    async def __aenter__(self) -> "SourceAttributionClient":
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def _ensure_session(self) -> None:
        if self._closed:
            raise RuntimeError("SourceAttributionClient is closed, cannot create new session")
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(
                limit=self.max_concurrent,
                limit_per_host=self.max_concurrent,
            )
            self._session = aiohttp.ClientSession(
                connector=connector,
                headers={"Accept": "application/json"},
            )
            self._semaphore = asyncio.Semaphore(self.max_concurrent)

    async def close(self) -> None:
        self._closed = True
        if self._session and not self._session.closed:
            await self._session.close()
            await asyncio.sleep(0)
            self._session = None

    def _validate(self, url: str) -> None:
        is_valid, reason = validate_source_url(url, self.allowed_domains)
        if not is_valid:
            raise AttributionLookupError(
                f"Rejected source URL: {reason}",
                url=url,
                category=ErrorCategory.PERMANENT,
            )

    async def fetch_name(self, url: str) -> str:
        """
        GET ``url`` and return the ``name`` field of its JSON body.

        Raises:
            AttributionLookupError: URL rejected, timeout, connection failure,
                non-2xx status, malformed body or missing ``name``
        """
        self._validate(url)
        await self._ensure_session()

        async with self._semaphore:
            start_time = asyncio.get_running_loop().time()
            try:
                data = await self._get_json(url)
            except TimeoutError as e:
                raise AttributionLookupError(
                    f"Timeout after {self.timeout_seconds}s",
                    url=url,
                    category=ErrorCategory.TRANSIENT,
                    cause=e,
                ) from e
            except aiohttp.ClientError as e:
                raise AttributionLookupError(
                    f"Connection error: {e}",
                    url=url,
                    category=ErrorCategory.TRANSIENT,
                    cause=e,
                ) from e

            duration = asyncio.get_running_loop().time() - start_time

        name = data.get("name") if isinstance(data, dict) else None
        if not isinstance(name, str) or not name:
            raise AttributionLookupError(
                "Response body has no 'name' field",
                url=url,
                category=ErrorCategory.PERMANENT,
            )

        logger.debug(
            "Source attribution resolved",
            extra={"source_url": sanitize_url(url), "duration_ms": round(duration * 1000, 2)},
        )
        return name

    async def _get_json(self, url: str) -> Any:
        """Follow up to MAX_REDIRECTS validated redirects and decode the final JSON body."""
        current_url = url
        for _ in range(MAX_REDIRECTS + 1):
            async with self._session.request(
                "GET",
                current_url,
                allow_redirects=False,
                timeout=aiohttp.ClientTimeout(total=self.timeout_seconds),
            ) as response:
                if response.status in REDIRECT_STATUSES:
                    location = response.headers.get("Location")
                    if not location:
                        raise AttributionLookupError(
                            f"Redirect ({response.status}) without Location header",
                            url=url,
                            status_code=response.status,
                            category=ErrorCategory.PERMANENT,
                        )
                    current_url = urljoin(current_url, location)
                    self._validate(current_url)
                    continue

                if not 200 <= response.status < 300:
                    raise AttributionLookupError(
                        f"HTTP error ({response.status})",
                        url=url,
                        status_code=response.status,
                        category=classify_http_status(response.status),
                    )

                try:
                    return await response.json(content_type=None)
                except ValueError as e:
                    raise AttributionLookupError(
                        "Malformed JSON body",
                        url=url,
                        status_code=response.status,
                        category=ErrorCategory.PERMANENT,
                        cause=e,
                    ) from e

        raise AttributionLookupError(
            f"Too many redirects (>{MAX_REDIRECTS})",
            url=url,
            category=ErrorCategory.PERMANENT,
        )


class SourceAttributionCache:
    """
    Process-lifetime memo of URL -> source name.

    Only successful lookups are cached, so a failed URL is fetched again the
    next time it appears. Concurrent resolve() calls for a URL that is being
    fetched share that fetch. resolve() never raises; failures return None.
    All state is touched only from the event loop thread.

    Example:
        >>> cache = SourceAttributionCache(client)
        >>> await cache.resolve("https://fonts.example.com/foundry/foo")
        'Foo Foundry'
    """

    def __init__(self, client: SourceAttributionClient):
        self._client = client
        self._names: dict[str, str] = {}
        self._in_flight: dict[str, asyncio.Task] = {}

        self._hits = 0
        self._misses = 0
        self._fetches = 0
        self._failures = 0
        self._coalesced = 0

    async def resolve(self, url: str) -> str | None:
        if not isinstance(url, str) or not url:
            return None

        name = self._names.get(url)
        if name is not None:
            self._hits += 1
            record_attribution_lookup("hit")
            return name

        task = self._in_flight.get(url)
        if task is None:
            self._misses += 1
            task = asyncio.create_task(self._fetch(url))
            self._in_flight[url] = task
        else:
            self._coalesced += 1
            record_attribution_lookup("coalesced")

        # A cancelled caller must not cancel the fetch other callers share
        return await asyncio.shield(task)

    async def _fetch(self, url: str) -> str | None:
        self._fetches += 1
        try:
            name = await self._client.fetch_name(url)
        except AttributionLookupError as e:
            self._failures += 1
            record_attribution_lookup("failed")
            logger.warning(
                "Source attribution lookup failed",
                extra={
                    "source_url": sanitize_url(url),
                    "error_category": e.category.value,
                    "http_status": e.status_code,
                    "error": e.message,
                },
            )
            return None
        except Exception as e:
            self._failures += 1
            record_attribution_lookup("failed")
            logger.error(
                "Unexpected error during source attribution lookup",
                extra={
                    "source_url": sanitize_url(url),
                    "error_category": classify_exception(e).value,
                    "error_type": type(e).__name__,
                    "error": str(e),
                },
                exc_info=True,
            )
            return None
        finally:
            self._in_flight.pop(url, None)

        self._names[url] = name
        record_attribution_lookup("fetched")
        return name

    def get(self, url: str) -> str | None:
        """Cached name without fetching."""
        return self._names.get(url)

    def __len__(self) -> int:
        return len(self._names)

    def get_stats(self) -> dict[str, int]:
        return {
            "hits": self._hits,
            "misses": self._misses,
            "fetches": self._fetches,
            "failures": self._failures,
            "coalesced": self._coalesced,
            "size": len(self._names),
            "in_flight": len(self._in_flight),
        }


__all__ = ["SourceAttributionClient", "SourceAttributionCache"]
