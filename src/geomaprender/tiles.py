"""Raster basemap tile fetching with bounded concurrency, pacing, and retries."""

from __future__ import annotations

import io
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Iterable, Sequence

import requests
from PIL import Image
from xyzservices import providers

from .errors import NetworkError, ParseError, RangeError, RateLimitedError, ValidationError
from .models import DEFAULT_TILE_URL, DEFAULT_USER_AGENT, BoundingBox, RenderOptions
from .projection import TILE_SIZE_PX
from .zoom import MAX_ZOOM, MIN_ZOOM, select_zoom

__all__ = [
    "DEFAULT_TILE_URL",
    "TileResult",
    "TileSource",
    "resolve_tile_url_template",
]

_RATE_LIMITED_STATUS = 429
_MAX_RETRY_DELAY_S = 300.0

_LOGGER = logging.getLogger("geomaprender.tiles")


@dataclass(frozen=True, slots=True)
class TileResult:
    x: int
    y: int
    zoom: int
    image: Image.Image | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.image is not None


def resolve_tile_url_template(*, url: str | None = None, provider: str | None = None) -> str:
    """Resolve a `{z}/{x}/{y}` URL template from an explicit URL or a named provider."""
    if url:
        return url
    if provider:
        try:
            tile_provider = providers.query_name(provider)
        except ValueError as exc:
            raise ValidationError(f"Unknown tile provider '{provider}'") from exc
        if tile_provider.requires_token():
            raise ValidationError(f"Tile provider '{provider}' requires an API token")
        return tile_provider.build_url()
    return DEFAULT_TILE_URL


class TileSource:
    """Fetch and decode `{z}/{x}/{y}` raster tiles for one tile server.

    At most `max_concurrent_requests` requests are in flight at once, and
    successive request starts are spaced by `min_request_interval_s` across
    every caller of the same instance. No tile is cached.
    """

    tile_size_px = TILE_SIZE_PX

    def __init__(
        self,
        url_template: str = DEFAULT_TILE_URL,
        *,
        user_agent: str = DEFAULT_USER_AGENT,
        request_timeout_s: float = 30.0,
        max_concurrent_requests: int = 4,
        min_request_interval_s: float = 0.1,
        max_attempts: int = 3,
        retry_backoff_s: float = 1.0,
        min_zoom: int = MIN_ZOOM,
        max_zoom: int = MAX_ZOOM,
        session: requests.Session | None = None,
    ) -> None:
        missing = [key for key in ("{z}", "{x}", "{y}") if key not in url_template]
        if missing:
            raise ValidationError(
                f"Tile URL template '{url_template}' is missing {', '.join(missing)}"
            )
        if max_concurrent_requests < 1:
            raise ValidationError("max_concurrent_requests must be >= 1")
        self.url_template = url_template
        self.min_zoom = min_zoom
        self.max_zoom = max_zoom
        self._session = session if session is not None else requests.Session()
        self._session.headers.update({"User-Agent": user_agent})
        self._request_timeout_s = float(request_timeout_s)
        self._max_concurrent_requests = max_concurrent_requests
        self._min_request_interval_s = max(float(min_request_interval_s), 0.0)
        self._max_attempts = max(int(max_attempts), 1)
        self._retry_backoff_s = max(float(retry_backoff_s), 0.0)
        self._slots = threading.BoundedSemaphore(max_concurrent_requests)
        self._dispatch_lock = threading.Lock()
        self._last_dispatch_at: float | None = None

    @classmethod
    def from_options(cls, options: RenderOptions) -> TileSource:
        return cls(
            options.tile_url_template,
            user_agent=options.user_agent,
            request_timeout_s=options.request_timeout_s,
            max_concurrent_requests=options.max_concurrent_requests,
            min_request_interval_s=options.min_request_interval_s,
            max_attempts=options.max_attempts,
            retry_backoff_s=options.retry_backoff_s,
        )

    def __enter__(self) -> TileSource:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        self._session.close()

    def select_zoom(
        self,
        bbox: BoundingBox,
        width: int,
        height: int,
        override: int | None = None,
    ) -> int:
        return select_zoom(bbox, width, height, override)

    def tile_url(self, x: int, y: int, zoom: int) -> str:
        return (
            self.url_template.replace("{z}", str(zoom))
            .replace("{x}", str(x))
            .replace("{y}", str(y))
        )

    def validate_index(self, x: int, y: int, zoom: int) -> None:
        if not self.min_zoom <= zoom <= self.max_zoom:
            raise RangeError(
                f"Zoom {zoom} outside supported range {self.min_zoom}..{self.max_zoom}"
            )
        last = (1 << zoom) - 1
        if not 0 <= x <= last or not 0 <= y <= last:
            raise RangeError(f"Tile ({x}, {y}) outside 0..{last} for zoom {zoom}")

    def fetch_tile(self, x: int, y: int, zoom: int) -> bytes:
        """Return the raw tile body; raises `RangeError` before any request is made."""
        self.validate_index(x, y, zoom)
        url = self.tile_url(x, y, zoom)
        with self._slots:
            return self._request_bytes(url)

    def get_tile(self, x: int, y: int, zoom: int) -> Image.Image:
        data = self.fetch_tile(x, y, zoom)
        try:
            image = Image.open(io.BytesIO(data))
            image.load()
        except (OSError, ValueError, Image.DecompressionBombError) as exc:
            raise ParseError(f"Tile {zoom}/{x}/{y} is not a decodable image: {exc}") from exc
        return image

    def fetch_tiles(self, indices: Iterable[tuple[int, int]], zoom: int) -> list[TileResult]:
        """Fetch every tile concurrently; failures come back as results without an image."""
        wanted = list(indices)
        if not wanted:
            return []
        workers = min(self._max_concurrent_requests, len(wanted))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="tile") as pool:
            futures = [pool.submit(self._tile_result, x, y, zoom) for x, y in wanted]
            return [future.result() for future in futures]

    def _tile_result(self, x: int, y: int, zoom: int) -> TileResult:
        try:
            image = self.get_tile(x, y, zoom)
        except (RangeError, NetworkError, ParseError) as exc:
            _LOGGER.warning("Skipping tile %d/%d/%d: %s", zoom, x, y, exc)
            return TileResult(x=x, y=y, zoom=zoom, error=str(exc))
        return TileResult(x=x, y=y, zoom=zoom, image=image)

    def _request_bytes(self, url: str) -> bytes:
        for attempt in range(self._max_attempts):
            is_last = attempt + 1 >= self._max_attempts
            self._wait_for_dispatch_slot()
            try:
                response = self._session.get(url, timeout=self._request_timeout_s)
            except requests.RequestException as exc:
                if is_last:
                    raise NetworkError(f"Tile request failed for {url}: {exc}") from exc
                delay_s = self._backoff_delay_s(attempt)
                _LOGGER.warning(
                    "Tile request error for %s (%s); retrying in %.1fs (%d/%d)",
                    url,
                    exc,
                    delay_s,
                    attempt + 1,
                    self._max_attempts,
                )
                time.sleep(delay_s)
                continue

            try:
                if 200 <= response.status_code < 300:
                    return response.content
                retry_after_s = None
                if response.status_code == _RATE_LIMITED_STATUS:
                    retry_after_s = _parse_retry_after_seconds(response.headers.get("Retry-After"))
                if is_last:
                    if response.status_code == _RATE_LIMITED_STATUS:
                        raise RateLimitedError(
                            f"Rate limited by tile server for {url}",
                            retry_after_s=retry_after_s,
                        )
                    raise NetworkError(f"HTTP {response.status_code} for {url}")
                delay_s = (
                    min(retry_after_s, _MAX_RETRY_DELAY_S)
                    if retry_after_s is not None
                    else self._backoff_delay_s(attempt)
                )
                _LOGGER.warning(
                    "Retryable response %s for %s; retrying in %.1fs (%d/%d)",
                    response.status_code,
                    url,
                    delay_s,
                    attempt + 1,
                    self._max_attempts,
                )
            finally:
                response.close()
            time.sleep(delay_s)
        raise RuntimeError("Unreachable retry loop in tile source")

    def _wait_for_dispatch_slot(self) -> None:
        with self._dispatch_lock:
            if self._min_request_interval_s > 0 and self._last_dispatch_at is not None:
                elapsed = time.monotonic() - self._last_dispatch_at
                if elapsed < self._min_request_interval_s:
                    time.sleep(self._min_request_interval_s - elapsed)
            self._last_dispatch_at = time.monotonic()

    def _backoff_delay_s(self, attempt: int) -> float:
        return min(self._retry_backoff_s * (2**attempt), _MAX_RETRY_DELAY_S)


def _parse_retry_after_seconds(raw: str | None) -> float | None:
    if raw is None:
        return None
    value = raw.strip()
    if not value:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max((when - datetime.now(timezone.utc)).total_seconds(), 0.0)


def tile_summary(results: Sequence[TileResult]) -> tuple[int, int]:
    fetched = sum(1 for result in results if result.ok)
    return (fetched, len(results) - fetched)
