"""Exception types raised across the rendering pipeline."""

from __future__ import annotations


class MapRenderError(Exception):
    """Base class for failures raised by geomaprender."""


class ValidationError(MapRenderError, ValueError):
    """Required input is missing or invalid; raised before any work starts."""


class NotFoundError(MapRenderError, FileNotFoundError):
    """A referenced input file does not exist."""


class RangeError(MapRenderError, ValueError):
    """Tile index or zoom level outside the valid pyramid bounds."""


class NetworkError(MapRenderError, RuntimeError):
    """Tile request failed after exhausting retries."""


class RateLimitedError(NetworkError):
    def __init__(self, message: str, *, retry_after_s: float | None = None) -> None:
        super().__init__(message)
        self.retry_after_s = retry_after_s


class ParseError(MapRenderError, ValueError):
    """Malformed colour string, GeoJSON document, or label property."""
