"""Fetch screenshot images by URL or path."""

from __future__ import annotations

import io
import logging
import urllib.error
import urllib.request
from pathlib import Path
from urllib.parse import unquote, urlparse

from PIL import Image, UnidentifiedImageError

from pathfinder.errors import ComparisonError

logger = logging.getLogger(__name__)


def read_image_bytes(url: str, timeout: float = 30.0) -> bytes:
    """Read raw bytes from a local path, ``file://`` URI or HTTP(S) URL."""
    if not url:
        raise ComparisonError("Empty image URL")
    try:
        parsed = urlparse(url)
        if parsed.scheme in ("http", "https"):
            with urllib.request.urlopen(url, timeout=timeout) as resp:
                return resp.read()
        if parsed.scheme == "file":
            return Path(unquote(parsed.path)).read_bytes()
        return Path(url).read_bytes()
    except (OSError, ValueError, urllib.error.URLError) as e:
        # ValueError covers malformed hosts and http.client.InvalidURL
        raise ComparisonError(f"Failed to fetch image from {url}: {e}") from e


def load_image(url: str) -> Image.Image:
    """Fetch and decode an image as RGBA."""
    data = read_image_bytes(url)
    try:
        with Image.open(io.BytesIO(data)) as img:
            return img.convert("RGBA")
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as e:
        raise ComparisonError(f"Failed to decode image from {url}: {e}") from e
