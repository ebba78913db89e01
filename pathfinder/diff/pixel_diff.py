"""Pixel diff engine: perceptual per-pixel comparison of two screenshots.

Images are normalized to RGBA, padded to a common canvas, masked with the
configured ignore regions and compared in YIQ colour space. Pixels whose
colour distance exceeds the sensitivity are counted as different unless
they look like antialiasing artefacts.
"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass, field

import numpy as np
from PIL import Image, ImageDraw

from pathfinder.models.regression import IgnoreRegion

logger = logging.getLogger(__name__)

PAD_COLOR = (255, 255, 255, 255)
IGNORE_COLOR = (128, 128, 128, 255)
DIFF_COLOR = (255, 0, 0)
AA_COLOR = (255, 255, 0)

# Maximum possible YIQ delta between two colours.
MAX_YIQ_DELTA = 35215

# Neighbour offsets (dx, dy) in x-major order, so argmin/argmax pick the
# same neighbour a nested x-then-y scan would.
_NEIGHBOURS = [(dx, dy) for dx in (-1, 0, 1) for dy in (-1, 0, 1) if (dx, dy) != (0, 0)]


@dataclass
class DiffOptions:
    threshold: float = 0.1  # significance cutoff as a fraction of all pixels
    include_antialiasing: bool = False
    ignore_regions: list[IgnoreRegion] = field(default_factory=list)
    pixel_sensitivity: float = 0.1
    alpha: float = 0.1


@dataclass
class DiffOutcome:
    pixels_different: int
    percentage_different: float
    width: int
    height: int
    threshold: float
    is_significant: bool
    diff_image: Image.Image

    def diff_png(self) -> bytes:
        buf = io.BytesIO()
        self.diff_image.save(buf, format="PNG")
        return buf.getvalue()


def pad_to_size(img: Image.Image, width: int, height: int) -> Image.Image:
    """Place an image on a white canvas of the given size. Never crops."""
    img = img.convert("RGBA")
    if img.size == (width, height):
        return img
    canvas = Image.new("RGBA", (width, height), PAD_COLOR)
    canvas.paste(img, (0, 0))
    return canvas


def apply_ignore_regions(img: Image.Image, regions: list[IgnoreRegion]) -> Image.Image:
    """Return a copy with every region (clamped to bounds) filled mid-gray."""
    if not regions:
        return img
    masked = img.copy()
    draw = ImageDraw.Draw(masked)
    for region in regions:
        x0 = max(0, region.x)
        y0 = max(0, region.y)
        x1 = min(img.width, region.x + region.width)
        y1 = min(img.height, region.y + region.height)
        if x1 <= x0 or y1 <= y0:
            continue
        draw.rectangle((x0, y0, x1 - 1, y1 - 1), fill=IGNORE_COLOR)
    return masked


def _blend(rgba: np.ndarray) -> np.ndarray:
    """Alpha-blend RGB channels over white, as float64."""
    rgb = rgba[..., :3].astype(np.float64)
    a = rgba[..., 3:4].astype(np.float64) / 255.0
    return 255.0 + (rgb - 255.0) * a


def _rgb2y(rgb: np.ndarray) -> np.ndarray:
    return rgb[..., 0] * 0.29889531 + rgb[..., 1] * 0.58662247 + rgb[..., 2] * 0.11448223


def _rgb2i(rgb: np.ndarray) -> np.ndarray:
    return rgb[..., 0] * 0.59597799 - rgb[..., 1] * 0.27417610 - rgb[..., 2] * 0.32180189


def _rgb2q(rgb: np.ndarray) -> np.ndarray:
    return rgb[..., 0] * 0.21147017 - rgb[..., 1] * 0.52261711 + rgb[..., 2] * 0.31114694


def _yiq_delta(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    """Squared perceptual distance between two blended RGB arrays."""
    y = _rgb2y(a) - _rgb2y(b)
    i = _rgb2i(a) - _rgb2i(b)
    q = _rgb2q(a) - _rgb2q(b)
    return 0.5053 * y * y + 0.299 * i * i + 0.1957 * q * q


def _neighbour_coords(ys: np.ndarray, xs: np.ndarray, width: int, height: int):
    """Yield (ny, nx, valid) per neighbour offset for the given pixels."""
    for dx, dy in _NEIGHBOURS:
        nx = xs + dx
        ny = ys + dy
        valid = (nx >= 0) & (nx < width) & (ny >= 0) & (ny < height)
        yield np.clip(ny, 0, height - 1), np.clip(nx, 0, width - 1), valid


def _edge_mask(ys: np.ndarray, xs: np.ndarray, width: int, height: int) -> np.ndarray:
    return (xs == 0) | (xs == width - 1) | (ys == 0) | (ys == height - 1)


def _has_many_siblings(rgba: np.ndarray, ys: np.ndarray, xs: np.ndarray) -> np.ndarray:
    """True where more than two neighbours share the pixel's exact RGBA value."""
    height, width = rgba.shape[:2]
    zeroes = _edge_mask(ys, xs, width, height).astype(np.int16)
    centre = rgba[ys, xs]
    for ny, nx, valid in _neighbour_coords(ys, xs, width, height):
        same = np.all(rgba[ny, nx] == centre, axis=-1)
        zeroes += (valid & same).astype(np.int16)
    return zeroes > 2


def _antialiased(
    rgba: np.ndarray,
    luma: np.ndarray,
    other: np.ndarray,
    ys: np.ndarray,
    xs: np.ndarray,
) -> np.ndarray:
    """Detect antialiased pixels among the given coordinates of one image.

    A pixel is treated as antialiasing when its brightness sits strictly
    between its darkest and brightest neighbours, it has at most two
    identical neighbours, and either extreme neighbour lies inside a flat
    area in both images.
    """
    height, width = luma.shape
    n = ys.shape[0]
    zeroes = _edge_mask(ys, xs, width, height).astype(np.int16)
    deltas = np.zeros((n, len(_NEIGHBOURS)), dtype=np.float64)
    nys = np.zeros((n, len(_NEIGHBOURS)), dtype=np.int64)
    nxs = np.zeros((n, len(_NEIGHBOURS)), dtype=np.int64)

    centre = luma[ys, xs]
    for k, (ny, nx, valid) in enumerate(_neighbour_coords(ys, xs, width, height)):
        delta = np.where(valid, centre - luma[ny, nx], np.nan)
        zeroes += (delta == 0).astype(np.int16)
        deltas[:, k] = delta
        nys[:, k] = ny
        nxs[:, k] = nx

    negatives = np.where(deltas < 0, deltas, 0.0)
    positives = np.where(deltas > 0, deltas, 0.0)
    min_k = np.argmin(negatives, axis=1)
    max_k = np.argmax(positives, axis=1)
    rows = np.arange(n)
    has_min = negatives[rows, min_k] < 0
    has_max = positives[rows, max_k] > 0

    candidate = (zeroes <= 2) & has_min & has_max
    result = np.zeros(n, dtype=bool)
    if not candidate.any():
        return result

    idx = np.nonzero(candidate)[0]
    min_y, min_x = nys[idx, min_k[idx]], nxs[idx, min_k[idx]]
    max_y, max_x = nys[idx, max_k[idx]], nxs[idx, max_k[idx]]
    flat_min = _has_many_siblings(rgba, min_y, min_x) & _has_many_siblings(other, min_y, min_x)
    flat_max = _has_many_siblings(rgba, max_y, max_x) & _has_many_siblings(other, max_y, max_x)
    result[idx] = flat_min | flat_max
    return result


def _pixel_compare(
    img1: np.ndarray,
    img2: np.ndarray,
    sensitivity: float,
    include_antialiasing: bool,
    alpha: float,
) -> tuple[int, np.ndarray]:
    """Count differing pixels between two equal-size RGBA arrays.

    Returns the count and an RGBA diff rendering: red for counted
    differences, yellow for ignored antialiasing, faded grayscale of the
    first image elsewhere.
    """
    height, width = img1.shape[:2]
    blended1 = _blend(img1)
    blended2 = _blend(img2)

    # Faded grayscale background from the first image
    luma1 = _rgb2y(blended1)
    raw_luma = _rgb2y(img1[..., :3].astype(np.float64))
    gray = 255.0 + (raw_luma - 255.0) * alpha * img1[..., 3].astype(np.float64) / 255.0
    gray = np.clip(gray, 0, 255).astype(np.uint8)
    output = np.empty((height, width, 4), dtype=np.uint8)
    output[..., 0] = gray
    output[..., 1] = gray
    output[..., 2] = gray
    output[..., 3] = 255

    identical = np.all(img1 == img2, axis=-1)
    max_delta = MAX_YIQ_DELTA * sensitivity * sensitivity
    delta = np.where(identical, 0.0, _yiq_delta(blended1, blended2))
    exceeds = delta > max_delta

    ys, xs = np.nonzero(exceeds)
    if ys.size == 0:
        return 0, output

    if include_antialiasing:
        is_aa = np.zeros(ys.size, dtype=bool)
    else:
        luma2 = _rgb2y(blended2)
        is_aa = _antialiased(img1, luma1, img2, ys, xs) | _antialiased(img2, luma2, img1, ys, xs)

    output[ys[is_aa], xs[is_aa], :3] = AA_COLOR
    output[ys[~is_aa], xs[~is_aa], :3] = DIFF_COLOR
    return int(np.count_nonzero(~is_aa)), output


def compare_images(
    baseline: Image.Image,
    current: Image.Image,
    options: DiffOptions | None = None,
) -> DiffOutcome:
    """Compare two in-memory images.

    Mismatched sizes are padded (white) to the element-wise maximum.
    ``is_significant`` is true when the differing share of pixels exceeds
    ``options.threshold`` (a fraction, so 0.1 means 10%).
    """
    options = options or DiffOptions()
    width = max(baseline.width, current.width)
    height = max(baseline.height, current.height)
    if baseline.size != current.size:
        logger.debug("Padding %s and %s to %dx%d", baseline.size, current.size, width, height)

    img1 = apply_ignore_regions(pad_to_size(baseline, width, height), options.ignore_regions)
    img2 = apply_ignore_regions(pad_to_size(current, width, height), options.ignore_regions)

    total = width * height
    if total == 0:
        return DiffOutcome(0, 0.0, width, height, options.threshold, False,
                           Image.new("RGBA", (width, height)))

    count, diff_array = _pixel_compare(
        np.asarray(img1, dtype=np.uint8),
        np.asarray(img2, dtype=np.uint8),
        options.pixel_sensitivity,
        options.include_antialiasing,
        options.alpha,
    )
    percentage = count / total * 100
    return DiffOutcome(
        pixels_different=count,
        percentage_different=round(percentage, 2),
        width=width,
        height=height,
        threshold=options.threshold,
        is_significant=percentage > options.threshold * 100,
        diff_image=Image.fromarray(diff_array),
    )
