"""Fetches two stored screenshots and diffs them."""

from __future__ import annotations

import logging

from pathfinder.errors import ComparisonError, PersistenceError
from pathfinder.models.config import DiffConfig
from pathfinder.models.regression import ComparisonResult, Dimensions, IgnoreRegion
from pathfinder.storage.base import Storage
from pathfinder.storage.images import load_image

from .pixel_diff import DiffOptions, compare_images

logger = logging.getLogger(__name__)


class ScreenshotComparator:
    """Compares screenshots by URL and uploads the rendered diff image."""

    def __init__(self, storage: Storage, diff_config: DiffConfig | None = None):
        self.storage = storage
        self.diff_config = diff_config or DiffConfig()

    def compare(
        self,
        baseline_url: str,
        current_url: str,
        threshold: float | None = None,
        ignore_regions: list[IgnoreRegion] | None = None,
        include_antialiasing: bool | None = None,
    ) -> ComparisonResult:
        """Compare two screenshots.

        Raises ComparisonError when either image cannot be fetched or
        decoded. A failed diff upload only leaves ``diff_image_url`` empty.
        """
        baseline = load_image(baseline_url)
        current = load_image(current_url)

        options = DiffOptions(
            threshold=self.diff_config.default_threshold if threshold is None else threshold,
            include_antialiasing=(
                self.diff_config.include_antialiasing
                if include_antialiasing is None else include_antialiasing
            ),
            ignore_regions=ignore_regions or [],
            pixel_sensitivity=self.diff_config.pixel_sensitivity,
            alpha=self.diff_config.alpha,
        )
        try:
            outcome = compare_images(baseline, current, options)
        except (ValueError, MemoryError) as e:
            raise ComparisonError(f"Failed to compare screenshots: {e}") from e

        diff_url = ""
        try:
            diff_url = self.storage.upload_diff_image(outcome.diff_png())
        except PersistenceError as e:
            logger.warning("Failed to upload diff image: %s", e)

        logger.debug("Compared %s vs %s: %d pixels (%.2f%%)",
                     baseline_url, current_url, outcome.pixels_different,
                     outcome.percentage_different)
        return ComparisonResult(
            pixels_different=outcome.pixels_different,
            percentage_different=outcome.percentage_different,
            dimensions=Dimensions(width=outcome.width, height=outcome.height),
            threshold=outcome.threshold,
            is_significant=outcome.is_significant,
            baseline_url=baseline_url,
            current_url=current_url,
            diff_image_url=diff_url,
        )
