"""Builders for images, stored results and Playwright mocks shared by tests."""

import io
from pathlib import Path
from unittest.mock import AsyncMock, Mock

from PIL import Image

from pathfinder.models.result import ScenarioResult, ScreenshotRef


# ============================================================================
# Image Helpers
# ============================================================================


def make_image(
    width: int = 100,
    height: int = 100,
    color: tuple = (255, 255, 255, 255),
    box: tuple | None = None,
    box_color: tuple = (255, 0, 0, 255),
) -> Image.Image:
    """Solid RGBA image with an optional filled box (x0, y0, x1, y1 exclusive)."""
    img = Image.new("RGBA", (width, height), color)
    if box:
        x0, y0, x1, y1 = box
        for x in range(x0, x1):
            for y in range(y0, y1):
                img.putpixel((x, y), box_color)
    return img


def png_bytes(img: Image.Image) -> bytes:
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def write_png(path: Path, img: Image.Image) -> str:
    """Write an image and return its file:// URI."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(png_bytes(img))
    return path.resolve().as_uri()


def make_result(
    run_id: str,
    name: str,
    viewport: str = "desktop",
    shots: list[tuple[str, str]] | None = None,
    status: str = "pass",
) -> ScenarioResult:
    """Build a stored-shape scenario result with (step_name, url) screenshots."""
    return ScenarioResult(
        run_id=run_id,
        scenario_id=f"sc_{name.lower()}",
        scenario_name=name,
        viewport=viewport,
        viewport_size="1920x1080",
        status=status,
        screenshots=[
            ScreenshotRef(url=url, step_name=step, timestamp=1700000000000 + i)
            for i, (step, url) in enumerate(shots or [])
        ],
    )


# ============================================================================
# Playwright Mocks
# ============================================================================


def make_mock_locator(text: str = "") -> AsyncMock:
    locator = AsyncMock()
    locator.text_content = AsyncMock(return_value=text)
    return locator


def make_mock_page(locator: AsyncMock | None = None) -> AsyncMock:
    """AsyncMock page whose sync methods (on, locator) are plain Mocks."""
    page = AsyncMock()
    page.url = "https://example.com"
    page.on = Mock()
    page.locator = Mock(return_value=locator or make_mock_locator())
    page.screenshot = AsyncMock(return_value=png_bytes(make_image(10, 10)))
    return page


def make_mock_context(page: AsyncMock | None = None) -> AsyncMock:
    ctx = AsyncMock()
    ctx.new_page = AsyncMock(return_value=page or make_mock_page())
    return ctx


def make_mock_browser(context: AsyncMock | None = None) -> AsyncMock:
    browser = AsyncMock()
    browser.new_context = AsyncMock(return_value=context or make_mock_context())
    return browser
