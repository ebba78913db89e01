"""Scenario, step and viewport models, plus the step-encoding adapter."""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

STEP_KINDS = ("navigate", "click", "fill", "select", "hover", "verify", "wait", "screenshot")

DEFAULT_VIEWPORT_SIZE = (1920, 1080)

VIEWPORT_PRESETS: dict[str, tuple[int, int]] = {
    "mobile": (375, 667),
    "tablet": (768, 1024),
    "desktop": (1920, 1080),
}


class Step(BaseModel):
    """A single scripted browser action in its normalized shape."""
    model_config = ConfigDict(frozen=True)

    kind: str
    selector: Optional[str] = None
    url: Optional[str] = None
    value: Optional[str] = None
    timeout: Optional[int] = None  # milliseconds
    expected_text: Optional[str] = None
    description: str = ""

    @field_validator("value", "expected_text", mode="before")
    @classmethod
    def coerce_to_str(cls, v: Any) -> Any:
        if v is None or isinstance(v, str):
            return v
        return str(v)


def _first(data: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if data.get(key) not in (None, ""):
            return data[key]
    return None


def normalize_step(raw: dict[str, Any] | Step) -> Step:
    """Normalize either step encoding into a :class:`Step`.

    Accepts the nested form ``{"type": "click", "config": {...}}`` and the
    flattened form where the same fields sit at the top level (``type``,
    ``action`` or ``kind`` name the action; ``expectedResult`` or
    ``expected_text`` carry the verify assertion).
    """
    if isinstance(raw, Step):
        return raw

    kind = _first(raw, "type", "action", "kind")
    if not kind:
        raise ValueError(f"Step has no type: {raw!r}")

    fields = raw.get("config") if isinstance(raw.get("config"), dict) else raw

    url = _first(fields, "url")
    selector = _first(fields, "selector", "target")
    value = _first(fields, "value")
    if kind == "navigate" and not url:
        url = value or selector
        selector = None

    timeout = _first(fields, "timeout", "timeout_ms")
    return Step(
        kind=str(kind).lower(),
        selector=selector,
        url=url,
        value=value,
        timeout=int(timeout) if timeout is not None else None,
        expected_text=_first(fields, "expectedResult", "expected_text", "expected"),
        description=_first(raw, "description") or _first(fields, "description") or "",
    )


class Scenario(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    description: str = ""
    steps: list[Step] = Field(default_factory=list)

    @field_validator("steps", mode="before")
    @classmethod
    def normalize_steps(cls, v: Any) -> Any:
        if isinstance(v, list):
            return [normalize_step(s) for s in v]
        return v


class TestSuite(BaseModel):
    __test__ = False  # keep pytest from collecting this model

    id: str
    name: str
    target_url: str
    description: str = ""
    scenarios: list[Scenario] = Field(default_factory=list)


class ViewportConfig(BaseModel):
    """A named device profile resolved to concrete pixel dimensions."""
    model_config = ConfigDict(frozen=True)

    name: str = "desktop"
    width: int = DEFAULT_VIEWPORT_SIZE[0]
    height: int = DEFAULT_VIEWPORT_SIZE[1]

    @property
    def size(self) -> str:
        return f"{self.width}x{self.height}"

    @property
    def is_mobile(self) -> bool:
        return self.name == "mobile"

    @classmethod
    def parse(
        cls,
        raw: Any,
        presets: dict[str, tuple[int, int]] | None = None,
    ) -> "ViewportConfig":
        """Build a viewport from any of the accepted request encodings.

        ``{"mobile": {"width": 375, "height": 667}}`` keys the profile by
        name, ``{"name": ..., "width": ..., "height": ...}`` is the flat
        form, and a bare string looks up a preset. An empty object maps to
        ``unknown`` at the default desktop size.
        """
        presets = presets or VIEWPORT_PRESETS
        if isinstance(raw, ViewportConfig):
            return raw

        if isinstance(raw, str):
            if raw not in presets:
                raise ValueError(f"Unknown viewport preset: {raw}")
            width, height = presets[raw]
            return cls(name=raw, width=width, height=height)

        if not isinstance(raw, dict):
            raise ValueError(f"Unsupported viewport value: {raw!r}")

        for name in ("mobile", "tablet", "desktop"):
            dims = raw.get(name)
            if dims:
                default_w, default_h = presets.get(name, DEFAULT_VIEWPORT_SIZE)
                if not isinstance(dims, dict):
                    return cls(name=name, width=default_w, height=default_h)
                return cls(
                    name=name,
                    width=int(dims.get("width", default_w)),
                    height=int(dims.get("height", default_h)),
                )

        if "width" in raw and "height" in raw:
            return cls(
                name=raw.get("name") or "custom",
                width=int(raw["width"]),
                height=int(raw["height"]),
            )

        if raw.get("name") in presets:
            return cls.parse(raw["name"], presets)

        return cls(name="unknown", width=DEFAULT_VIEWPORT_SIZE[0], height=DEFAULT_VIEWPORT_SIZE[1])
