"""AI enrichment: analyzes a persisted scenario result's final screenshot."""

from __future__ import annotations

import base64
import logging
import threading
import time
from typing import Any, Callable

from pathfinder.models.result import ScenarioResult
from pathfinder.storage.base import Storage
from pathfinder.storage.images import read_image_bytes

from .client import AIClient
from .prompts.screenshot_analysis import (
    SCREENSHOT_ANALYSIS_SYSTEM_PROMPT,
    build_screenshot_analysis_prompt,
)

logger = logging.getLogger(__name__)


class TokenBucket:
    """Token-bucket rate limiter shared by reference between callers.

    ``clock`` and ``sleep`` are injectable so tests can drive time.
    """

    def __init__(
        self,
        rate_per_minute: float,
        capacity: int | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if rate_per_minute <= 0:
            raise ValueError("rate_per_minute must be positive")
        self.rate = rate_per_minute / 60.0
        self.capacity = capacity if capacity is not None else max(1, int(rate_per_minute))
        self._clock = clock
        self._sleep = sleep
        self._tokens = float(self.capacity)
        self._updated = clock()
        self._lock = threading.Lock()

    def _refill(self) -> None:
        now = self._clock()
        self._tokens = min(self.capacity, self._tokens + (now - self._updated) * self.rate)
        self._updated = now

    def try_acquire(self) -> bool:
        with self._lock:
            self._refill()
            if self._tokens >= 1:
                self._tokens -= 1
                return True
            return False

    def wait_time(self) -> float:
        """Seconds until one token is available."""
        with self._lock:
            self._refill()
            return max(0.0, (1 - self._tokens) / self.rate)

    def acquire(self) -> None:
        """Block until a token is available, then consume it."""
        while not self.try_acquire():
            self._sleep(self.wait_time())

    def reset(self) -> None:
        with self._lock:
            self._tokens = float(self.capacity)
            self._updated = self._clock()


def _normalize_findings(raw: Any) -> list[dict[str, Any]]:
    if isinstance(raw, dict):
        raw = raw.get("findings", [])
    if not isinstance(raw, list):
        return []
    return [f for f in raw if isinstance(f, dict)]


class ScenarioEnricher:
    """Sends a result's final screenshot to the model and stores the findings."""

    def __init__(self, ai_client: AIClient, storage: Storage, bucket: TokenBucket):
        self.ai_client = ai_client
        self.storage = storage
        self.bucket = bucket

    def enrich(self, result: ScenarioResult) -> dict[str, Any] | None:
        shot = result.screenshot_for("final-state") or (result.screenshots[-1] if result.screenshots else None)
        if shot is None or not shot.url:
            logger.debug("No screenshot to analyze for result %s", result.id)
            return None

        image_b64 = base64.b64encode(read_image_bytes(shot.url)).decode("ascii")
        prompt = build_screenshot_analysis_prompt(
            result.scenario_name,
            result.viewport,
            result.viewport_size,
            result.status,
            [e.message for e in result.errors],
        )
        self.bucket.acquire()
        findings = _normalize_findings(self.ai_client.complete_json_with_image(
            SCREENSHOT_ANALYSIS_SYSTEM_PROMPT, prompt, image_b64,
        ))

        issues = [
            {
                "type": f.get("category", "unknown"),
                "severity": f.get("severity", "info"),
                "description": f.get("issue", ""),
                "location": f.get("location", ""),
                "recommendation": f.get("recommendation", ""),
                "confidenceScore": f.get("confidenceScore", 0.5),
            }
            for f in findings
        ]
        confidence = (sum(float(i["confidenceScore"] or 0) for i in issues) / len(issues)) if issues else 0.0
        analysis = {
            "screenshot_url": shot.url,
            "findings": findings,
            "issues": issues,
            "suggestions": "\n".join(i["recommendation"] for i in issues if i["recommendation"]),
            "confidence_score": round(confidence, 3),
            "model_used": self.ai_client.model,
        }
        self.storage.save_ai_analysis(result.id, analysis)
        logger.info("AI analysis stored for %s (%s): %d findings",
                    result.scenario_name, result.viewport, len(findings))
        return analysis
