"""Claude API client wrapper used for screenshot enrichment."""

from __future__ import annotations

import json
import logging
import os
import re
import time
from typing import Any, Optional

import anthropic

logger = logging.getLogger(__name__)


class AIClient:
    """Wrapper around the Anthropic Claude API."""

    def __init__(
        self,
        model: str = "claude-sonnet-4-5",
        max_tokens: int = 4096,
        api_key: Optional[str] = None,
    ):
        api_key = api_key or os.environ.get("ANTHROPIC_API_KEY")
        if not api_key:
            raise EnvironmentError(
                "ANTHROPIC_API_KEY environment variable is not set. "
                "AI enrichment needs it to call the API."
            )
        self.client = anthropic.Anthropic(api_key=api_key, timeout=120.0)
        self.model = model
        self.max_tokens = max_tokens
        self._call_count = 0

    @property
    def call_count(self) -> int:
        return self._call_count

    def complete(
        self,
        system_prompt: str,
        user_message: str,
        max_tokens: Optional[int] = None,
        temperature: float = 0.3,
    ) -> str:
        """Send a completion request to Claude and return the text response."""
        return self._send(
            system_prompt,
            [{"role": "user", "content": user_message}],
            max_tokens,
            temperature,
        )

    def complete_with_image(
        self,
        system_prompt: str,
        user_message: str,
        image_base64: str,
        media_type: str = "image/png",
        max_tokens: Optional[int] = None,
    ) -> str:
        """Send a completion request with one base64-encoded image."""
        content = [
            {
                "type": "image",
                "source": {
                    "type": "base64",
                    "media_type": media_type,
                    "data": image_base64,
                },
            },
            {"type": "text", "text": user_message},
        ]
        return self._send(system_prompt, [{"role": "user", "content": content}], max_tokens, 0.2)

    def complete_json_with_image(
        self,
        system_prompt: str,
        user_message: str,
        image_base64: str,
        media_type: str = "image/png",
    ) -> Any:
        text = self.complete_with_image(system_prompt, user_message, image_base64, media_type)
        return self._parse_json_response(text)

    def _send(
        self,
        system_prompt: str,
        messages: list[dict],
        max_tokens: Optional[int],
        temperature: float,
    ) -> str:
        self._call_count += 1
        tokens = max_tokens or self.max_tokens
        logger.info("Calling AI (call #%d, model=%s, max_tokens=%d)...",
                    self._call_count, self.model, tokens)
        try:
            call_start = time.time()
            response = self.client.messages.create(
                model=self.model,
                max_tokens=tokens,
                temperature=temperature,
                system=system_prompt,
                messages=messages,
            )
        except anthropic.APIError as e:
            logger.error("Claude API error: %s", e)
            raise

        text = response.content[0].text
        logger.info("AI response received in %.1fs (%d chars)", time.time() - call_start, len(text))
        if response.stop_reason == "max_tokens":
            logger.warning("AI response was truncated at max_tokens=%d", tokens)
        return text

    @staticmethod
    def _parse_json_response(text: str) -> Any:
        """Parse AI response as JSON, tolerating code fences and trailing commas."""
        text = text.strip()
        fence = re.search(r"```(?:json)?\s*\n(.*?)\n```", text, re.DOTALL)
        if fence:
            text = fence.group(1).strip()

        try:
            return json.loads(text, strict=False)
        except json.JSONDecodeError:
            pass

        cleaned = re.sub(r",\s*([}\]])", r"\1", text)
        starts = [i for i in (cleaned.find("{"), cleaned.find("[")) if i != -1]
        if starts:
            start = min(starts)
            end = max(cleaned.rfind("}"), cleaned.rfind("]"))
            if end > start:
                cleaned = cleaned[start:end + 1]
        try:
            return json.loads(cleaned, strict=False)
        except json.JSONDecodeError as e:
            logger.error("Failed to parse AI response as JSON: %s", e)
            raise ValueError(f"AI returned invalid JSON: {e}") from e
