"""
Ollama API provider for text generation.
Asynchronous wrapper around the Ollama REST API that maps transport
failures onto the pipeline error taxonomy.
"""

import math
import time
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Optional

import httpx

from content_pipeline.errors import (
    ContentFilterError,
    ProviderError,
    RateLimitError,
    StageTimeoutError,
)
from content_pipeline.providers.base import GenerationOptions, GenerationProvider
from content_pipeline.utils.structured_logging import get_logger
from content_pipeline.utils.token_manager import CHARS_PER_TOKEN

logger = get_logger("ollama")


def parse_retry_after(value: Optional[str], now: Optional[datetime] = None) -> Optional[float]:
    """
    Seconds to wait from a Retry-After header, given as delta-seconds or an
    HTTP date. Returns None when the header is missing or unreadable.
    """
    if not value:
        return None
    try:
        seconds = float(value)
    except ValueError:
        try:
            when = parsedate_to_datetime(value)
        except (TypeError, ValueError):
            return None
        if when.tzinfo is None:
            when = when.replace(tzinfo=timezone.utc)
        seconds = (when - (now or datetime.now(timezone.utc))).total_seconds()
    if not math.isfinite(seconds):
        return None
    return max(seconds, 0.0)


class OllamaProvider(GenerationProvider):
    """
    Async client for an Ollama server.
    Long-running generation calls are awaited; the only timeout is the
    client-level one.
    """

    name = "ollama"

    def __init__(
        self,
        base_url: str,
        model: str,
        timeout: float = 300.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """
        :param base_url: The URL where Ollama is hosted.
        :param model: The model to use for generation.
        :param timeout: Client timeout in seconds.
        :param client: Pre-built client (tests pass one with a mock transport).
        """
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.client = client or httpx.AsyncClient(timeout=timeout)

    async def generate(self, prompt: str, options: Optional[GenerationOptions] = None) -> str:
        """
        Generate a full completion for the given prompt.

        Raises:
            RateLimitError: HTTP 429
            StageTimeoutError: the request timed out
            ProviderError: any other transport or server failure
            ContentFilterError: the model returned nothing usable
        """
        options = options or GenerationOptions()
        payload = {
            "model": self.model,
            "prompt": prompt,
            "stream": False,
            "options": {"temperature": options.temperature},
        }
        if options.max_output_tokens:
            payload["options"]["num_predict"] = options.max_output_tokens

        prompt_tokens = math.ceil(len(prompt) / CHARS_PER_TOKEN)
        start = time.perf_counter()
        try:
            response = await self.client.post(f"{self.base_url}/api/generate", json=payload)
            response.raise_for_status()
            text = response.json().get("response", "")
        except httpx.TimeoutException as e:
            self._log_call(prompt_tokens, start, False, "timeout")
            raise StageTimeoutError(f"Ollama request timed out: {e}") from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            self._log_call(prompt_tokens, start, False, f"HTTP {status}")
            if status == 429:
                retry_after = parse_retry_after(e.response.headers.get("retry-after"))
                raise RateLimitError(retry_after) from e
            raise ProviderError(
                f"Ollama returned HTTP {status}",
                details={"status_code": status},
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            self._log_call(prompt_tokens, start, False, str(e))
            raise ProviderError(f"Ollama request failed: {e}") from e

        if not text.strip():
            self._log_call(prompt_tokens, start, False, "empty response")
            raise ContentFilterError("Ollama returned an empty response")

        self._log_call(prompt_tokens, start, True)
        return text

    def _log_call(self, prompt_tokens: int, start: float, success: bool, error: Optional[str] = None):
        logger.generation_call(
            provider=self.name,
            model=self.model,
            prompt_tokens=prompt_tokens,
            latency_ms=(time.perf_counter() - start) * 1000,
            success=success,
            error=error,
        )

    async def health_check(self) -> bool:
        """Checks if the Ollama server is up and responding."""
        try:
            response = await self.client.get(f"{self.base_url}/api/tags")
            response.raise_for_status()
            return True
        except httpx.HTTPError:
            return False

    async def aclose(self):
        """Closes the underlying HTTP client."""
        await self.client.aclose()
