"""Creator Vetting Pipeline - AI Client
Copyright (c) 2026 beautifulplanet
Licensed under MIT License

Thin provider-agnostic wrapper over the Anthropic and OpenAI SDKs used by
the brand detector, the thumbnail pre-screener and image analysis.

Provider selection:
  auto:       Anthropic if a key is set, else OpenAI, else heuristic
  anthropic:  Claude (Sonnet for full calls, Haiku for cheap calls)
  openai:     GPT-4o / GPT-4o-mini
  heuristic:  no model calls; callers fall back to local rules
"""

import re
import json
import base64
import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

import httpx
from anthropic import AsyncAnthropic
from openai import AsyncOpenAI

from config import RetryConfig
from errors import AnalysisError, ConfigError

logger = logging.getLogger(__name__)

DEFAULT_MODELS = {
    "anthropic": ("claude-sonnet-4-20250514", "claude-3-5-haiku-20241022"),
    "openai": ("gpt-4o", "gpt-4o-mini"),
}

RATE_LIMIT_STATUS_CODES = {429, 529}
RATE_LIMIT_MESSAGES = ("rate limit", "rate_limit", "overloaded")

IMAGE_FETCH_TIMEOUT = 10.0          # Seconds
DEFAULT_IMAGE_MEDIA_TYPE = "image/jpeg"
SUPPORTED_IMAGE_MEDIA_TYPES = {"image/jpeg", "image/png", "image/gif", "image/webp"}

JSON_OBJECT_PATTERN = re.compile(r"\{[\s\S]*\}")
JSON_ARRAY_PATTERN = re.compile(r"\[[\s\S]*\]")


@dataclass(frozen=True)
class ImageInput:
    media_type: str     # e.g. "image/jpeg"
    data: str           # base64, no data: prefix


async def load_image(
    url: str,
    http_client: Optional[httpx.AsyncClient] = None,
    timeout: float = IMAGE_FETCH_TIMEOUT,
) -> ImageInput:
    """Download an image and base64-encode it for a vision call."""
    if http_client is not None:
        response = await http_client.get(url, timeout=timeout, follow_redirects=True)
    else:
        async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as client:
            response = await client.get(url)
    response.raise_for_status()

    media_type = response.headers.get("content-type", DEFAULT_IMAGE_MEDIA_TYPE).split(";")[0].strip().lower()
    if media_type not in SUPPORTED_IMAGE_MEDIA_TYPES:
        media_type = DEFAULT_IMAGE_MEDIA_TYPE
    return ImageInput(media_type=media_type, data=base64.b64encode(response.content).decode("ascii"))


def is_rate_limited(error: Exception) -> bool:
    """True for 429/529 responses and rate-limit/overload messages."""
    status = getattr(error, "status_code", None)
    if status in RATE_LIMIT_STATUS_CODES:
        return True
    message = str(error).lower()
    return any(marker in message for marker in RATE_LIMIT_MESSAGES)


def strip_code_fences(text: str) -> str:
    """Remove a surrounding ```json fence if the model added one."""
    text = text.strip()
    if text.startswith("```"):
        text = text.split("```")[1]
        if text.startswith("json"):
            text = text[4:]
    return text.strip()


def extract_json_object(text: str) -> dict:
    """Parse the first {...} block in a model response."""
    match = JSON_OBJECT_PATTERN.search(strip_code_fences(text))
    if not match:
        raise ValueError("No JSON object found in response")
    result = json.loads(match.group())
    if not isinstance(result, dict):
        raise ValueError("Response JSON is not an object")
    return result


def extract_json_array(text: str) -> list:
    """Parse the first [...] block in a model response."""
    match = JSON_ARRAY_PATTERN.search(strip_code_fences(text))
    if not match:
        raise ValueError("No JSON array found in response")
    result = json.loads(match.group())
    if not isinstance(result, list):
        raise ValueError("Response JSON is not an array")
    return result


class AIClient:
    """
    Shared LLM access for the analysis tiers.

    Rate-limit and overload errors are retried with exponential backoff
    (base_delay * 2^attempt) up to `retry.max_retries`; any other error, or
    exhausting the budget, raises AnalysisError.
    """

    def __init__(
        self,
        anthropic_api_key: Optional[str] = None,
        openai_api_key: Optional[str] = None,
        provider: str = "auto",
        model: Optional[str] = None,
        fast_model: Optional[str] = None,
        retry: Optional[RetryConfig] = None,
        timeout: float = 30.0,
    ):
        self.anthropic_api_key = anthropic_api_key
        self.openai_api_key = openai_api_key
        self.retry = retry or RetryConfig()
        self.timeout = timeout
        self._anthropic_client = None
        self._openai_client = None

        if provider == "auto":
            if anthropic_api_key:
                self.provider = "anthropic"
            elif openai_api_key:
                self.provider = "openai"
            else:
                self.provider = "heuristic"
        else:
            self.provider = provider

        default_model, default_fast = DEFAULT_MODELS.get(self.provider, ("heuristic", "heuristic"))
        self.model = model or default_model
        self.fast_model = fast_model or default_fast

        self._init_clients()
        logger.info(f"AI client initialized: provider={self.provider}, model={self.model}, fast_model={self.fast_model}")

    def _init_clients(self) -> None:
        """Create the SDK client for the selected provider."""
        # SDK retries are disabled; retry budget comes from RetryConfig
        if self.provider == "anthropic" and self.anthropic_api_key:
            self._anthropic_client = AsyncAnthropic(
                api_key=self.anthropic_api_key, max_retries=0, timeout=self.timeout,
            )
        elif self.provider == "openai" and self.openai_api_key:
            self._openai_client = AsyncOpenAI(
                api_key=self.openai_api_key, max_retries=0, timeout=self.timeout,
            )
        elif self.provider != "heuristic":
            logger.warning(f"AI provider '{self.provider}' selected without an API key; using heuristic mode")
            self.provider = "heuristic"
            self.model = self.fast_model = "heuristic"

    @property
    def is_ai_enabled(self) -> bool:
        """Check if an AI provider is available."""
        return self._anthropic_client is not None or self._openai_client is not None

    # ------------------------------------------------------------------ #
    #  Completion entry point                                            #
    # ------------------------------------------------------------------ #

    async def complete(
        self,
        system: str,
        prompt: str,
        *,
        max_tokens: int = 1024,
        image: Optional[ImageInput] = None,
        fast: bool = False,
    ) -> str:
        """
        Run one completion and return the response text.

        Raises:
            ConfigError: no provider is configured.
            AnalysisError: the call failed after the retry budget.
        """
        if not self.is_ai_enabled:
            raise ConfigError("No AI provider configured")

        model = self.fast_model if fast else self.model
        max_retries = self.retry.max_retries

        for attempt in range(max_retries + 1):
            try:
                if self._anthropic_client is not None:
                    return await self._complete_with_anthropic(model, system, prompt, max_tokens, image)
                return await self._complete_with_openai(model, system, prompt, max_tokens, image)
            except Exception as e:
                if is_rate_limited(e) and attempt < max_retries:
                    delay = self.retry.base_delay_seconds * (2 ** attempt)
                    logger.warning(
                        f"{self.provider} rate limited, retry {attempt + 1}/{max_retries} in {delay:.1f}s"
                    )
                    await asyncio.sleep(delay)
                    continue
                raise AnalysisError(f"{self.provider} call failed: {e}") from e

        raise AnalysisError(f"{self.provider} call failed after {max_retries} retries")

    async def _complete_with_anthropic(
        self, model: str, system: str, prompt: str, max_tokens: int, image: Optional[ImageInput],
    ) -> str:
        content: list[dict] = []
        if image is not None:
            content.append({
                "type": "image",
                "source": {"type": "base64", "media_type": image.media_type, "data": image.data},
            })
        content.append({"type": "text", "text": prompt})

        response = await self._anthropic_client.messages.create(
            model=model,
            max_tokens=max_tokens,
            system=system,
            messages=[{"role": "user", "content": content}],
            temperature=0.1,
        )
        return "".join(block.text for block in response.content if getattr(block, "type", "text") == "text")

    async def _complete_with_openai(
        self, model: str, system: str, prompt: str, max_tokens: int, image: Optional[ImageInput],
    ) -> str:
        if image is not None:
            user_content: object = [
                {"type": "image_url", "image_url": {"url": f"data:{image.media_type};base64,{image.data}"}},
                {"type": "text", "text": prompt},
            ]
        else:
            user_content = prompt

        response = await self._openai_client.chat.completions.create(
            model=model,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": user_content},
            ],
            temperature=0.1,
            max_tokens=max_tokens,
        )
        return response.choices[0].message.content or ""
