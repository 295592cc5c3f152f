"""HTTP gateway to hosted LLM completion APIs, used by the LLM forecast scorer."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

import httpx

from marketpulse.ratelimit import SlidingWindowLimiter

logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "2023-06-01"


@dataclass
class LLMResponse:
    content: str
    provider: str


@dataclass
class ProviderConfig:
    name: str
    base_url: str
    api_key: str
    default_model: str
    rpm_limit: int = 60
    timeout_seconds: int = 30
    max_retries: int = 3

    @property
    def is_anthropic(self) -> bool:
        return self.name == "anthropic"


# name -> (config attribute holding the key, base url, default model, rpm, timeout)
KNOWN_PROVIDERS = {
    "openai": ("openai_api_key", "https://api.openai.com/v1", "gpt-4o-mini", 60, 30),
    "anthropic": ("anthropic_api_key", "https://api.anthropic.com/v1", "claude-sonnet-4-5-20250929", 60, 60),
    "groq": ("groq_api_key", "https://api.groq.com/openai/v1", "llama-3.3-70b-versatile", 30, 15),
    "deepseek": ("deepseek_api_key", "https://api.deepseek.com/v1", "deepseek-chat", 60, 60),
}


def build_request(
    config: ProviderConfig,
    model: str,
    system_prompt: str,
    user_prompt: str,
    max_tokens: int,
    temperature: float,
) -> tuple[str, dict, dict]:
    """Return (url, headers, body) in the provider's wire format."""
    body = {"model": model, "max_tokens": max_tokens, "temperature": temperature}
    if config.is_anthropic:
        body["system"] = system_prompt
        body["messages"] = [{"role": "user", "content": user_prompt}]
        headers = {"x-api-key": config.api_key, "anthropic-version": ANTHROPIC_VERSION}
        return f"{config.base_url}/messages", headers, body

    body["messages"] = [
        {"role": "system", "content": system_prompt},
        {"role": "user", "content": user_prompt},
    ]
    headers = {"Authorization": f"Bearer {config.api_key}"}
    return f"{config.base_url}/chat/completions", headers, body


def extract_content(config: ProviderConfig, data: dict) -> str:
    """Pull the completion text out of a provider reply."""
    if config.is_anthropic:
        return "".join(
            block.get("text", "")
            for block in data.get("content", [])
            if block.get("type") == "text"
        )
    return data["choices"][0]["message"]["content"]


class LLMGateway:
    """Registry of LLM providers with per-provider pacing and retries.

    Providers speak the OpenAI-compatible chat completions format, except
    Anthropic which uses its Messages API.
    """

    def __init__(self) -> None:
        self._providers: dict[str, ProviderConfig] = {}
        self._limiters: dict[str, SlidingWindowLimiter] = {}
        self._client: httpx.AsyncClient | None = None

    def register_provider(self, config: ProviderConfig) -> None:
        self._providers[config.name] = config
        self._limiters[config.name] = SlidingWindowLimiter(rpm_limit=config.rpm_limit)

    @property
    def providers(self) -> list[str]:
        return list(self._providers)

    def default_provider(self, preferred: str = "") -> str | None:
        """The preferred provider if registered, else the first one registered."""
        if preferred and preferred in self._providers:
            return preferred
        return next(iter(self._providers), None)

    async def start(self) -> None:
        self._client = httpx.AsyncClient(timeout=httpx.Timeout(120.0))

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def call(
        self,
        provider: str,
        system_prompt: str,
        user_prompt: str,
        model: str | None = None,
        max_tokens: int = 1000,
        temperature: float = 0.3,
    ) -> LLMResponse:
        """Send one prompt, retrying transport and HTTP errors with 1s, 2s, 4s... backoff."""
        config = self._providers.get(provider)
        if config is None:
            raise ValueError(f"Unknown provider: {provider}")
        if not self._client:
            await self.start()

        url, headers, body = build_request(
            config, model or config.default_model, system_prompt, user_prompt,
            max_tokens, temperature,
        )
        await self._limiters[provider].acquire()

        last_error: Exception | None = None
        for attempt in range(config.max_retries):
            try:
                response = await self._client.post(
                    url, json=body, headers=headers, timeout=config.timeout_seconds
                )
                response.raise_for_status()
                return LLMResponse(extract_content(config, response.json()), provider)
            except (httpx.HTTPStatusError, httpx.RequestError) as e:
                last_error = e
                if attempt < config.max_retries - 1:
                    wait = 2**attempt
                    logger.warning(
                        "Provider %s attempt %d failed: %s. Retrying in %ds",
                        provider, attempt + 1, e, wait,
                    )
                    await asyncio.sleep(wait)

        raise RuntimeError(
            f"Provider {provider} failed after {config.max_retries} retries: {last_error}"
        )

    @classmethod
    def from_config(cls, config) -> LLMGateway:
        """Register every known provider whose API key is set in the config."""
        gw = cls()
        for name, (key_attr, base_url, model, rpm, timeout) in KNOWN_PROVIDERS.items():
            api_key = getattr(config, key_attr, "")
            if not api_key:
                continue
            gw.register_provider(
                ProviderConfig(
                    name=name,
                    base_url=base_url,
                    api_key=api_key,
                    default_model=model,
                    rpm_limit=rpm,
                    timeout_seconds=timeout,
                    max_retries=2,
                )
            )
        logger.info("LLM gateway providers: %s", ", ".join(gw.providers) or "none")
        return gw
