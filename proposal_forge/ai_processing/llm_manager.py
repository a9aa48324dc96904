"""
LLM Manager - two-tier gateway over a text-completion provider.

The extraction tier is a fast, cheap model used for structured analysis;
its responses are cached by a normalized input hash. The generation tier is
a higher-quality model used for proposal text and is never cached. Both
tiers share one provider implementation, retry policy and cancellation
handling.
"""

import asyncio
import hashlib
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Dict, Optional, Any
from dataclasses import dataclass
from enum import Enum
import aiohttp

from ..config import get_llm_config, LLMConfig
from ..errors import FatalProviderError, TransientProviderError
from ..utils import get_gateway_logger, CancellationToken, RetryPolicy, with_retry, run_cancellable

logger = get_gateway_logger()

# Rough chars-per-token ratio used for pre-call estimates
CHARS_PER_TOKEN = 4

class ProviderTier(Enum):
    """Cost/latency tiers of the completion provider."""
    EXTRACTION = "extraction"
    GENERATION = "generation"

@dataclass
class LLMResponse:
    """Standardized response from completion providers."""
    success: bool
    content: str = ""
    model: str = ""
    usage: Optional[Dict[str, int]] = None
    finish_reason: Optional[str] = None
    error: Optional[str] = None
    status_code: Optional[int] = None
    transient: bool = False

@dataclass
class TierSettings:
    """Model and pricing for one tier. Prices are USD per 1k tokens."""
    model: str
    temperature: float
    max_tokens: int
    input_price: float
    output_price: float

@dataclass
class CompletionResult:
    """Successful gateway completion."""
    text: str
    tier: ProviderTier
    model: str
    usage: Dict[str, int]
    cost: float
    cached: bool = False
    attempts: int = 1

class CompletionProvider(ABC):
    """Abstract base class for text-completion providers."""

    @abstractmethod
    async def generate_text(self, prompt: str, system_prompt: str = "", model: Optional[str] = None,
                            max_tokens: int = 1024, temperature: float = 0.7) -> LLMResponse:
        """Generate a completion. Failures are reported, not raised."""
        pass

    @abstractmethod
    def is_available(self) -> bool:
        """Check if the provider is configured."""
        pass

    @abstractmethod
    def get_model_name(self) -> str:
        """Get the default model name."""
        pass

class OpenRouterProvider(CompletionProvider):
    """OpenAI-compatible chat completions over aiohttp (OpenRouter by default)."""

    TRANSIENT_STATUS = {408, 409, 425, 429, 500, 502, 503, 504, 529}

    def __init__(self, config: LLMConfig):
        self.config = config
        self.base_url = config.base_url.rstrip("/")
        self.headers = {
            "Authorization": f"Bearer {config.openrouter_api_key}",
            "HTTP-Referer": "http://localhost",
            "X-Title": "Proposal Forge",
            "Content-Type": "application/json"
        }

    def _is_transient_status(self, status: int) -> bool:
        return status in self.TRANSIENT_STATUS or status >= 500

    async def generate_text(self, prompt: str, system_prompt: str = "", model: Optional[str] = None,
                            max_tokens: int = 1024, temperature: float = 0.7) -> LLMResponse:
        """Generate text response using the chat completions API."""
        if not self.config.openrouter_api_key:
            return LLMResponse(
                success=False,
                error="OpenRouter API key not configured",
                status_code=401
            )

        model = model or self.get_model_name()
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        payload = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens
        }

        timeout = aiohttp.ClientTimeout(total=self.config.request_timeout_seconds)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(
                    f"{self.base_url}/chat/completions",
                    headers=self.headers,
                    json=payload
                ) as response:
                    if response.status == 200:
                        data = await response.json()
                        try:
                            choice = data["choices"][0]
                            content = choice["message"]["content"] or ""
                        except (KeyError, IndexError, TypeError):
                            return LLMResponse(
                                success=False,
                                model=model,
                                error="Malformed completion payload",
                                status_code=response.status,
                                transient=True
                            )

                        return LLMResponse(
                            success=True,
                            content=content,
                            model=data.get("model", model),
                            usage=data.get("usage") or {},
                            finish_reason=choice.get("finish_reason"),
                            status_code=response.status
                        )

                    error_text = await response.text()
                    return LLMResponse(
                        success=False,
                        model=model,
                        error=f"Provider API error {response.status}: {error_text[:300]}",
                        status_code=response.status,
                        transient=self._is_transient_status(response.status)
                    )

        except asyncio.TimeoutError:
            return LLMResponse(success=False, model=model, error="Provider request timed out", transient=True)
        except aiohttp.ClientError as e:
            return LLMResponse(success=False, model=model, error=f"Provider connection error: {e}", transient=True)

    def is_available(self) -> bool:
        """Check if the API key is configured."""
        return bool(self.config.openrouter_api_key)

    def get_model_name(self) -> str:
        """Get the generation model name."""
        return self.config.generation_model

def make_cache_key(*parts: Any) -> str:
    """Hash of whitespace-collapsed, lower-cased parts."""
    normalized = "\x1f".join(" ".join(str(part).split()).lower() for part in parts)
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()

def estimate_tokens(text: str) -> int:
    return max(1, -(-len(text) // CHARS_PER_TOKEN))

class LLMGateway:
    """Routes completions to a tier with retries, cancellation and caching."""

    def __init__(self,
                 provider: Optional[CompletionProvider] = None,
                 config: Optional[LLMConfig] = None,
                 retry_policy: Optional[RetryPolicy] = None):
        self.config = config or get_llm_config()
        self.provider = provider or OpenRouterProvider(self.config)
        self.retry_policy = retry_policy or RetryPolicy.from_llm_config(self.config)
        self.tiers = {
            ProviderTier.EXTRACTION: TierSettings(
                model=self.config.extraction_model,
                temperature=self.config.extraction_temperature,
                max_tokens=self.config.extraction_max_tokens,
                input_price=self.config.extraction_input_price,
                output_price=self.config.extraction_output_price
            ),
            ProviderTier.GENERATION: TierSettings(
                model=self.config.generation_model,
                temperature=self.config.generation_temperature,
                max_tokens=self.config.generation_max_tokens,
                input_price=self.config.generation_input_price,
                output_price=self.config.generation_output_price
            ),
        }
        self._cache: "OrderedDict[str, CompletionResult]" = OrderedDict()
        self._cache_size = self.config.extraction_cache_size
        self.cache_hits = 0
        self.cache_misses = 0

    def get_tier(self, tier: ProviderTier) -> TierSettings:
        return self.tiers[tier]

    def estimate_cost(self, tier: ProviderTier, prompt: str, max_tokens: Optional[int] = None,
                      system_prompt: str = "") -> float:
        """
        Upper-bound cost estimate for one call.

        Input tokens are estimated from character length; output is priced
        at the full ``max_tokens`` so the estimate is never below the
        actual charge of a well-behaved provider.
        """
        settings = self.tiers[tier]
        input_tokens = estimate_tokens(system_prompt + prompt)
        output_tokens = max_tokens or settings.max_tokens
        return (input_tokens * settings.input_price + output_tokens * settings.output_price) / 1000

    def _actual_cost(self, tier: ProviderTier, response: LLMResponse, prompt: str, system_prompt: str) -> float:
        settings = self.tiers[tier]
        usage = response.usage or {}
        input_tokens = usage.get("prompt_tokens") or estimate_tokens(system_prompt + prompt)
        output_tokens = usage.get("completion_tokens") or estimate_tokens(response.content)
        return (input_tokens * settings.input_price + output_tokens * settings.output_price) / 1000

    def _cache_get(self, cache_key: str) -> Optional[CompletionResult]:
        result = self._cache.get(cache_key)
        if result is None:
            return None
        self._cache.move_to_end(cache_key)
        return result

    def _cache_put(self, cache_key: str, result: CompletionResult) -> None:
        self._cache[cache_key] = result
        self._cache.move_to_end(cache_key)
        while len(self._cache) > self._cache_size:
            self._cache.popitem(last=False)

    def clear_cache(self) -> None:
        self._cache.clear()

    async def complete(self,
                       tier: ProviderTier,
                       prompt: str,
                       max_tokens: Optional[int] = None,
                       cancel_token: Optional[CancellationToken] = None,
                       system_prompt: str = "",
                       cache_key: Optional[str] = None,
                       temperature: Optional[float] = None) -> CompletionResult:
        """
        Run one completion on ``tier``.

        Args:
            tier: Provider tier
            prompt: User prompt
            max_tokens: Output cap, defaults to the tier setting
            cancel_token: Aborts the in-flight request when cancelled
            system_prompt: Optional system prompt
            cache_key: Extraction tier only; see make_cache_key
            temperature: Overrides the tier temperature

        Raises:
            ValueError: cache_key given for the generation tier
            TransientProviderError: transient failures on every attempt
            FatalProviderError: non-retryable provider failure
            GenerationCancelledError: token cancelled
        """
        if cache_key is not None and tier != ProviderTier.EXTRACTION:
            raise ValueError("Only extraction-tier completions may be cached")

        if cancel_token is not None:
            cancel_token.raise_if_cancelled()

        if cache_key is not None:
            cached = self._cache_get(cache_key)
            if cached is not None:
                self.cache_hits += 1
                logger.debug("Extraction cache hit", cache_key=cache_key[:12])
                return CompletionResult(
                    text=cached.text,
                    tier=cached.tier,
                    model=cached.model,
                    usage=dict(cached.usage),
                    cost=0.0,
                    cached=True,
                    attempts=0
                )
            self.cache_misses += 1

        settings = self.tiers[tier]
        max_tokens = max_tokens or settings.max_tokens
        temperature = settings.temperature if temperature is None else temperature

        async def attempt_call(attempt: int) -> CompletionResult:
            response = await run_cancellable(
                self.provider.generate_text(
                    prompt,
                    system_prompt=system_prompt,
                    model=settings.model,
                    max_tokens=max_tokens,
                    temperature=temperature
                ),
                cancel_token
            )

            if response.success:
                return CompletionResult(
                    text=response.content,
                    tier=tier,
                    model=response.model or settings.model,
                    usage=response.usage or {},
                    cost=self._actual_cost(tier, response, prompt, system_prompt),
                    attempts=attempt
                )

            if response.transient:
                raise TransientProviderError(response.error or "Transient provider failure",
                                             tier=tier.value, status_code=response.status_code)

            logger.error(f"Fatal provider error on {tier.value} tier: {response.error}",
                         status_code=response.status_code)
            raise FatalProviderError(response.error or "Provider request failed",
                                     tier=tier.value, status_code=response.status_code)

        result = await with_retry(
            attempt_call,
            self.retry_policy,
            cancel_token=cancel_token,
            description=f"{tier.value} completion"
        )

        logger.info(
            f"Completed {tier.value} call",
            model=result.model,
            attempts=result.attempts,
            cost=round(result.cost, 6),
            output_chars=len(result.text)
        )

        if cache_key is not None:
            self._cache_put(cache_key, result)

        return result

    def get_provider_info(self) -> Dict[str, Any]:
        """Get information about the provider and tiers."""
        return {
            "available": self.provider.is_available(),
            "tiers": {tier.value: settings.model for tier, settings in self.tiers.items()},
            "retry": self.retry_policy.to_dict(),
            "cache_entries": len(self._cache),
            "cache_hits": self.cache_hits,
            "cache_misses": self.cache_misses,
        }

# Global gateway instance
_llm_gateway = None

def get_llm_gateway() -> LLMGateway:
    """Get the global gateway instance."""
    global _llm_gateway
    if _llm_gateway is None:
        _llm_gateway = LLMGateway()
    return _llm_gateway
