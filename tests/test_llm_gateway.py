"""Tests for the two-tier provider gateway."""

import asyncio

import pytest

from proposal_forge.ai_processing.llm_manager import ProviderTier, make_cache_key
from proposal_forge.config import LLMConfig
from proposal_forge.errors import FatalProviderError, GenerationCancelledError, TransientProviderError
from proposal_forge.utils import CancellationToken

from conftest import FakeProvider, fatal, make_gateway, ok, transient


@pytest.mark.asyncio
async def test_transient_failures_are_retried():
    provider = FakeProvider(script=[transient(503), transient(429), ok("done")])
    gateway = make_gateway(provider)

    result = await gateway.complete(ProviderTier.GENERATION, "Write something")

    assert result.text == "done"
    assert result.attempts == 3
    assert len(provider.calls) == 3


@pytest.mark.asyncio
async def test_exhausted_retries_raise_transient_error():
    provider = FakeProvider(script=[transient(), transient(), transient(), ok("too late")])
    gateway = make_gateway(provider)

    with pytest.raises(TransientProviderError) as exc_info:
        await gateway.complete(ProviderTier.GENERATION, "Write something")

    assert exc_info.value.attempts == 3
    assert exc_info.value.tier == "generation"
    assert len(provider.calls) == 3


@pytest.mark.asyncio
async def test_fatal_error_is_not_retried():
    provider = FakeProvider(script=[fatal(401), ok("never used")])
    gateway = make_gateway(provider)

    with pytest.raises(FatalProviderError) as exc_info:
        await gateway.complete(ProviderTier.EXTRACTION, "Analyze")

    assert exc_info.value.status_code == 401
    assert len(provider.calls) == 1


@pytest.mark.asyncio
async def test_tiers_route_to_their_models():
    provider = FakeProvider(script=[ok("a"), ok("b")])
    gateway = make_gateway(provider)
    config = LLMConfig()

    await gateway.complete(ProviderTier.EXTRACTION, "Analyze")
    await gateway.complete(ProviderTier.GENERATION, "Write")

    assert provider.calls[0]["model"] == config.extraction_model
    assert provider.calls[1]["model"] == config.generation_model
    assert provider.calls[0]["max_tokens"] == config.extraction_max_tokens


@pytest.mark.asyncio
async def test_extraction_cache_hit_is_free():
    provider = FakeProvider(script=[ok('{"requirements": []}', prompt_tokens=900, completion_tokens=50)])
    gateway = make_gateway(provider)
    key = make_cache_key("analysis", "Some   JOB post")

    first = await gateway.complete(ProviderTier.EXTRACTION, "Analyze", cache_key=key)
    second = await gateway.complete(
        ProviderTier.EXTRACTION, "Analyze", cache_key=make_cache_key("analysis", "some job post")
    )

    assert first.cost > 0
    assert not first.cached
    assert second.cached
    assert second.cost == 0.0
    assert second.attempts == 0
    assert second.text == first.text
    assert len(provider.calls) == 1
    assert gateway.cache_hits == 1
    assert gateway.cache_misses == 1


@pytest.mark.asyncio
async def test_cleared_cache_calls_provider_again():
    provider = FakeProvider(script=[ok("first"), ok("second")])
    gateway = make_gateway(provider)

    await gateway.complete(ProviderTier.EXTRACTION, "Analyze", cache_key="k")
    gateway.clear_cache()
    result = await gateway.complete(ProviderTier.EXTRACTION, "Analyze", cache_key="k")

    assert result.text == "second"
    assert not result.cached
    assert len(provider.calls) == 2


@pytest.mark.asyncio
async def test_generation_tier_cannot_be_cached():
    gateway = make_gateway(FakeProvider())

    with pytest.raises(ValueError):
        await gateway.complete(ProviderTier.GENERATION, "Write", cache_key="abc")


@pytest.mark.asyncio
async def test_failed_calls_are_not_cached():
    provider = FakeProvider(script=[fatal(400), ok("fresh")])
    gateway = make_gateway(provider)

    with pytest.raises(FatalProviderError):
        await gateway.complete(ProviderTier.EXTRACTION, "Analyze", cache_key="k")
    result = await gateway.complete(ProviderTier.EXTRACTION, "Analyze", cache_key="k")

    assert result.text == "fresh"
    assert not result.cached


@pytest.mark.asyncio
async def test_cancellation_aborts_in_flight_request():
    provider = FakeProvider(delay=5.0)
    gateway = make_gateway(provider)
    token = CancellationToken()

    async def cancel_soon():
        await asyncio.sleep(0.05)
        token.cancel()

    canceller = asyncio.ensure_future(cancel_soon())
    with pytest.raises(GenerationCancelledError):
        await asyncio.wait_for(gateway.complete(ProviderTier.GENERATION, "Write", cancel_token=token), timeout=2.0)
    await canceller

    assert provider.cancelled_calls == 1


@pytest.mark.asyncio
async def test_cancelled_token_prevents_call():
    provider = FakeProvider()
    gateway = make_gateway(provider)
    token = CancellationToken()
    token.cancel()

    with pytest.raises(GenerationCancelledError):
        await gateway.complete(ProviderTier.GENERATION, "Write", cancel_token=token)

    assert provider.calls == []


def test_estimate_is_upper_bound_of_actual_cost():
    gateway = make_gateway(FakeProvider())
    prompt = "x" * 4000
    settings = gateway.get_tier(ProviderTier.GENERATION)

    estimate = gateway.estimate_cost(ProviderTier.GENERATION, prompt)
    expected = (1000 * settings.input_price + settings.max_tokens * settings.output_price) / 1000

    assert estimate == pytest.approx(expected)


def test_provider_info_reports_tiers():
    info = make_gateway(FakeProvider()).get_provider_info()

    assert info["available"] is True
    assert set(info["tiers"]) == {"extraction", "generation"}
    assert info["retry"]["max_attempts"] == 3
