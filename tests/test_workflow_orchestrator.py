"""Tests for the generation orchestrator and the proposal service."""

import asyncio
import json
import random
from unittest.mock import AsyncMock

import pytest

from proposal_forge import workflow_orchestrator
from proposal_forge.ai_processing.cost_ledger import CostLedger
from proposal_forge.ai_processing.llm_manager import ProviderTier
from proposal_forge.config import BudgetConfig, LLMConfig, VoiceConfig
from proposal_forge.errors import (
    AlreadyInProgressError,
    BudgetExceededError,
    FatalProviderError,
    GenerationCancelledError,
    JobPostTooShortError,
    ProposalNotFoundError,
    RehumanizeLimitError,
)
from proposal_forge.proposal_composer import HumanizationIntensity, TemplateSelector
from proposal_forge.scoring import QualityCategory, score
from proposal_forge.utils import CancellationToken
from proposal_forge.voice_profile import MaturityStage, VoiceProfile, VoiceProfileDelta
from proposal_forge.voice_profile.manager import VoiceProfileManager
from proposal_forge.workflow_orchestrator import GenerationOrchestrator, ProposalService

from conftest import FakeProvider, SAMPLE_ANALYSIS, SAMPLE_JOB_POST, SAMPLE_PROPOSAL, fatal, make_gateway, ok

# FakeProvider bills each analysis at 500 prompt and 120 completion tokens
EXTRACTION_COST = (500 * LLMConfig().extraction_input_price + 120 * LLMConfig().extraction_output_price) / 1000


def make_orchestrator(provider, ceiling=5.0, allow_degraded=False, db_manager=None, voice_config=None):
    voice_config = voice_config or VoiceConfig()
    return GenerationOrchestrator(
        gateway=make_gateway(provider),
        ledger=CostLedger(ceiling=ceiling, period="monthly", db_manager=db_manager),
        voice_manager=VoiceProfileManager(db_manager, voice_config),
        selector=TemplateSelector(random.Random(7)),
        db_manager=db_manager,
        budget_config=BudgetConfig(ceiling=ceiling, allow_degraded=allow_degraded),
        voice_config=voice_config
    )


def estimates(orchestrator, text=SAMPLE_JOB_POST):
    """Full and degraded reservation amounts for a cold profile."""
    snapshot = VoiceProfile(user_id="estimate")
    intensity = HumanizationIntensity.MEDIUM
    extraction = orchestrator.analyzer.estimate_cost(text)
    full = extraction + orchestrator._estimate_generation(ProviderTier.GENERATION, snapshot, intensity, text)
    degraded = extraction + orchestrator._estimate_generation(ProviderTier.EXTRACTION, snapshot, intensity, text)
    return full, degraded


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def orchestrator(provider):
    return make_orchestrator(provider)


@pytest.fixture
def service(orchestrator, db_manager):
    return ProposalService(orchestrator, db_manager=db_manager)


@pytest.mark.asyncio
async def test_generation_produces_scored_proposal(orchestrator, provider):
    events = []
    orchestrator.add_progress_callback(lambda event, data: events.append(event))

    proposal = await orchestrator.generate(SAMPLE_JOB_POST, "alex", "session-1")

    assert proposal.text == SAMPLE_PROPOSAL
    assert proposal.generated_text == SAMPLE_PROPOSAL
    assert proposal.quality_score == score(SAMPLE_PROPOSAL, proposal.request.job_analysis, proposal.template_id)
    assert proposal.quality_score.aggregate >= 7.5
    assert proposal.quality_score.personalization >= 8.0
    assert not proposal.is_degraded
    assert events == ["generation_started", "analyzing", "composing", "generating", "generation_completed"]

    config = LLMConfig()
    assert len(provider.calls_for(config.extraction_model)) == 1
    assert len(provider.calls_for(config.generation_model)) == 1
    assert "[JOB_CONTENT_DELIMITER_START]" in provider.calls_for(config.generation_model)[0]["prompt"]

    assert orchestrator.ledger.committed == pytest.approx(proposal.generation_cost)
    assert proposal.generation_cost > 0
    assert orchestrator.ledger.get_status()["outstanding_reservations"] == 0
    assert not orchestrator.is_in_progress("session-1")


@pytest.mark.asyncio
async def test_generation_advances_profile_but_keeps_snapshot(orchestrator):
    proposal = await orchestrator.generate(SAMPLE_JOB_POST, "alex", "session-1")

    profile = orchestrator.voice_manager.get_profile("alex")
    assert profile.completed_generations == 1
    assert profile.maturity == MaturityStage.CALIBRATING
    assert proposal.request.voice_snapshot.maturity == MaturityStage.COLD


@pytest.mark.asyncio
async def test_cancel_during_generation_releases_unspent_budget(provider):
    provider.generation_delay = 5.0
    orchestrator = make_orchestrator(provider)
    token = CancellationToken()
    events = []
    orchestrator.add_progress_callback(lambda event, data: events.append(event))

    async def cancel_when_generating():
        while "generating" not in events:
            await asyncio.sleep(0.01)
        token.cancel()

    canceller = asyncio.ensure_future(cancel_when_generating())
    with pytest.raises(GenerationCancelledError):
        await asyncio.wait_for(orchestrator.generate(SAMPLE_JOB_POST, "alex", "session-1", token), timeout=2.0)
    await canceller

    assert provider.cancelled_calls == 1
    assert orchestrator.ledger.committed == pytest.approx(EXTRACTION_COST)
    assert orchestrator.ledger.get_status()["reserved"] == 0.0
    assert orchestrator.proposals == {}
    assert orchestrator.voice_manager.get_profile("alex").completed_generations == 0
    assert events[-1] == "generation_cancelled"
    assert not orchestrator.is_in_progress("session-1")


@pytest.mark.asyncio
async def test_failed_generation_still_charges_extraction():
    provider = FakeProvider(script=[
        ok(json.dumps(SAMPLE_ANALYSIS), prompt_tokens=500, completion_tokens=120),
        fatal(400),
    ])
    orchestrator = make_orchestrator(provider)

    with pytest.raises(FatalProviderError):
        await orchestrator.generate(SAMPLE_JOB_POST, "alex", "session-1")

    status = orchestrator.ledger.get_status()
    assert orchestrator.ledger.committed == pytest.approx(EXTRACTION_COST)
    assert status["reserved"] == 0.0
    assert status["outstanding_reservations"] == 0
    assert orchestrator.proposals == {}


@pytest.mark.asyncio
async def test_second_generation_in_same_session_is_rejected(provider):
    provider.generation_delay = 0.2
    orchestrator = make_orchestrator(provider)

    first = asyncio.ensure_future(orchestrator.generate(SAMPLE_JOB_POST, "alex", "session-1"))
    await asyncio.sleep(0.01)

    with pytest.raises(AlreadyInProgressError):
        await orchestrator.generate(SAMPLE_JOB_POST, "alex", "session-1")
    other_session = await orchestrator.generate(SAMPLE_JOB_POST, "alex", "session-2")

    proposal = await first
    assert proposal.proposal_id != other_session.proposal_id
    assert len(orchestrator.proposals) == 2


@pytest.mark.asyncio
async def test_over_budget_generation_makes_no_provider_calls(provider):
    orchestrator = make_orchestrator(provider)
    full, _ = estimates(orchestrator)
    await orchestrator.ledger.set_ceiling(full * 0.5)

    with pytest.raises(BudgetExceededError):
        await orchestrator.generate(SAMPLE_JOB_POST, "alex", "session-1")

    assert provider.calls == []
    assert orchestrator.ledger.committed == 0.0


@pytest.mark.asyncio
async def test_degraded_generation_uses_extraction_tier(provider):
    orchestrator = make_orchestrator(provider, allow_degraded=True)
    full, degraded = estimates(orchestrator)
    assert degraded < full
    await orchestrator.ledger.set_ceiling((full + degraded) / 2)

    proposal = await orchestrator.generate(SAMPLE_JOB_POST, "alex", "session-1")

    assert proposal.is_degraded
    assert proposal.request.budget_check.tier == ProviderTier.EXTRACTION
    assert provider.calls_for(LLMConfig().generation_model) == []
    assert orchestrator.ledger.committed <= orchestrator.ledger.ceiling


@pytest.mark.asyncio
async def test_invalid_post_fails_before_reservation(orchestrator, provider):
    events = []
    orchestrator.add_progress_callback(lambda event, data: events.append((event, data)))

    with pytest.raises(JobPostTooShortError):
        await orchestrator.generate("Need a logo.", "alex", "session-1")

    assert provider.calls == []
    assert orchestrator.ledger.get_status()["reserved"] == 0.0
    assert events[-1][0] == "generation_failed"
    assert events[-1][1]["error_code"] == "job_post_too_short"


@pytest.mark.asyncio
async def test_record_edit_and_score(service):
    proposal = await service.generate_proposal(SAMPLE_JOB_POST, "alex", "session-1")
    original = proposal.quality_score

    assert service.record_edit_and_score(proposal.proposal_id, SAMPLE_PROPOSAL) is original
    assert proposal.edit_history == []

    generic = "I am writing to apply for this job. " + SAMPLE_PROPOSAL
    rescored = service.record_edit_and_score(proposal.proposal_id, generic)

    assert rescored.hook < original.hook
    assert proposal.text == generic
    assert len(proposal.edit_history) == 1
    assert proposal.quality_score is rescored


def test_record_edit_for_unknown_proposal(service):
    with pytest.raises(ProposalNotFoundError):
        service.record_edit_and_score("missing", "text")


@pytest.mark.asyncio
async def test_finalize_hands_latest_edit_to_voice_profile(service):
    proposal = await service.generate_proposal(SAMPLE_JOB_POST, "alex", "session-1")
    service.record_edit_and_score(proposal.proposal_id, SAMPLE_PROPOSAL.replace("Hi Maria,", "Hey Maria,", 1))
    service.record_edit_and_score(proposal.proposal_id, SAMPLE_PROPOSAL.replace("Hi Maria,", "Hello Maria,", 1))

    update = AsyncMock(return_value=VoiceProfileDelta())
    service.orchestrator.voice_manager.update = update

    delta = await service.finalize_proposal(proposal.proposal_id, save_history=True)

    assert delta.is_empty
    update.assert_awaited_once_with("alex", [proposal.edit_history[-1]])
    assert len(service.db_manager.get_proposals("alex")) == 1
    with pytest.raises(ProposalNotFoundError):
        service.orchestrator.get_proposal(proposal.proposal_id)


@pytest.mark.asyncio
async def test_finalize_without_edits_learns_nothing(service):
    proposal = await service.generate_proposal(SAMPLE_JOB_POST, "alex", "session-1")
    service.record_edit_and_score(proposal.proposal_id, SAMPLE_PROPOSAL.replace("fixed", "solved", 1))
    service.record_edit_and_score(proposal.proposal_id, SAMPLE_PROPOSAL)

    update = AsyncMock()
    service.orchestrator.voice_manager.update = update

    delta = await service.finalize_proposal(proposal.proposal_id)

    assert delta.is_empty
    update.assert_not_awaited()


@pytest.mark.asyncio
async def test_rehumanize_escalates_until_limit(service, provider):
    proposal = await service.generate_proposal(SAMPLE_JOB_POST, "alex", "session-1")
    service.record_edit_and_score(proposal.proposal_id, SAMPLE_PROPOSAL.replace("fixed", "solved", 1))
    committed_before = service.orchestrator.ledger.committed

    provider.proposal = SAMPLE_PROPOSAL.replace("Could we do a short call", "Can we hop on a quick call")
    updated = await service.rehumanize(proposal.proposal_id)

    assert updated.request.humanization == HumanizationIntensity.HEAVY
    assert updated.rehumanize_attempts == 1
    assert updated.text == provider.proposal
    assert updated.edit_history == []
    assert service.orchestrator.ledger.committed > committed_before
    assert service.orchestrator.voice_manager.get_profile("alex").completed_generations == 1

    with pytest.raises(RehumanizeLimitError):
        await service.rehumanize(proposal.proposal_id)


@pytest.mark.asyncio
async def test_rehumanize_attempt_limit(provider):
    orchestrator = make_orchestrator(provider, voice_config=VoiceConfig(max_rehumanize_attempts=0))
    proposal = await orchestrator.generate(SAMPLE_JOB_POST, "alex", "session-1")

    with pytest.raises(RehumanizeLimitError) as exc_info:
        await orchestrator.rehumanize(proposal.proposal_id)

    assert exc_info.value.code == "rehumanize_limit"


@pytest.mark.asyncio
async def test_batch_generation_reports_each_job(orchestrator):
    second_post = SAMPLE_JOB_POST.replace("Northwind Goods", "Harbor Lane Supply")
    result = await orchestrator.process_batch([SAMPLE_JOB_POST, second_post, "Too short."], "alex", max_concurrent=2)

    assert result.total_jobs == 3
    assert result.successful_jobs == 2
    assert result.failed_jobs == 1
    assert set(result.proposals) == {0, 1}
    assert result.errors[2].startswith("job_post_too_short")
    assert result.proposals[0].session_id != result.proposals[1].session_id
    assert orchestrator.voice_manager.get_profile("alex").completed_generations == 2


@pytest.mark.asyncio
async def test_module_level_entry_points(service, monkeypatch):
    monkeypatch.setattr(workflow_orchestrator, "_proposal_service", service)

    proposal = await workflow_orchestrator.generate_proposal(SAMPLE_JOB_POST, "alex", "session-1")
    result = workflow_orchestrator.record_edit_and_score(proposal.proposal_id, proposal.text + "\n\nThanks, Alex")

    assert result is proposal.quality_score
    assert result.category in tuple(QualityCategory)
