"""
Generation Workflow Orchestrator

Coordinates one proposal generation end to end: cost reservation, job
analysis, template selection, prompt composition, the generation-tier
call, scoring and voice profile bookkeeping. Also provides batch
generation and the caller-facing ProposalService.
"""

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from .ai_processing.cost_ledger import CostLedger, Reservation
from .ai_processing.job_analyzer import JobAnalysis, JobPostAnalyzer, validate_job_post
from .ai_processing.llm_manager import LLMGateway, ProviderTier, get_llm_gateway
from .config import BudgetConfig, VoiceConfig, get_budget_config, get_config, get_voice_config
from .config.database import DatabaseManager
from .edit_learning.diff import record_edit
from .edit_learning.models import EditRecord
from .errors import (
    AlreadyInProgressError,
    BudgetExceededError,
    GenerationCancelledError,
    ProposalForgeError,
    ProposalNotFoundError,
    RehumanizeLimitError
)
from .proposal_composer.humanization import HumanizationIntensity
from .proposal_composer.prompt_builder import ComposedPrompt, compose_generation_prompt
from .proposal_composer.templates import TemplateSelector, make_template_id
from .scoring.quality_scorer import QualityScore, score
from .utils import CancellationToken, get_progress_logger, get_workflow_logger
from .voice_profile.manager import VoiceProfileManager
from .voice_profile.models import VoiceProfile, VoiceProfileDelta

logger = get_workflow_logger()

# Room left in the generation estimate for the rendered analysis
ANALYSIS_CONTEXT_ALLOWANCE = "x" * 2000
# Longest skeleton, so the provisional prompt is an upper bound
_ESTIMATE_TEMPLATE_ID = make_template_id("social_proof", "detailed")


@dataclass(frozen=True)
class BudgetCheck:
    """Outcome of the up-front cost reservation."""
    approved_amount: float
    tier: ProviderTier
    degraded: bool = False


@dataclass(frozen=True)
class GenerationRequest:
    """Everything one generation call was built from."""
    request_id: str
    user_id: str
    session_id: str
    job_analysis: JobAnalysis
    voice_snapshot: VoiceProfile
    voice_version: int
    template_id: str
    budget_check: BudgetCheck
    humanization: HumanizationIntensity
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class Proposal:
    """A generated proposal and its edits, owned by the originating session."""
    proposal_id: str
    user_id: str
    session_id: str
    generated_text: str
    text: str
    quality_score: QualityScore
    request: GenerationRequest
    edit_history: List[EditRecord] = field(default_factory=list)
    generation_cost: float = 0.0
    rehumanize_attempts: int = 0
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    job_post_text: str = field(default="", repr=False)

    @property
    def template_id(self) -> str:
        return self.request.template_id

    @property
    def is_degraded(self) -> bool:
        return self.request.budget_check.degraded

    def to_history_record(self) -> Dict[str, Any]:
        """Row for explicit proposal history saving."""
        return {
            "proposal_id": self.proposal_id,
            "user_id": self.user_id,
            "session_id": self.session_id,
            "template_id": self.template_id,
            "job_type": self.request.job_analysis.job_type.value,
            "generated_text": self.generated_text,
            "final_text": self.text,
            "aggregate_score": round(self.quality_score.aggregate, 2),
            "category": self.quality_score.category.value,
            "analysis": self.request.job_analysis.to_dict(),
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class BatchGenerationResult:
    """Result of generating proposals for several job posts."""
    batch_id: str
    total_jobs: int
    successful_jobs: int
    failed_jobs: int
    proposals: Dict[int, Proposal]
    errors: Dict[int, str]
    total_processing_time: float
    created_at: datetime
    completed_at: Optional[datetime] = None


class GenerationOrchestrator:
    """Runs the generation pipeline under the cost ledger and session gate."""

    def __init__(self,
                 gateway: Optional[LLMGateway] = None,
                 ledger: Optional[CostLedger] = None,
                 analyzer: Optional[JobPostAnalyzer] = None,
                 voice_manager: Optional[VoiceProfileManager] = None,
                 selector: Optional[TemplateSelector] = None,
                 db_manager: Optional[DatabaseManager] = None,
                 budget_config: Optional[BudgetConfig] = None,
                 voice_config: Optional[VoiceConfig] = None):
        self.db_manager = db_manager
        self.budget_config = budget_config or get_budget_config()
        self.voice_config = voice_config or get_voice_config()

        self.gateway = gateway or get_llm_gateway()
        self.ledger = ledger or CostLedger(db_manager=db_manager)
        self.analyzer = analyzer or JobPostAnalyzer(self.gateway)
        self.voice_manager = voice_manager or VoiceProfileManager(db_manager, self.voice_config)
        self.selector = selector or TemplateSelector()

        # Processing state
        self.proposals: Dict[str, Proposal] = {}
        self._in_flight: Set[str] = set()
        self._recent_templates: Dict[str, List[str]] = {}
        self.progress_callbacks: List[Callable[[str, Dict[str, Any]], None]] = []

    def add_progress_callback(self, callback: Callable[[str, Dict[str, Any]], None]):
        """Add a progress callback function."""
        self.progress_callbacks.append(callback)

    def _notify_progress(self, event_type: str, data: Dict[str, Any]):
        """Notify all progress callbacks."""
        for callback in self.progress_callbacks:
            try:
                callback(event_type, data)
            except Exception as e:
                logger.error(f"Error in progress callback: {e}")

    def is_in_progress(self, session_id: str) -> bool:
        return session_id in self._in_flight

    def _claim_session(self, session_id: str) -> None:
        if session_id in self._in_flight:
            raise AlreadyInProgressError(session_id)
        self._in_flight.add(session_id)

    def get_proposal(self, proposal_id: str) -> Proposal:
        proposal = self.proposals.get(proposal_id)
        if proposal is None:
            raise ProposalNotFoundError(proposal_id)
        return proposal

    def release_proposal(self, proposal_id: str) -> Proposal:
        proposal = self.get_proposal(proposal_id)
        del self.proposals[proposal_id]
        return proposal

    def _default_intensity(self) -> HumanizationIntensity:
        return HumanizationIntensity.from_value(self.voice_config.humanization_intensity)

    def _estimate_generation(self, tier: ProviderTier, snapshot: VoiceProfile,
                             intensity: HumanizationIntensity, job_post_text: str) -> float:
        provisional = compose_generation_prompt(JobAnalysis(), snapshot, _ESTIMATE_TEMPLATE_ID, intensity, job_post_text)
        return self.gateway.estimate_cost(
            tier,
            provisional.user_prompt + ANALYSIS_CONTEXT_ALLOWANCE,
            system_prompt=provisional.system_prompt
        )

    async def _reserve(self, extraction_estimate: float, snapshot: VoiceProfile,
                       intensity: HumanizationIntensity, job_post_text: str) -> Tuple[BudgetCheck, Reservation]:
        """Reserve the full estimate, falling back to the extraction tier when allowed."""
        full = extraction_estimate + self._estimate_generation(ProviderTier.GENERATION, snapshot, intensity, job_post_text)
        try:
            reservation = await self.ledger.reserve(full, tier=ProviderTier.GENERATION.value)
            return BudgetCheck(approved_amount=full, tier=ProviderTier.GENERATION), reservation
        except BudgetExceededError:
            if not self.budget_config.allow_degraded:
                raise

        degraded = extraction_estimate + self._estimate_generation(ProviderTier.EXTRACTION, snapshot, intensity, job_post_text)
        logger.warning("Full generation over budget, trying degraded extraction-tier generation",
                       requested=round(full, 6), degraded_estimate=round(degraded, 6))
        reservation = await self.ledger.reserve(degraded, tier=ProviderTier.EXTRACTION.value)
        return BudgetCheck(approved_amount=degraded, tier=ProviderTier.EXTRACTION, degraded=True), reservation

    def _select_template(self, user_id: str, analysis: JobAnalysis, snapshot: VoiceProfile) -> str:
        recent = self._recent_templates.setdefault(user_id, [])
        template_id = self.selector.select(analysis.job_type, snapshot.maturity, recent=recent)
        recent.append(template_id)
        # Only the last few picks are avoided
        del recent[:-3]
        return template_id

    async def _call_generation(self, prompt: ComposedPrompt, budget_check: BudgetCheck,
                               cancel_token: Optional[CancellationToken]):
        return await self.gateway.complete(
            budget_check.tier,
            prompt.user_prompt,
            cancel_token=cancel_token,
            system_prompt=prompt.system_prompt,
            temperature=self.gateway.get_tier(ProviderTier.GENERATION).temperature
        )

    async def generate(self,
                       job_post_text: str,
                       user_id: str,
                       session_id: str,
                       cancel_token: Optional[CancellationToken] = None,
                       allow_truncation: bool = False) -> Proposal:
        """
        Generate a scored proposal for one job post.

        Args:
            job_post_text: Raw pasted job post
            user_id: Owner of the voice profile
            session_id: Caller session; one generation at a time per session
            cancel_token: Cancels the pipeline at its next suspension point
            allow_truncation: Truncate over-long posts instead of rejecting them

        Returns:
            Proposal with its QualityScore

        Raises:
            AlreadyInProgressError, ValidationError, BudgetExceededError,
            ProviderError, GenerationCancelledError
        """
        self._claim_session(session_id)
        request_id = uuid.uuid4().hex
        logger.generation_started(request_id, user_id, session_id)
        self._notify_progress("generation_started", {"request_id": request_id, "session_id": session_id})

        try:
            proposal = await self._run_generation(request_id, job_post_text, user_id, session_id,
                                                  cancel_token, allow_truncation)
        except GenerationCancelledError:
            logger.generation_finished("cancelled")
            self._notify_progress("generation_cancelled", {"request_id": request_id, "session_id": session_id})
            raise
        except ProposalForgeError as e:
            logger.generation_finished("failed", error_code=e.code)
            self._notify_progress("generation_failed", {
                "request_id": request_id,
                "session_id": session_id,
                "error_code": e.code,
                "error": str(e)
            })
            raise
        finally:
            self._in_flight.discard(session_id)

        logger.generation_finished(
            "completed",
            proposal_id=proposal.proposal_id,
            template_id=proposal.template_id,
            aggregate=round(proposal.quality_score.aggregate, 2),
            cost=round(proposal.generation_cost, 6),
            degraded=proposal.is_degraded
        )
        self._notify_progress("generation_completed", {
            "request_id": request_id,
            "session_id": session_id,
            "proposal_id": proposal.proposal_id,
            "category": proposal.quality_score.category.value
        })
        return proposal

    async def _run_generation(self, request_id: str, job_post_text: str, user_id: str, session_id: str,
                              cancel_token: Optional[CancellationToken], allow_truncation: bool) -> Proposal:
        # Validation happens before any reservation or provider call
        text = validate_job_post(job_post_text, self.analyzer.config, allow_truncation)
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()

        snapshot = self.voice_manager.get_snapshot(user_id)
        intensity = self._default_intensity()
        budget_check, reservation = await self._reserve(self.analyzer.estimate_cost(text), snapshot, intensity, text)

        # Extraction spend is billed even if generation later fails
        spent = 0.0
        try:
            self._notify_progress("analyzing", {"request_id": request_id})
            analysis, extraction_cost = await self.analyzer.analyze_with_cost(text, cancel_token, allow_truncation)
            spent = extraction_cost

            self._notify_progress("composing", {"request_id": request_id})
            template_id = self._select_template(user_id, analysis, snapshot)
            prompt = compose_generation_prompt(analysis, snapshot, template_id, intensity, text)

            self._notify_progress("generating", {"request_id": request_id, "tier": budget_check.tier.value})
            result = await self._call_generation(prompt, budget_check, cancel_token)
            spent = extraction_cost + result.cost
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()

            charged = await self.ledger.commit(reservation, extraction_cost + result.cost)
        except (Exception, asyncio.CancelledError):
            await self.ledger.release_unspent(reservation, spent)
            raise

        generation_request = GenerationRequest(
            request_id=request_id,
            user_id=user_id,
            session_id=session_id,
            job_analysis=analysis,
            voice_snapshot=snapshot,
            voice_version=snapshot.version,
            template_id=template_id,
            budget_check=budget_check,
            humanization=intensity
        )
        generated_text = result.text.strip()
        proposal = Proposal(
            proposal_id=uuid.uuid4().hex,
            user_id=user_id,
            session_id=session_id,
            generated_text=generated_text,
            text=generated_text,
            quality_score=score(generated_text, analysis, template_id),
            request=generation_request,
            generation_cost=charged,
            job_post_text=text
        )
        await self.voice_manager.record_completed_generation(user_id)
        self.proposals[proposal.proposal_id] = proposal
        return proposal

    async def rehumanize(self, proposal_id: str, cancel_token: Optional[CancellationToken] = None) -> Proposal:
        """
        Regenerate a proposal at the next humanization intensity.

        Reuses the stored analysis, template and voice snapshot. Passes
        through the same session gate and cost gate as ``generate``.

        Raises:
            ProposalNotFoundError, RehumanizeLimitError, AlreadyInProgressError,
            BudgetExceededError, ProviderError, GenerationCancelledError
        """
        proposal = self.get_proposal(proposal_id)
        request = proposal.request
        if proposal.rehumanize_attempts >= self.voice_config.max_rehumanize_attempts:
            raise RehumanizeLimitError(proposal_id, proposal.rehumanize_attempts)
        try:
            intensity = request.humanization.escalate()
        except ValueError:
            raise RehumanizeLimitError(proposal_id, proposal.rehumanize_attempts)

        self._claim_session(proposal.session_id)
        try:
            prompt = compose_generation_prompt(request.job_analysis, request.voice_snapshot,
                                               request.template_id, intensity, proposal.job_post_text)
            tier = request.budget_check.tier
            estimate = self.gateway.estimate_cost(tier, prompt.user_prompt, system_prompt=prompt.system_prompt)
            reservation = await self.ledger.reserve(estimate, tier=tier.value)
            try:
                result = await self._call_generation(prompt, request.budget_check, cancel_token)
                if cancel_token is not None:
                    cancel_token.raise_if_cancelled()
                charged = await self.ledger.commit(reservation, result.cost)
            except (Exception, asyncio.CancelledError):
                await self.ledger.rollback(reservation)
                raise
        finally:
            self._in_flight.discard(proposal.session_id)

        new_text = result.text.strip()
        proposal.request = GenerationRequest(
            request_id=uuid.uuid4().hex,
            user_id=request.user_id,
            session_id=request.session_id,
            job_analysis=request.job_analysis,
            voice_snapshot=request.voice_snapshot,
            voice_version=request.voice_version,
            template_id=request.template_id,
            budget_check=request.budget_check,
            humanization=intensity
        )
        proposal.generated_text = new_text
        proposal.text = new_text
        # Earlier edits were made against the replaced text
        proposal.edit_history = []
        proposal.quality_score = score(new_text, request.job_analysis, request.template_id)
        proposal.generation_cost += charged
        proposal.rehumanize_attempts += 1

        logger.info(
            f"Re-humanized proposal {proposal_id} at {intensity.value} intensity",
            attempt=proposal.rehumanize_attempts,
            risk=proposal.quality_score.ai_detection_risk.value
        )
        self._notify_progress("proposal_rehumanized", {
            "proposal_id": proposal_id,
            "intensity": intensity.value,
            "attempt": proposal.rehumanize_attempts
        })
        return proposal

    async def process_batch(self, job_posts: List[str], user_id: str, max_concurrent: int = 3) -> BatchGenerationResult:
        """
        Generate proposals for several job posts concurrently.

        Each post runs in its own session; the shared ledger gates every
        generation, so a batch can stop part-way on budget.
        """
        batch_id = f"batch_{datetime.now().strftime('%Y%m%d_%H%M%S')}_{uuid.uuid4().hex[:6]}"
        start_time = datetime.now(timezone.utc)
        logger.batch_started(batch_id, len(job_posts))
        self._notify_progress("batch_started", {"batch_id": batch_id, "total_jobs": len(job_posts)})

        progress = get_progress_logger(logger, len(job_posts), "batch generation")
        semaphore = asyncio.Semaphore(max(1, max_concurrent))

        async def process_single_job(index: int, job_post_text: str) -> Tuple[int, Proposal]:
            async with semaphore:
                try:
                    proposal = await self.generate(job_post_text, user_id, f"{batch_id}:{index}")
                finally:
                    progress.update()
                return index, proposal

        tasks = [process_single_job(index, text) for index, text in enumerate(job_posts)]
        completed_tasks = await asyncio.gather(*tasks, return_exceptions=True)

        proposals: Dict[int, Proposal] = {}
        errors: Dict[int, str] = {}
        for index, task_result in enumerate(completed_tasks):
            if isinstance(task_result, BaseException):
                logger.error(f"Batch job {index} failed: {task_result}")
                code = getattr(task_result, "code", type(task_result).__name__)
                errors[index] = f"{code}: {task_result}"
            else:
                _, proposal = task_result
                proposals[index] = proposal

        end_time = datetime.now(timezone.utc)
        progress.complete(f"{len(proposals)} proposals generated")
        logger.batch_completed(batch_id, len(proposals), len(errors))
        self._notify_progress("batch_completed", {
            "batch_id": batch_id,
            "successful_jobs": len(proposals),
            "failed_jobs": len(errors)
        })

        return BatchGenerationResult(
            batch_id=batch_id,
            total_jobs=len(job_posts),
            successful_jobs=len(proposals),
            failed_jobs=len(errors),
            proposals=proposals,
            errors=errors,
            total_processing_time=(end_time - start_time).total_seconds(),
            created_at=start_time,
            completed_at=end_time
        )


class ProposalService:
    """Caller-facing entry points over the orchestrator."""

    def __init__(self, orchestrator: Optional[GenerationOrchestrator] = None,
                 db_manager: Optional[DatabaseManager] = None):
        self.db_manager = db_manager
        self.orchestrator = orchestrator or GenerationOrchestrator(db_manager=db_manager)

    async def generate_proposal(self, job_post_text: str, user_id: str, session_id: str,
                                cancel_token: Optional[CancellationToken] = None) -> Proposal:
        return await self.orchestrator.generate(job_post_text, user_id, session_id, cancel_token)

    def record_edit_and_score(self, proposal_id: str, new_text: str) -> QualityScore:
        """
        Record the user's edit and re-score the current text.

        An unchanged text is a no-op that returns the cached score.
        """
        proposal = self.orchestrator.get_proposal(proposal_id)
        if new_text == proposal.text:
            return proposal.quality_score

        edit = record_edit(proposal, new_text)
        proposal.quality_score = score(new_text, proposal.request.job_analysis, proposal.template_id)
        logger.debug(
            f"Re-scored proposal {proposal_id}",
            classification=edit.classification.value if edit else "none",
            aggregate=round(proposal.quality_score.aggregate, 2)
        )
        return proposal.quality_score

    async def rehumanize(self, proposal_id: str, cancel_token: Optional[CancellationToken] = None) -> Proposal:
        return await self.orchestrator.rehumanize(proposal_id, cancel_token)

    async def finalize_proposal(self, proposal_id: str, save_history: bool = False) -> VoiceProfileDelta:
        """
        Hand the proposal's final edit to the voice profile and release it.

        Args:
            proposal_id: Live proposal
            save_history: Also write the proposal to the history table

        Returns:
            The delta applied to the voice profile, empty if nothing was promoted
        """
        proposal = self.orchestrator.release_proposal(proposal_id)

        if save_history:
            if self.db_manager is None:
                logger.warning(f"No database configured, proposal {proposal_id} not saved to history")
            else:
                self.db_manager.save_proposal(proposal.to_history_record())

        if not proposal.edit_history or proposal.text == proposal.generated_text:
            return VoiceProfileDelta()

        # Only the final state of the edit counts toward learning
        latest = proposal.edit_history[-1]
        return await self.orchestrator.voice_manager.update(proposal.user_id, [latest])


# Global service instance
_proposal_service = None

def get_proposal_service() -> ProposalService:
    """Get global proposal service instance."""
    global _proposal_service
    if _proposal_service is None:
        _proposal_service = ProposalService(db_manager=DatabaseManager(get_config().db_path))
    return _proposal_service


async def generate_proposal(job_post_text: str, user_id: str, session_id: str,
                            cancel_token: Optional[CancellationToken] = None) -> Proposal:
    """Convenience function to generate a proposal with the global service."""
    return await get_proposal_service().generate_proposal(job_post_text, user_id, session_id, cancel_token)


def record_edit_and_score(proposal_id: str, new_text: str) -> QualityScore:
    """Convenience function to record an edit and re-score with the global service."""
    return get_proposal_service().record_edit_and_score(proposal_id, new_text)
