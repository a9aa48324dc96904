"""
AI Processing module for the proposal generation pipeline.

This module provides the tiered completion gateway, the cost ledger,
job post analysis and shared text statistics.
"""

from .llm_manager import (
    LLMGateway,
    CompletionProvider,
    CompletionResult,
    LLMResponse,
    OpenRouterProvider,
    ProviderTier,
    TierSettings,
    estimate_tokens,
    get_llm_gateway,
    make_cache_key
)

from .cost_ledger import (
    CostLedger,
    Reservation,
    ReservationStatus
)

from .job_analyzer import (
    JobPostAnalyzer,
    JobAnalysis,
    JobType,
    ConfidenceLabel,
    BudgetSignal,
    ClientHistorySignal,
    OpportunityAssessment,
    validate_job_post,
    sanitize_job_text
)

__all__ = [
    'LLMGateway',
    'CompletionProvider',
    'CompletionResult',
    'LLMResponse',
    'OpenRouterProvider',
    'ProviderTier',
    'TierSettings',
    'estimate_tokens',
    'get_llm_gateway',
    'make_cache_key',
    'CostLedger',
    'Reservation',
    'ReservationStatus',
    'JobPostAnalyzer',
    'JobAnalysis',
    'JobType',
    'ConfidenceLabel',
    'BudgetSignal',
    'ClientHistorySignal',
    'OpportunityAssessment',
    'validate_job_post',
    'sanitize_job_text'
]
