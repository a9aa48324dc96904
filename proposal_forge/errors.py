"""
Error types for the proposal generation pipeline.

Every error carries a stable ``code`` so callers can map failures to
deterministic UI states without parsing messages.
"""

from typing import Optional


class ProposalForgeError(Exception):
    """Base class for all pipeline errors."""
    code = "pipeline_error"


class ValidationError(ProposalForgeError):
    """Raised when a job post is rejected before any provider call."""
    code = "validation_error"

    TOO_SHORT = "too_short"
    TOO_LONG = "too_long"

    def __init__(self, message: str, kind: str, length: int, limit: int, suggestion: str = ""):
        super().__init__(message)
        self.kind = kind
        self.length = length
        self.limit = limit
        self.suggestion = suggestion


class JobPostTooShortError(ValidationError):
    """Job post text is below the minimum length."""
    code = "job_post_too_short"

    def __init__(self, length: int, limit: int):
        super().__init__(
            f"Job post is too short ({length} characters, minimum {limit})",
            kind=ValidationError.TOO_SHORT,
            length=length,
            limit=limit,
            suggestion="Paste the full job description including requirements",
        )


class JobPostTooLongError(ValidationError):
    """Job post text is above the maximum length."""
    code = "job_post_too_long"

    def __init__(self, length: int, limit: int):
        super().__init__(
            f"Job post is too long ({length} characters, maximum {limit})",
            kind=ValidationError.TOO_LONG,
            length=length,
            limit=limit,
            suggestion="Excerpt the key sections: summary, requirements and deliverables",
        )


class BudgetExceededError(ProposalForgeError):
    """Raised when the cost ledger rejects a reservation."""
    code = "budget_exceeded"

    def __init__(self, reason: str, requested: float = 0.0, remaining: float = 0.0):
        super().__init__(reason)
        self.reason = reason
        self.requested = requested
        self.remaining = remaining


class ProviderError(ProposalForgeError):
    """Raised when the text-completion provider fails."""
    code = "provider_error"

    def __init__(self, message: str, tier: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.tier = tier
        self.status_code = status_code


class TransientProviderError(ProviderError):
    """Timeouts and 5xx responses that survived every retry attempt."""
    code = "provider_transient"

    def __init__(self, message: str, tier: Optional[str] = None,
                 status_code: Optional[int] = None, attempts: int = 0):
        super().__init__(message, tier=tier, status_code=status_code)
        self.attempts = attempts


class FatalProviderError(ProviderError):
    """Auth failures and malformed requests. Never retried."""
    code = "provider_fatal"


class AlreadyInProgressError(ProposalForgeError):
    """A generation is already running for this session."""
    code = "already_in_progress"

    def __init__(self, session_id: str):
        super().__init__(f"A generation is already in progress for session {session_id}")
        self.session_id = session_id


class GenerationCancelledError(ProposalForgeError):
    """The caller cancelled the generation."""
    code = "cancelled"


class ProposalNotFoundError(ProposalForgeError):
    """No live proposal with the given id."""
    code = "proposal_not_found"

    def __init__(self, proposal_id: str):
        super().__init__(f"Proposal not found: {proposal_id}")
        self.proposal_id = proposal_id


class VoiceProfileError(ProposalForgeError):
    """Raised when a voice profile transition is invalid."""
    code = "voice_profile_error"


class RehumanizeLimitError(ProposalForgeError):
    """No stronger humanization level or attempt left for this proposal."""
    code = "rehumanize_limit"

    def __init__(self, proposal_id: str, attempts: int):
        super().__init__(f"Proposal {proposal_id} cannot be re-humanized again after {attempts} attempts")
        self.proposal_id = proposal_id
        self.attempts = attempts
