"""
Hook formulas, proposal skeletons and template selection.

A template id is ``"<hook>:<skeleton>"``. The hook formula decides how the
first two sentences open, the skeleton decides paragraph count and roles.
"""

import random
import re
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from ..ai_processing.job_analyzer import JobType
from ..voice_profile.models import MaturityStage
from ..utils import get_logger

logger = get_logger(__name__)

TEMPLATE_SEPARATOR = ":"
TARGET_WORDS = (150, 250)


@dataclass(frozen=True)
class HookFormula:
    """A way to open a proposal."""
    name: str
    title: str
    description: str
    instruction: str
    examples: Tuple[str, ...]
    best_for: str
    opening_patterns: Tuple[str, ...]

    def matches(self, opening: str) -> bool:
        """True if ``opening`` (lower-cased, straight apostrophes) fits this formula."""
        return any(re.search(pattern, opening) for pattern in self.opening_patterns)


@dataclass(frozen=True)
class Skeleton:
    """Paragraph plan for the proposal body."""
    name: str
    paragraph_count: int
    paragraph_range: Tuple[int, int]
    outline: Tuple[str, ...]


class TemplateLibrary:
    """Built-in hook formulas and skeletons."""

    HOOKS = {
        "social_proof": HookFormula(
            name="social_proof",
            title="Social Proof",
            description="Lead with relevant experience and quantified results to build immediate credibility.",
            instruction="Open with one concrete, relevant result you delivered for a similar client, with a number if you have one.",
            examples=(
                "I've helped 12 clients in your industry achieve [specific outcome]...",
                "My clients see a 40% increase in [metric] on average...",
                "Just last month, I completed a nearly identical project that [result]...",
            ),
            best_for="Clients who value proven track records and measurable results",
            opening_patterns=(
                r"\b(i've|i have) (helped|built|delivered|shipped|completed|worked|led|run|launched)\b",
                r"\bjust last (week|month|year|quarter)\b",
                r"\b\d+\s?%",
                r"\b\d+\+?\s(clients|projects|years|stores|apps|sites|teams)\b",
                r"\bmy clients\b",
            ),
        ),
        "contrarian": HookFormula(
            name="contrarian",
            title="Contrarian",
            description="Challenge conventional approaches to stand out and demonstrate deeper expertise.",
            instruction="Open by naming the approach most freelancers would take for this job and why you would do it differently.",
            examples=(
                "Most freelancers will tell you to [common advice], but I've found that...",
                "Here's what others get wrong about [their problem]...",
                "The conventional approach to this would be X, but I recommend Y because...",
            ),
            best_for="Clients frustrated with generic solutions or past failed attempts",
            opening_patterns=(
                r"\bmost (freelancers|developers|designers|writers|agencies|people|teams)\b",
                r"\b(others|most people) get wrong\b",
                r"\bconventional (approach|wisdom)\b",
                r"\bbut (i've|i have) found\b",
                r"\binstead of\b",
                r"\bthe usual (approach|advice|fix)\b",
            ),
        ),
        "immediate_value": HookFormula(
            name="immediate_value",
            title="Immediate Value",
            description="Offer a quick win or actionable insight upfront to demonstrate competence.",
            instruction="Open with one specific, actionable suggestion for this job or a small deliverable you can hand over quickly.",
            examples=(
                "Here's a quick win you can implement today: [specific tip]...",
                "I can provide an initial [deliverable] within 24 hours to [benefit]...",
                "Before we even start, here's something that will help: [insight]...",
            ),
            best_for="Risk-averse clients or technical projects requiring trust-building",
            opening_patterns=(
                r"\bquick win\b",
                r"\bwithin (24|48|72) hours\b",
                r"\bbefore we (even )?start\b",
                r"\bhere's (a|one|something|what)\b",
                r"\bi can (have|send|deliver|provide|ship)\b",
                r"\bone thing you can\b",
            ),
        ),
        "problem_aware": HookFormula(
            name="problem_aware",
            title="Problem-Aware",
            description="Show you understand their pain points at a deeper level than surface symptoms.",
            instruction="Open by naming the client's underlying problem in their own terms, beyond the surface symptom.",
            examples=(
                "I noticed your team is struggling with [specific pain point]...",
                "The real issue here isn't [surface problem], it's [root cause]...",
                "Looking at your requirements, I see a common pattern that causes [issue]...",
            ),
            best_for="Clients with complex problems or unclear requirements",
            opening_patterns=(
                r"\bi noticed\b",
                r"\bthe real (issue|problem|challenge|bottleneck)\b",
                r"\bstruggl(e|es|ing)\b",
                r"\blooking at your\b",
                r"\b(sounds|it sounds|seems) like (you|your)\b",
                r"\byour (current|existing) \w+ (is|are|keeps)\b",
            ),
        ),
        "question_based": HookFormula(
            name="question_based",
            title="Question-Based",
            description="Open with a strategic question that engages the client and shows strategic thinking.",
            instruction="Open with one pointed question about their goal or trade-off, then answer it briefly.",
            examples=(
                "What if you could reduce costs by 30% while improving quality?",
                "Quick question: are you optimizing for speed or long-term maintainability?",
                "Have you considered how [alternative approach] might affect [their goal]?",
            ),
            best_for="Ambiguous job posts or projects with multiple valid approaches",
            opening_patterns=(
                r"^[^.!]{3,}\?",
                r"\bwhat if\b",
                r"\bhave you (considered|thought about|tried)\b",
                r"\bquick question\b",
                r"\b(are|is) you\b[^.!]*\?",
            ),
        ),
    }

    SKELETONS = {
        "concise": Skeleton(
            name="concise",
            paragraph_count=3,
            paragraph_range=(3, 4),
            outline=(
                "Hook: open with the hook formula, tied to this job",
                "Bridge: relevant experience and how you would approach their problem",
                "Call to action: a clear next step and availability",
            ),
        ),
        "standard": Skeleton(
            name="standard",
            paragraph_count=4,
            paragraph_range=(3, 5),
            outline=(
                "Hook: open with the hook formula, tied to this job",
                "Understanding: restate their goal and the main requirements in your own words",
                "Approach: how you would deliver, naming the key skills involved",
                "Call to action: a clear next step and availability",
            ),
        ),
        "proof_forward": Skeleton(
            name="proof_forward",
            paragraph_count=4,
            paragraph_range=(3, 5),
            outline=(
                "Hook: open with the hook formula, tied to this job",
                "Proof: one short, specific example of similar work and its result",
                "Plan: the first steps you would take on this project",
                "Call to action: a clear next step and availability",
            ),
        ),
        "detailed": Skeleton(
            name="detailed",
            paragraph_count=5,
            paragraph_range=(4, 5),
            outline=(
                "Hook: open with the hook formula, tied to this job",
                "Understanding: their goal and the underlying need behind the post",
                "Approach: how you would deliver, requirement by requirement",
                "Proof: a short example of similar work",
                "Call to action: a clear next step and availability",
            ),
        ),
    }

    # At least two hooks per job type so selection can vary
    HOOKS_BY_JOB_TYPE = {
        JobType.SOFTWARE_DEVELOPMENT: ("problem_aware", "social_proof", "immediate_value", "contrarian"),
        JobType.DATA_ANALYSIS: ("immediate_value", "problem_aware", "question_based"),
        JobType.DESIGN: ("social_proof", "question_based", "contrarian"),
        JobType.WRITING: ("contrarian", "social_proof", "question_based"),
        JobType.MARKETING: ("social_proof", "question_based", "immediate_value"),
        JobType.ADMIN_SUPPORT: ("immediate_value", "social_proof", "problem_aware"),
        JobType.GENERAL: ("social_proof", "contrarian", "immediate_value", "problem_aware", "question_based"),
    }

    # Early profiles get shorter proposals
    SKELETONS_BY_MATURITY = {
        MaturityStage.COLD: ("concise", "standard"),
        MaturityStage.CALIBRATING: ("concise", "standard"),
        MaturityStage.LEARNING: ("standard", "proof_forward", "detailed"),
        MaturityStage.MATURE: ("concise", "standard", "proof_forward", "detailed"),
    }

    def get_hook(self, name: str) -> Optional[HookFormula]:
        return self.HOOKS.get(name)

    def get_skeleton(self, name: str) -> Optional[Skeleton]:
        return self.SKELETONS.get(name)


def make_template_id(hook: str, skeleton: str) -> str:
    return f"{hook}{TEMPLATE_SEPARATOR}{skeleton}"


def parse_template_id(template_id: str) -> Tuple[HookFormula, Skeleton]:
    """
    Resolve a template id.

    Raises:
        ValueError: malformed id or unknown hook/skeleton
    """
    hook_name, sep, skeleton_name = (template_id or "").partition(TEMPLATE_SEPARATOR)
    hook = TemplateLibrary.HOOKS.get(hook_name)
    skeleton = TemplateLibrary.SKELETONS.get(skeleton_name)
    if not sep or hook is None or skeleton is None:
        raise ValueError(f"Unknown template id: {template_id!r}")
    return hook, skeleton


class TemplateSelector:
    """
    Rule-based template selection with random tie-break.

    Never returns the same id twice in a row for the same
    ``(job_type, maturity)`` and avoids ``recent`` ids while alternatives
    remain.
    """

    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()
        self.library = TemplateLibrary()
        self._last_pick: Dict[Tuple[JobType, MaturityStage], str] = {}

    def candidates(self, job_type: JobType, maturity: MaturityStage) -> List[str]:
        hooks = self.library.HOOKS_BY_JOB_TYPE.get(job_type, self.library.HOOKS_BY_JOB_TYPE[JobType.GENERAL])
        skeletons = self.library.SKELETONS_BY_MATURITY[maturity]
        return [make_template_id(hook, skeleton) for hook in hooks for skeleton in skeletons]

    def select(self, job_type: JobType, maturity: MaturityStage, recent: Iterable[str] = ()) -> str:
        key = (job_type, maturity)
        pool = self.candidates(job_type, maturity)

        previous = self._last_pick.get(key)
        if previous is not None and len(pool) > 1:
            pool = [tid for tid in pool if tid != previous]

        recent_ids = set(recent)
        fresh = [tid for tid in pool if tid not in recent_ids]
        if fresh:
            pool = fresh

        choice = self.rng.choice(pool)
        self._last_pick[key] = choice
        logger.debug(
            f"Selected template {choice}",
            job_type=job_type.value,
            maturity=maturity.value,
            pool_size=len(pool)
        )
        return choice
