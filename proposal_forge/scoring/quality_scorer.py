"""
Quality Scorer

Scores a proposal on personalization, hook strength and structure, and
estimates how machine-written it reads. ``score`` is a pure function of
its inputs: no clock, no randomness, no I/O.
"""

import math
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from ..ai_processing import text_stats
from ..ai_processing.job_analyzer import JobAnalysis
from ..proposal_composer.templates import TARGET_WORDS, TemplateLibrary, parse_template_id

MAX_COUNTED_REFERENCES = 6
REFERENCE_WORD_SHARE = 0.6
DEFAULT_PARAGRAPH_RANGE = (3, 5)
WORD_FALLOFF = 75.0
NEUTRAL_PERSONALIZATION = 5.0

GENERIC_OPENERS = (
    r"^\s*i am writing to\b",
    r"^\s*i'm writing to\b",
    r"\bdear (hiring manager|sir|madam|sir or madam)\b",
    r"\bto whom it may concern\b",
    r"\bmy name is\b",
    r"\bi hope this (message |email |note )?finds you\b",
    r"^\s*i hope this\b",
)

# Risk points per signal
BURSTINESS_THRESHOLDS = ((0.25, 2), (0.40, 1))
DIVERSITY_THRESHOLDS = ((0.55, 2), (0.65, 1))
HIGH_RISK_POINTS = 4
MEDIUM_RISK_POINTS = 2


class RiskLevel(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class QualityCategory(Enum):
    EXCELLENT = "excellent"
    GREAT = "great"
    GOOD = "good"
    FAIR = "fair"
    NEEDS_WORK = "needs_work"


CATEGORY_THRESHOLDS = [
    (9.0, QualityCategory.EXCELLENT),
    (8.0, QualityCategory.GREAT),
    (7.0, QualityCategory.GOOD),
    (6.0, QualityCategory.FAIR),
]


@dataclass(frozen=True)
class QualityScore:
    personalization: float
    hook: float
    structure: float
    ai_detection_risk: RiskLevel
    aggregate: float
    category: QualityCategory
    signals: Tuple[Tuple[str, Any], ...] = ()

    def signal(self, name: str, default: Any = None) -> Any:
        for key, value in self.signals:
            if key == name:
                return value
        return default

    def to_dict(self) -> Dict[str, Any]:
        return {
            "personalization": round(self.personalization, 2),
            "hook": round(self.hook, 2),
            "structure": round(self.structure, 2),
            "ai_detection_risk": self.ai_detection_risk.value,
            "aggregate": round(self.aggregate, 2),
            "category": self.category.value,
            "signals": {key: list(value) if isinstance(value, tuple) else value for key, value in self.signals},
        }


def categorize(aggregate: float) -> QualityCategory:
    """Fixed step function on the unrounded aggregate."""
    for threshold, category in CATEGORY_THRESHOLDS:
        if aggregate >= threshold:
            return category
    return QualityCategory.NEEDS_WORK


def _normalize(text: str) -> str:
    return " ".join(text_stats.normalize_apostrophes(text).lower().split())


def reference_found(reference: str, text: str) -> bool:
    """Phrase occurs, or at least 60% of its content words (min 1) do."""
    phrase = _normalize(reference)
    if not phrase:
        return False
    haystack = _normalize(text)
    if re.search(rf"(?<!\w){re.escape(phrase)}(?!\w)", haystack):
        return True

    words = set(text_stats.content_words(reference))
    if not words:
        return False
    present = words & set(text_stats.content_words(text))
    required = max(1, math.ceil(REFERENCE_WORD_SHARE * len(words)))
    return len(present) >= required


def score_personalization(proposal_text: str, references: Tuple[str, ...]) -> Tuple[float, List[str]]:
    if not references:
        return NEUTRAL_PERSONALIZATION, []

    found = [ref for ref in references if reference_found(ref, proposal_text)]
    coverage = min(1.0, len(found) / min(len(references), MAX_COUNTED_REFERENCES))

    paragraphs = text_stats.split_paragraphs(proposal_text)
    if paragraphs:
        with_reference = sum(1 for p in paragraphs if any(reference_found(ref, p) for ref in found))
        distribution = with_reference / len(paragraphs)
    else:
        distribution = 0.0

    return 10.0 * (0.7 * coverage + 0.3 * distribution), found


def opening_of(proposal_text: str) -> str:
    """First two sentences."""
    return " ".join(text_stats.split_sentences(proposal_text)[:2])


def score_hook(proposal_text: str, references: Tuple[str, ...], template_id: Optional[str] = None) -> Tuple[float, Dict[str, Any]]:
    opening = opening_of(proposal_text)
    normalized = _normalize(opening)

    hook_formula = None
    if template_id:
        try:
            hook_formula, _ = parse_template_id(template_id)
        except ValueError:
            hook_formula = None

    if hook_formula is not None:
        formulas = [hook_formula]
    else:
        formulas = list(TemplateLibrary.HOOKS.values())
    matched = [f.name for f in formulas if f.matches(normalized)]

    points = 6.0 if matched else 0.0
    references_in_opening = any(reference_found(ref, opening) for ref in references)
    if references_in_opening:
        points += 2.0

    generic = any(re.search(pattern, normalized) for pattern in GENERIC_OPENERS)
    points += -2.0 if generic else 2.0

    return max(0.0, min(10.0, points)), {
        "hook_formula_matched": tuple(matched),
        "hook_references_job": references_in_opening,
        "generic_opener": generic,
    }


def _band_distance(value: float, low: float, high: float) -> float:
    if value < low:
        return low - value
    if value > high:
        return value - high
    return 0.0


def score_structure(proposal_text: str, template_id: Optional[str] = None) -> Tuple[float, Dict[str, Any]]:
    words = text_stats.word_count(proposal_text)
    paragraphs = len(text_stats.split_paragraphs(proposal_text))

    paragraph_range = DEFAULT_PARAGRAPH_RANGE
    if template_id:
        try:
            _, skeleton = parse_template_id(template_id)
            paragraph_range = skeleton.paragraph_range
        except ValueError:
            pass

    word_distance = _band_distance(words, *TARGET_WORDS)
    word_score = 10.0 * math.exp(-(word_distance / WORD_FALLOFF) ** 2)

    paragraph_distance = _band_distance(paragraphs, *paragraph_range)
    paragraph_score = 10.0 * math.exp(-(paragraph_distance ** 2) / 2)

    return 0.6 * word_score + 0.4 * paragraph_score, {
        "word_count": words,
        "paragraph_count": paragraphs,
    }


def _risk_points(value: float, thresholds: Tuple[Tuple[float, int], ...]) -> int:
    for limit, points in thresholds:
        if value < limit:
            return points
    return 0


def assess_ai_risk(proposal_text: str) -> Tuple[RiskLevel, Dict[str, Any]]:
    """Heuristic machine-writing risk. The level is authoritative, the raw values are diagnostics."""
    burst = text_stats.burstiness(proposal_text)
    diversity = text_stats.lexical_diversity(proposal_text)
    tells = text_stats.find_ai_tells(proposal_text)

    points = _risk_points(burst, BURSTINESS_THRESHOLDS) + _risk_points(diversity, DIVERSITY_THRESHOLDS)
    points += 2 if len(tells) >= 2 else len(tells)

    if points >= HIGH_RISK_POINTS:
        level = RiskLevel.HIGH
    elif points >= MEDIUM_RISK_POINTS:
        level = RiskLevel.MEDIUM
    else:
        level = RiskLevel.LOW

    return level, {
        "burstiness": round(burst, 3),
        "lexical_diversity": round(diversity, 3),
        "ai_tells": tuple(tells),
        "ai_risk_points": points,
    }


def score(proposal_text: str, job_analysis: JobAnalysis, template_id: Optional[str] = None) -> QualityScore:
    """
    Score a proposal against its job analysis.

    Args:
        proposal_text: Current proposal text
        job_analysis: Analysis the proposal was generated from
        template_id: Template used, if known; sets the hook formula and paragraph range

    Returns:
        QualityScore with an unrounded aggregate
    """
    references = job_analysis.job_references
    personalization, found = score_personalization(proposal_text, references)
    hook, hook_signals = score_hook(proposal_text, references, template_id)
    structure, structure_signals = score_structure(proposal_text, template_id)
    risk, risk_signals = assess_ai_risk(proposal_text)

    aggregate = (personalization + hook + structure) / 3

    signals = {
        "references_found": len(found),
        "references_available": len(references),
        **hook_signals,
        **structure_signals,
        **risk_signals,
    }

    return QualityScore(
        personalization=personalization,
        hook=hook,
        structure=structure,
        ai_detection_risk=risk,
        aggregate=aggregate,
        category=categorize(aggregate),
        signals=tuple(sorted(signals.items()))
    )
