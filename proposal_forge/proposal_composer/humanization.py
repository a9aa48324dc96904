"""
Humanization intensity levels and their prompt blocks.
"""

from enum import Enum
from typing import Optional

from ..utils import get_logger

logger = get_logger(__name__)


class HumanizationIntensity(Enum):
    OFF = "off"
    LIGHT = "light"
    MEDIUM = "medium"
    HEAVY = "heavy"

    @classmethod
    def from_value(cls, value: Optional[str]) -> "HumanizationIntensity":
        """Parse a setting value, falling back to MEDIUM for unknown input."""
        try:
            return cls((value or "").strip().lower())
        except ValueError:
            logger.warning(f"Invalid humanization intensity '{value}', defaulting to medium")
            return cls.MEDIUM

    @property
    def rate_description(self) -> str:
        return _RATE_DESCRIPTIONS[self]

    def escalate(self) -> "HumanizationIntensity":
        """
        Next stronger level.

        Raises:
            ValueError: already at HEAVY
        """
        order = list(HumanizationIntensity)
        index = order.index(self)
        if index + 1 >= len(order):
            raise ValueError("Already at maximum humanization intensity")
        return order[index + 1]


_RATE_DESCRIPTIONS = {
    HumanizationIntensity.OFF: "No humanization",
    HumanizationIntensity.LIGHT: "0.5-1 touches per 100 words",
    HumanizationIntensity.MEDIUM: "1-2 touches per 100 words",
    HumanizationIntensity.HEAVY: "2-3 touches per 100 words",
}

QUALITY_CONSTRAINTS = """

QUALITY CONSTRAINTS (non-negotiable):
- Maintain professional tone and confidence
- No spelling or grammar errors (variations are stylistic, not errors)
- Technical accuracy preserved
- Message clarity not compromised
- Still sounds competent and experienced"""

_AVOID_BASIC = ('AVOID AI tells: Don\'t use "delve", "leverage", "utilize", "robust", "multifaceted" '
                'unless truly contextually appropriate.')

_PROMPTS = {
    HumanizationIntensity.LIGHT: f"""
Write naturally. Occasionally use contractions and vary sentence structure slightly.
Aim for about 0.5-1 subtle human touches per 100 words.
{_AVOID_BASIC}""",

    HumanizationIntensity.MEDIUM: f"""
Write this proposal naturally, as a human freelancer would. Include 1-2 subtle human touches per 100 words:
- Occasional contractions (I'm, you're, we've) where natural
- Informal transitions sometimes (So, Now, Plus, That said)
- Vary sentence length (mix short punchy sentences with longer explanatory ones)
- Minor stylistic variations (sentence fragment for emphasis is OK)
- Minor repetition of a key phrase for emphasis, where natural
- Conversational tone while maintaining professionalism

{_AVOID_BASIC}

The output should sound like a confident, competent professional writing naturally: not overly formal, not overly casual.""",

    HumanizationIntensity.HEAVY: """
Write conversationally, as a confident freelancer dashing off a well-considered reply. Include 2-3 natural human elements per 100 words:
- Frequent contractions (I'm, you're, we've, I'd, that's)
- Informal transitions (So, Now, Plus, That said, Anyway, Honestly)
- Mix very short sentences with longer ones for rhythm
- Occasional sentence fragments for emphasis
- Conversational questions followed by answers ("Why does this matter? Because...")
- Natural phrasing ("I've done this before" not "I have completed similar projects")
- Minor repetition of a key phrase for emphasis

AVOID AI tells: Don't use "delve", "leverage", "utilize", "robust", "multifaceted", "tapestry", "holistic", "nuanced".

Sound like a real person who happens to be great at their job: casual confidence, not corporate polish.""",
}


def get_humanization_prompt(intensity: HumanizationIntensity) -> Optional[str]:
    """Prompt block for ``intensity``; None when humanization is off."""
    block = _PROMPTS.get(intensity)
    if block is None:
        return None
    return block + QUALITY_CONSTRAINTS


def build_system_prompt(base_prompt: str, intensity: HumanizationIntensity) -> str:
    block = get_humanization_prompt(intensity)
    if block is None:
        return base_prompt
    return f"{base_prompt}\n{block}"
