"""
Voice profile data model and maturity stages.
"""

import copy
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from ..errors import VoiceProfileError


class MaturityStage(Enum):
    """How far the profile may steer generation."""
    COLD = "cold"
    CALIBRATING = "calibrating"
    LEARNING = "learning"
    MATURE = "mature"


# Minimum completed generations for each stage, highest first
MATURITY_THRESHOLDS = [
    (10, MaturityStage.MATURE),
    (3, MaturityStage.LEARNING),
    (1, MaturityStage.CALIBRATING),
    (0, MaturityStage.COLD),
]

# Forward-only transitions
TRANSITIONS = {
    MaturityStage.COLD: [MaturityStage.CALIBRATING],
    MaturityStage.CALIBRATING: [MaturityStage.LEARNING],
    MaturityStage.LEARNING: [MaturityStage.MATURE],
    MaturityStage.MATURE: [],
}

MATURE_GENERATION_COUNT = 10
MAX_CONFIDENCE = 1.0
MAX_SIGNATURE_PHRASES = 10


def stage_for_count(completed_generations: int) -> MaturityStage:
    for threshold, stage in MATURITY_THRESHOLDS:
        if completed_generations >= threshold:
            return stage
    return MaturityStage.COLD


def can_transition(from_stage: MaturityStage, to_stage: MaturityStage) -> bool:
    return to_stage in TRANSITIONS.get(from_stage, [])


@dataclass
class SentenceRhythm:
    avg_sentence_length: float = 15.0
    variation: str = "varied"  # steady | varied

    @property
    def length_label(self) -> str:
        if self.avg_sentence_length <= 12:
            return "short"
        if self.avg_sentence_length <= 20:
            return "moderate"
        return "longer"


@dataclass
class ImperfectionMarkers:
    """Human-writing markers the user keeps in their own text."""
    fragments: bool = False
    mild_redundancy: bool = False
    casual_asides: bool = False

    def enabled(self) -> List[str]:
        return [name for name, value in asdict(self).items() if value]


@dataclass
class VoiceProfile:
    """Per-user writing voice."""
    user_id: str
    formality: float = 5.0
    signature_phrases: Dict[str, float] = field(default_factory=dict)
    sentence_rhythm: SentenceRhythm = field(default_factory=SentenceRhythm)
    imperfections: ImperfectionMarkers = field(default_factory=ImperfectionMarkers)
    maturity: MaturityStage = MaturityStage.COLD
    completed_generations: int = 0
    version: int = 0
    calibration_source: str = "default"  # default | explicit | samples
    updated_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @property
    def confidence(self) -> float:
        """Non-decreasing in completed generations, capped at MAX_CONFIDENCE."""
        return min(MAX_CONFIDENCE, self.completed_generations / MATURE_GENERATION_COUNT)

    def top_phrases(self, limit: int = 3) -> List[str]:
        ranked = sorted(self.signature_phrases.items(), key=lambda item: (-item[1], item[0]))
        return [phrase for phrase, _ in ranked[:limit]]

    def snapshot(self) -> "VoiceProfile":
        """Independent copy for a GenerationRequest."""
        return copy.deepcopy(self)

    def advance_maturity(self) -> bool:
        """
        Move to the stage implied by the generation count.

        Returns:
            True if the stage changed

        Raises:
            VoiceProfileError: if the implied stage is not a forward step
        """
        target = stage_for_count(self.completed_generations)
        if target == self.maturity:
            return False
        if not can_transition(self.maturity, target):
            raise VoiceProfileError(
                f"Invalid maturity transition {self.maturity.value} -> {target.value}"
            )
        self.maturity = target
        return True

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["maturity"] = self.maturity.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VoiceProfile":
        return cls(
            user_id=data["user_id"],
            formality=float(data.get("formality", 5.0)),
            signature_phrases=dict(data.get("signature_phrases") or {}),
            sentence_rhythm=SentenceRhythm(**(data.get("sentence_rhythm") or {})),
            imperfections=ImperfectionMarkers(**(data.get("imperfections") or {})),
            maturity=MaturityStage(data.get("maturity", "cold")),
            completed_generations=int(data.get("completed_generations", 0)),
            version=int(data.get("version", 0)),
            calibration_source=data.get("calibration_source", "default"),
            updated_at=data.get("updated_at") or datetime.now(timezone.utc).isoformat()
        )


@dataclass
class VoiceProfileDelta:
    """Attribute changes promoted from consistent edits. None means unchanged."""
    formality: Optional[float] = None
    avg_sentence_length: Optional[float] = None
    imperfections: Dict[str, bool] = field(default_factory=dict)
    signature_phrases: Dict[str, float] = field(default_factory=dict)
    supporting_records: Dict[str, int] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return (self.formality is None and self.avg_sentence_length is None
                and not self.imperfections and not self.signature_phrases)

    def apply_to(self, profile: VoiceProfile) -> VoiceProfile:
        """Apply in place and return the profile."""
        if self.formality is not None:
            profile.formality = round(min(10.0, max(0.0, self.formality)), 2)
        if self.avg_sentence_length is not None:
            profile.sentence_rhythm.avg_sentence_length = round(self.avg_sentence_length, 1)
        for marker, enabled in self.imperfections.items():
            setattr(profile.imperfections, marker, enabled)
        if self.signature_phrases:
            merged = dict(profile.signature_phrases)
            merged.update(self.signature_phrases)
            ranked = sorted(merged.items(), key=lambda item: (-item[1], item[0]))[:MAX_SIGNATURE_PHRASES]
            profile.signature_phrases = dict(ranked)
        return profile
