"""
Voice profile: per-user writing voice, maturity stages and prompt instructions.

The manager lives in ``voice_profile.manager``; it depends on the
edit-learning package, which itself builds on these models.
"""

from .models import (
    MaturityStage,
    MATURITY_THRESHOLDS,
    TRANSITIONS,
    SentenceRhythm,
    ImperfectionMarkers,
    VoiceProfile,
    VoiceProfileDelta,
    stage_for_count,
    can_transition
)

from .instructions import (
    build_voice_instructions,
    tone_label
)

__all__ = [
    'MaturityStage',
    'MATURITY_THRESHOLDS',
    'TRANSITIONS',
    'SentenceRhythm',
    'ImperfectionMarkers',
    'VoiceProfile',
    'VoiceProfileDelta',
    'stage_for_count',
    'can_transition',
    'build_voice_instructions',
    'tone_label'
]
