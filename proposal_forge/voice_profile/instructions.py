"""
Voice instructions for the generation prompt.

How much of the profile reaches the prompt depends on maturity: a cold
profile only sets tone and leaves the template in charge, a mature one is
marked as taking precedence over template phrasing.
"""

from .models import MaturityStage, VoiceProfile


def tone_label(formality: float) -> str:
    if formality < 3.5:
        return "casual and conversational"
    if formality < 6.5:
        return "balanced (professional yet approachable)"
    return "professional and formal"


MARKER_INSTRUCTIONS = {
    "fragments": "An occasional sentence fragment for emphasis is fine",
    "mild_redundancy": "Repeating a key phrase once for emphasis is fine",
    "casual_asides": "Brief asides (in parentheses or after a dash) are welcome",
}


def build_voice_instructions(profile: VoiceProfile) -> str:
    """Render the VOICE CALIBRATION block for ``profile``."""
    stage = profile.maturity
    lines = [f"- Tone: Write in a {tone_label(profile.formality)} tone (calibrated score: {profile.formality:.1f}/10)"]

    if stage != MaturityStage.COLD:
        rhythm = profile.sentence_rhythm
        lines.append(
            f"- Sentence length: Use {rhythm.length_label} sentences "
            f"(target avg: {rhythm.avg_sentence_length:.0f} words, {rhythm.variation} rhythm)"
        )

    if stage in (MaturityStage.LEARNING, MaturityStage.MATURE):
        phrases = profile.top_phrases(3)
        if phrases:
            quoted = ", ".join(f'"{p}"' for p in phrases)
            lines.append(f"- Signature phrases: Naturally incorporate variations of: {quoted}")
        for marker in profile.imperfections.enabled():
            lines.append(f"- {MARKER_INSTRUCTIONS[marker]}")

    if stage == MaturityStage.MATURE:
        header = "VOICE CALIBRATION (dominant: follow this voice over the template's default phrasing):"
    elif stage == MaturityStage.COLD:
        header = "VOICE CALIBRATION (light touch: the template structure and phrasing lead):"
    else:
        header = "VOICE CALIBRATION (match the user's natural writing style):"

    return "\n" + header + "\n" + "\n".join(lines) + "\n"
