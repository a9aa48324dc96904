"""
Promotion of consistent edit patterns into voice profile changes.

An attribute only changes when at least ``min_consistent`` distinct edit
records of the same classification agree on it. New values are
decay-weighted means of absolute observations (newest weighs most), so
promoting the same window twice converges instead of drifting.
"""

from collections import defaultdict
from dataclasses import fields
from typing import Dict, Iterable, List, Optional

from .models import EditClassification, EditRecord
from ..voice_profile.models import ImperfectionMarkers, VoiceProfile, VoiceProfileDelta

FORMALITY_TOLERANCE = 0.5
FORMALITY_MIN_SHIFT = 0.25
SENTENCE_LENGTH_TOLERANCE = 2.0
SENTENCE_LENGTH_MIN_SHIFT = 1.0
MAX_NEW_PHRASES = 5

MARKER_NAMES = tuple(f.name for f in fields(ImperfectionMarkers))


def latest_per_proposal(edit_records: Iterable[EditRecord]) -> List[EditRecord]:
    """Newest record per proposal, newest first."""
    ordered = sorted(edit_records, key=lambda r: r.created_at, reverse=True)
    seen = set()
    latest = []
    for record in ordered:
        if record.proposal_id not in seen:
            seen.add(record.proposal_id)
            latest.append(record)
    return latest


def decay_weighted_mean(values: List[float], decay: float) -> float:
    """``values`` newest first."""
    weights = [decay ** i for i in range(len(values))]
    return sum(v * w for v, w in zip(values, weights)) / sum(weights)


def _consistent_shift(records: List[EditRecord], current: float, observed_attr: str, generated_attr: str,
                      tolerance: float, min_shift: float, min_consistent: int) -> Optional[List[EditRecord]]:
    """Records that moved the attribute the same way, if enough of them agree on one direction."""
    higher, lower = [], []
    for record in records:
        observed = getattr(record.observed, observed_attr)
        shift = observed - getattr(record.observed, generated_attr)
        if observed - current > tolerance and shift >= min_shift:
            higher.append(record)
        elif current - observed > tolerance and -shift >= min_shift:
            lower.append(record)

    qualifying = [group for group in (higher, lower) if len(group) >= min_consistent]
    if len(qualifying) != 1:
        # Nothing consistent, or consistent in both directions
        return None
    return qualifying[0]


def _promote_phrases(records: List[EditRecord], profile: VoiceProfile, min_consistent: int,
                     decay: float) -> Dict[str, float]:
    weights: Dict[str, float] = {}
    for classification in EditClassification:
        group = [r for r in records if r.classification == classification]
        support = defaultdict(list)
        for index, record in enumerate(group):
            for phrase in set(record.observed.added_phrases):
                support[phrase].append(index)
        for phrase, indices in support.items():
            if len(indices) >= min_consistent:
                weight = round(sum(decay ** i for i in indices), 4)
                weights[phrase] = max(weight, weights.get(phrase, 0.0))

    # Drop phrases contained in a longer promoted phrase
    selected: Dict[str, float] = {}
    for phrase in sorted(weights, key=lambda p: (-len(p.split()), -weights[p], p)):
        if any(f" {phrase} " in f" {longer} " for longer in selected):
            continue
        if profile.signature_phrases.get(phrase) == weights[phrase]:
            continue
        selected[phrase] = weights[phrase]
        if len(selected) >= MAX_NEW_PHRASES:
            break
    return selected


def promote(edit_records: Iterable[EditRecord], profile: VoiceProfile,
            min_consistent: int = 3, decay: float = 0.7) -> VoiceProfileDelta:
    """
    Derive a profile delta from the user's recent edit records.

    Args:
        edit_records: Recent records for one user, any order
        profile: Current profile the observations are compared against
        min_consistent: Distinct agreeing records needed per attribute
        decay: Weight multiplier per step back in time

    Returns:
        VoiceProfileDelta, empty when no pattern is consistent enough
    """
    min_consistent = max(1, min_consistent)
    records = latest_per_proposal(edit_records)
    structural = [r for r in records if r.classification == EditClassification.STRUCTURAL]
    delta = VoiceProfileDelta()

    formality_group = _consistent_shift(
        structural, profile.formality, "observed_formality", "generated_formality",
        FORMALITY_TOLERANCE, FORMALITY_MIN_SHIFT, min_consistent
    )
    if formality_group:
        delta.formality = decay_weighted_mean([r.observed.observed_formality for r in formality_group], decay)
        delta.supporting_records["formality"] = len(formality_group)

    rhythm_group = _consistent_shift(
        structural, profile.sentence_rhythm.avg_sentence_length,
        "observed_avg_sentence_length", "generated_avg_sentence_length",
        SENTENCE_LENGTH_TOLERANCE, SENTENCE_LENGTH_MIN_SHIFT, min_consistent
    )
    if rhythm_group:
        delta.avg_sentence_length = decay_weighted_mean(
            [r.observed.observed_avg_sentence_length for r in rhythm_group], decay
        )
        delta.supporting_records["avg_sentence_length"] = len(rhythm_group)

    for marker in MARKER_NAMES:
        introduced = sum(1 for r in structural if marker in r.observed.markers_introduced)
        removed = sum(1 for r in structural if marker in r.observed.markers_removed)
        current = getattr(profile.imperfections, marker)
        if introduced >= min_consistent and removed < min_consistent and not current:
            delta.imperfections[marker] = True
            delta.supporting_records[marker] = introduced
        elif removed >= min_consistent and introduced < min_consistent and current:
            delta.imperfections[marker] = False
            delta.supporting_records[marker] = removed

    delta.signature_phrases = _promote_phrases(records, profile, min_consistent, decay)
    if delta.signature_phrases:
        delta.supporting_records["signature_phrases"] = len(delta.signature_phrases)

    return delta
