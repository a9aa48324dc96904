"""
Voice profile manager.

Owns per-user voice profiles: maturity advancement after completed
generations, explicit and sample-based calibration, and promotion of
consistent edit patterns. Updates for one user are serialized.
"""

import asyncio
from collections import Counter, defaultdict
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from .models import ImperfectionMarkers, MaturityStage, SentenceRhythm, VoiceProfile, VoiceProfileDelta
from ..config.database import DatabaseManager
from ..config.settings import VoiceConfig, get_voice_config
from ..edit_learning.models import EditRecord
from ..edit_learning.promotion import MARKER_NAMES, promote
from ..ai_processing import text_stats
from ..errors import VoiceProfileError
from ..utils.logger import get_voice_logger

logger = get_voice_logger()

SAMPLE_PHRASE_LENGTH = 3
SAMPLE_PHRASE_MIN_COUNT = 2
SAMPLE_PHRASE_LIMIT = 5


class VoiceProfileManager:
    """Loads, updates and persists voice profiles."""

    def __init__(self, db_manager: Optional[DatabaseManager] = None, config: Optional[VoiceConfig] = None):
        self.db_manager = db_manager
        self.config = config or get_voice_config()
        self._profiles: Dict[str, VoiceProfile] = {}
        self._edit_records: Dict[str, List[EditRecord]] = defaultdict(list)
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, user_id: str) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[user_id] = lock
        return lock

    def get_profile(self, user_id: str) -> VoiceProfile:
        """Live profile for ``user_id``, created cold on first use."""
        profile = self._profiles.get(user_id)
        if profile is not None:
            return profile

        stored = self.db_manager.load_voice_profile(user_id) if self.db_manager else None
        if stored:
            profile = VoiceProfile.from_dict(stored)
            logger.debug(f"Loaded voice profile for {user_id}", maturity=profile.maturity.value)
        else:
            profile = VoiceProfile(user_id=user_id)
            logger.info(f"Created cold voice profile for {user_id}")

        self._profiles[user_id] = profile
        return profile

    def get_snapshot(self, user_id: str) -> VoiceProfile:
        """Independent copy, unaffected by later updates."""
        return self.get_profile(user_id).snapshot()

    def _save(self, profile: VoiceProfile) -> None:
        profile.updated_at = datetime.now(timezone.utc).isoformat()
        if self.db_manager:
            self.db_manager.save_voice_profile(profile.to_dict())

    def _store_records(self, user_id: str, edit_records: Iterable[EditRecord]) -> None:
        for record in edit_records:
            if self.db_manager:
                self.db_manager.append_edit_record(user_id, record.to_dict())
            else:
                self._edit_records[user_id].append(record)

    def recent_edit_records(self, user_id: str) -> List[EditRecord]:
        """The user's edit window, newest first."""
        window = self.config.edit_window
        if self.db_manager:
            return [EditRecord.from_dict(data) for data in self.db_manager.load_edit_records(user_id, window)]
        return list(reversed(self._edit_records[user_id][-window:]))

    async def record_completed_generation(self, user_id: str) -> VoiceProfile:
        """Count a completed generation and advance maturity if a threshold was crossed."""
        async with self._lock_for(user_id):
            profile = self.get_profile(user_id)
            previous = profile.maturity
            profile.completed_generations += 1
            changed = profile.advance_maturity()
            profile.version += 1
            self._save(profile)

            if changed:
                logger.info(
                    f"Voice profile for {user_id} advanced {previous.value} -> {profile.maturity.value}",
                    completed_generations=profile.completed_generations
                )
            return profile

    async def update(self, user_id: str, edit_records: Iterable[EditRecord]) -> VoiceProfileDelta:
        """
        Store new edit records and promote consistent patterns.

        Args:
            user_id: Profile owner
            edit_records: Records from one completed proposal (usually its latest)

        Returns:
            The applied delta, empty when no attribute had enough agreeing edits
        """
        new_records = list(edit_records)
        async with self._lock_for(user_id):
            profile = self.get_profile(user_id)
            self._store_records(user_id, new_records)

            window = self.recent_edit_records(user_id)
            delta = promote(window, profile, self.config.min_consistent_edits, self.config.decay)

            if delta.is_empty:
                logger.debug(
                    f"No consistent edit pattern for {user_id} yet",
                    window=len(window), new_records=len(new_records)
                )
                return delta

            delta.apply_to(profile)
            profile.version += 1
            self._save(profile)
            logger.info(
                f"Promoted edit patterns into voice profile for {user_id}",
                version=profile.version, supporting_records=delta.supporting_records
            )
            return delta

    async def calibrate(self, user_id: str, formality: Optional[float] = None,
                        signature_phrases: Optional[Iterable[str]] = None,
                        avg_sentence_length: Optional[float] = None,
                        imperfections: Optional[Dict[str, bool]] = None) -> VoiceProfile:
        """Explicit calibration. Leaves maturity and the generation count alone."""
        if formality is not None and not 0.0 <= formality <= 10.0:
            raise VoiceProfileError(f"Formality must be between 0 and 10, got {formality}")
        if avg_sentence_length is not None and avg_sentence_length <= 0:
            raise VoiceProfileError(f"Average sentence length must be positive, got {avg_sentence_length}")
        unknown = [m for m in (imperfections or {}) if m not in MARKER_NAMES]
        if unknown:
            raise VoiceProfileError(f"Unknown imperfection marker: {', '.join(unknown)}")

        async with self._lock_for(user_id):
            profile = self.get_profile(user_id)
            if formality is not None:
                profile.formality = round(formality, 2)
            if avg_sentence_length is not None:
                profile.sentence_rhythm.avg_sentence_length = round(avg_sentence_length, 1)
            if signature_phrases:
                delta = VoiceProfileDelta(signature_phrases={
                    phrase.strip().lower(): 1.0 for phrase in signature_phrases if phrase.strip()
                })
                delta.apply_to(profile)
            if imperfections:
                for marker, enabled in imperfections.items():
                    setattr(profile.imperfections, marker, bool(enabled))

            profile.calibration_source = "explicit"
            profile.version += 1
            self._save(profile)
            logger.info(f"Calibrated voice profile for {user_id}", formality=profile.formality)
            return profile

    async def calibrate_from_samples(self, user_id: str, texts: Iterable[str]) -> VoiceProfile:
        """Derive formality, rhythm, markers and repeated phrases from past writing."""
        samples = [t for t in texts if t and t.strip()]
        if not samples:
            raise VoiceProfileError("No writing samples to calibrate from")

        combined = "\n\n".join(samples)
        lengths = text_stats.sentence_lengths(combined)
        phrase_counts = Counter()
        for sample in samples:
            tokens = text_stats.tokenize(sample)
            for gram in set(text_stats.ngrams(tokens, SAMPLE_PHRASE_LENGTH)):
                if all(w in text_stats.STOPWORDS for w in gram):
                    continue
                phrase_counts[" ".join(gram)] += 1

        phrases = [p for p, c in phrase_counts.most_common() if c >= SAMPLE_PHRASE_MIN_COUNT][:SAMPLE_PHRASE_LIMIT]

        marker_votes = Counter()
        for sample in samples:
            for marker, present in text_stats.detect_imperfections(sample).items():
                if present:
                    marker_votes[marker] += 1

        async with self._lock_for(user_id):
            profile = self.get_profile(user_id)
            profile.formality = round(text_stats.formality_score(combined), 2)
            if lengths:
                profile.sentence_rhythm = SentenceRhythm(
                    avg_sentence_length=round(sum(lengths) / len(lengths), 1),
                    variation="varied" if text_stats.burstiness(combined) >= 0.4 else "steady"
                )
            # A marker counts when it shows up in at least half the samples
            profile.imperfections = ImperfectionMarkers(**{
                marker: marker_votes[marker] * 2 >= len(samples)
                for marker in MARKER_NAMES
            })
            if phrases:
                VoiceProfileDelta(signature_phrases={p: float(phrase_counts[p]) for p in phrases}).apply_to(profile)

            profile.calibration_source = "samples"
            profile.version += 1
            self._save(profile)
            logger.info(
                f"Calibrated voice profile for {user_id} from {len(samples)} samples",
                formality=profile.formality, phrases=len(phrases)
            )
            return profile

    def get_status(self, user_id: str) -> Dict[str, object]:
        profile = self.get_profile(user_id)
        return {
            "user_id": user_id,
            "maturity": profile.maturity.value,
            "confidence": profile.confidence,
            "completed_generations": profile.completed_generations,
            "version": profile.version,
            "is_mature": profile.maturity == MaturityStage.MATURE,
        }
