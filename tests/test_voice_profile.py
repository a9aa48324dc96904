"""Tests for voice profiles, maturity and edit promotion."""

import pytest

from proposal_forge.config import VoiceConfig
from proposal_forge.edit_learning import EditClassification, EditRecord, EditSignals, promote
from proposal_forge.errors import VoiceProfileError
from proposal_forge.voice_profile import (
    MaturityStage,
    VoiceProfile,
    build_voice_instructions,
    stage_for_count,
)
from proposal_forge.voice_profile.manager import VoiceProfileManager


def make_record(proposal_id, minute, observed_formality=2.0, generated_formality=6.0,
                classification=EditClassification.STRUCTURAL, added_phrases=(), markers_introduced=()):
    return EditRecord(
        record_id=f"rec-{proposal_id}-{minute}",
        proposal_id=proposal_id,
        classification=classification,
        changed_spans=(),
        observed=EditSignals(
            observed_formality=observed_formality,
            generated_formality=generated_formality,
            observed_avg_sentence_length=15.0,
            generated_avg_sentence_length=15.0,
            added_phrases=tuple(added_phrases),
            markers_introduced=tuple(markers_introduced)
        ),
        created_at=f"2026-03-14T10:{minute:02d}:00+00:00"
    )


@pytest.fixture
def manager():
    return VoiceProfileManager(config=VoiceConfig())


def test_stage_thresholds():
    assert stage_for_count(0) == MaturityStage.COLD
    assert stage_for_count(1) == MaturityStage.CALIBRATING
    assert stage_for_count(2) == MaturityStage.CALIBRATING
    assert stage_for_count(3) == MaturityStage.LEARNING
    assert stage_for_count(9) == MaturityStage.LEARNING
    assert stage_for_count(10) == MaturityStage.MATURE
    assert stage_for_count(250) == MaturityStage.MATURE


@pytest.mark.asyncio
async def test_completed_generations_advance_maturity(manager):
    stages = []
    confidences = []
    for _ in range(10):
        profile = await manager.record_completed_generation("alex")
        stages.append(profile.maturity)
        confidences.append(profile.confidence)

    assert stages[0] == MaturityStage.CALIBRATING
    assert stages[2] == MaturityStage.LEARNING
    assert stages[9] == MaturityStage.MATURE
    assert confidences == sorted(confidences)
    assert confidences[-1] == 1.0
    assert manager.get_status("alex")["is_mature"] is True


def test_maturity_never_moves_backward():
    profile = VoiceProfile(user_id="alex", maturity=MaturityStage.MATURE, completed_generations=0)

    with pytest.raises(VoiceProfileError):
        profile.advance_maturity()
    assert profile.maturity == MaturityStage.MATURE


def test_snapshot_is_independent(manager):
    snapshot = manager.get_snapshot("alex")
    manager.get_profile("alex").formality = 9.0

    assert snapshot.formality == 5.0


@pytest.mark.asyncio
async def test_single_edit_does_not_change_profile(manager):
    delta = await manager.update("alex", [make_record("p1", 1)])

    assert delta.is_empty
    assert manager.get_profile("alex").formality == 5.0
    assert manager.get_profile("alex").version == 0


@pytest.mark.asyncio
async def test_consistent_edits_across_proposals_promote_formality(manager):
    for index, proposal_id in enumerate(["p1", "p2"]):
        delta = await manager.update("alex", [make_record(proposal_id, index)])
        assert delta.is_empty

    delta = await manager.update("alex", [make_record("p3", 2)])

    assert delta.formality == pytest.approx(2.0)
    assert delta.supporting_records["formality"] == 3
    assert manager.get_profile("alex").formality == 2.0
    assert manager.get_profile("alex").version == 1


@pytest.mark.asyncio
async def test_repeated_edits_of_one_proposal_count_once(manager):
    for minute in range(3):
        delta = await manager.update("alex", [make_record("p1", minute)])

    assert delta.is_empty
    assert manager.get_profile("alex").formality == 5.0


@pytest.mark.asyncio
async def test_cosmetic_edits_do_not_move_formality(manager):
    for minute, proposal_id in enumerate(["p1", "p2", "p3", "p4"]):
        delta = await manager.update(
            "alex", [make_record(proposal_id, minute, classification=EditClassification.COSMETIC)]
        )

    assert delta.is_empty
    assert manager.get_profile("alex").formality == 5.0


def test_conflicting_directions_cancel_out():
    records = [make_record(f"low{i}", i, observed_formality=1.5) for i in range(3)]
    records += [make_record(f"high{i}", 10 + i, observed_formality=9.0, generated_formality=5.0) for i in range(3)]

    delta = promote(records, VoiceProfile(user_id="alex"))

    assert delta.formality is None


def test_promotion_converges_when_repeated():
    records = [make_record(f"p{i}", i, observed_formality=2.0 + i * 0.2) for i in range(3)]
    profile = VoiceProfile(user_id="alex")

    first = promote(records, profile)
    first.apply_to(profile)
    second = promote(records, profile)

    assert first.formality is not None
    assert second.formality is None


def test_phrases_and_markers_need_agreement():
    records = [
        make_record(f"p{i}", i, observed_formality=5.0, generated_formality=5.0,
                    added_phrases=["quick question", "happy to help"] if i < 3 else ["happy to help"],
                    markers_introduced=["casual_asides"])
        for i in range(4)
    ]

    delta = promote(records, VoiceProfile(user_id="alex"))

    assert set(delta.signature_phrases) == {"quick question", "happy to help"}
    assert delta.signature_phrases["happy to help"] > delta.signature_phrases["quick question"]
    assert delta.imperfections == {"casual_asides": True}


@pytest.mark.asyncio
async def test_edit_records_persist_between_managers(db_manager):
    first = VoiceProfileManager(db_manager=db_manager, config=VoiceConfig())
    await first.update("alex", [make_record("p1", 1)])
    await first.update("alex", [make_record("p2", 2)])

    second = VoiceProfileManager(db_manager=db_manager, config=VoiceConfig())
    delta = await second.update("alex", [make_record("p3", 3)])

    assert delta.formality == pytest.approx(2.0)
    reloaded = VoiceProfileManager(db_manager=db_manager, config=VoiceConfig())
    assert reloaded.get_profile("alex").formality == 2.0


@pytest.mark.asyncio
async def test_explicit_calibration(manager):
    profile = await manager.calibrate(
        "alex", formality=3.0, signature_phrases=["Happy to help", " "],
        avg_sentence_length=11, imperfections={"fragments": True}
    )

    assert profile.formality == 3.0
    assert profile.sentence_rhythm.length_label == "short"
    assert profile.signature_phrases == {"happy to help": 1.0}
    assert profile.imperfections.fragments is True
    assert profile.calibration_source == "explicit"
    assert profile.maturity == MaturityStage.COLD


@pytest.mark.asyncio
async def test_invalid_calibration_leaves_profile_unchanged(manager):
    with pytest.raises(VoiceProfileError):
        await manager.calibrate("alex", formality=12)
    with pytest.raises(VoiceProfileError):
        await manager.calibrate("alex", formality=2.0, imperfections={"typos": True})

    assert manager.get_profile("alex").formality == 5.0


@pytest.mark.asyncio
async def test_calibration_from_samples(manager):
    samples = [
        "Hey, happy to help with this. I've done lots of similar stuff before. Happy to jump on a call.",
        "Hey there! Happy to jump on a call whenever works. Honestly this is pretty cool stuff.",
    ]

    profile = await manager.calibrate_from_samples("alex", samples)

    assert profile.formality < 3.5
    assert "happy to jump" in profile.signature_phrases
    assert profile.calibration_source == "samples"
    assert profile.completed_generations == 0


@pytest.mark.asyncio
async def test_calibration_requires_samples(manager):
    with pytest.raises(VoiceProfileError):
        await manager.calibrate_from_samples("alex", ["", "   "])


def test_instructions_follow_maturity():
    profile = VoiceProfile(user_id="alex", formality=2.0, signature_phrases={"happy to help": 2.0})
    profile.imperfections.fragments = True

    cold = build_voice_instructions(profile)
    assert "casual and conversational" in cold
    assert "Sentence length" not in cold
    assert "happy to help" not in cold

    profile.maturity = MaturityStage.LEARNING
    learning = build_voice_instructions(profile)
    assert '"happy to help"' in learning
    assert "sentence fragment" in learning

    profile.maturity = MaturityStage.MATURE
    assert "dominant" in build_voice_instructions(profile)
