"""
Diffing and classification of user edits.

Each changed span between the generated proposal and the user's text is
structural (greeting, formality, tone, paragraphing or a sentence-level
rewrite) or cosmetic (a short word swap). The record as a whole is
structural if any span is, or if a greeting or sign-off appeared or
went away.
"""

import difflib
import uuid
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from .models import EditClassification, EditRecord, EditSignals, EditSpan
from ..ai_processing import text_stats

PARAGRAPH_TOKEN = "¶"
REWRITE_MIN_WORDS = 6
MAX_ADDED_PHRASES = 40

GREETING_WORDS = {
    "hi", "hello", "hey", "dear", "greetings", "regards", "cheers", "thanks",
    "sincerely", "best", "warmly",
}


def _diff_tokens(text: str) -> List[str]:
    tokens = []
    for index, paragraph in enumerate(text_stats.split_paragraphs(text)):
        if index:
            tokens.append(PARAGRAPH_TOKEN)
        tokens.extend(paragraph.split())
    return tokens


def _bare(word: str) -> str:
    return text_stats.normalize_apostrophes(word).strip(".,;:!?\"()[]").lower()


def classify_span(before: List[str], after: List[str]) -> Tuple[EditClassification, str]:
    changed = before + after

    if PARAGRAPH_TOKEN in changed:
        return EditClassification.STRUCTURAL, "paragraph structure"

    bare = {_bare(w) for w in changed}
    if bare & GREETING_WORDS:
        return EditClassification.STRUCTURAL, "greeting or sign-off"

    if bare & (text_stats.FORMAL_WORDS | text_stats.CASUAL_WORDS):
        return EditClassification.STRUCTURAL, "formality"

    before_text, after_text = " ".join(before), " ".join(after)
    before_contractions = len(text_stats.CONTRACTION_RE.findall(text_stats.normalize_apostrophes(before_text)))
    after_contractions = len(text_stats.CONTRACTION_RE.findall(text_stats.normalize_apostrophes(after_text)))
    if before_contractions != after_contractions:
        return EditClassification.STRUCTURAL, "formality"

    for mark in "!?":
        if before_text.count(mark) != after_text.count(mark):
            return EditClassification.STRUCTURAL, "tone"

    if max(len(before), len(after)) >= REWRITE_MIN_WORDS:
        return EditClassification.STRUCTURAL, "sentence rewrite"

    return EditClassification.COSMETIC, "word swap"


def diff_spans(generated_text: str, new_text: str) -> List[EditSpan]:
    old_tokens = _diff_tokens(generated_text)
    new_tokens = _diff_tokens(new_text)
    matcher = difflib.SequenceMatcher(None, old_tokens, new_tokens, autojunk=False)

    spans = []
    for tag, i1, i2, j1, j2 in matcher.get_opcodes():
        if tag == "equal":
            continue
        before, after = old_tokens[i1:i2], new_tokens[j1:j2]
        classification, reason = classify_span(before, after)
        spans.append(EditSpan(
            before=" ".join(before),
            after=" ".join(after),
            classification=classification,
            reason=reason
        ))
    return spans


def _added_phrases(generated_text: str, spans: List[EditSpan]) -> Tuple[str, ...]:
    existing = set(text_stats.candidate_phrases(generated_text))
    added = set()
    for span in spans:
        if not span.after:
            continue
        for phrase in text_stats.candidate_phrases(span.after.replace(PARAGRAPH_TOKEN, " ")):
            if phrase not in existing:
                added.add(phrase)
    # Longest first so the cap keeps the most specific phrases
    return tuple(sorted(added, key=lambda p: (-len(p.split()), p))[:MAX_ADDED_PHRASES])


def build_edit_record(proposal_id: str, generated_text: str, new_text: str) -> Optional[EditRecord]:
    """Pure diff of ``new_text`` against ``generated_text``. None if nothing changed."""
    spans = diff_spans(generated_text, new_text)
    if not spans:
        return None

    generated_markers = text_stats.detect_imperfections(generated_text)
    new_markers = text_stats.detect_imperfections(new_text)

    observed = EditSignals(
        observed_formality=round(text_stats.formality_score(new_text), 3),
        generated_formality=round(text_stats.formality_score(generated_text), 3),
        observed_avg_sentence_length=round(text_stats.average_sentence_length(new_text), 3),
        generated_avg_sentence_length=round(text_stats.average_sentence_length(generated_text), 3),
        added_phrases=_added_phrases(generated_text, spans),
        markers_introduced=tuple(m for m, on in new_markers.items() if on and not generated_markers[m]),
        markers_removed=tuple(m for m, on in generated_markers.items() if on and not new_markers[m]),
        greeting_changed=(text_stats.has_greeting(generated_text) != text_stats.has_greeting(new_text)
                          or text_stats.has_signoff(generated_text) != text_stats.has_signoff(new_text))
    )

    # A greeting or sign-off can appear without any greeting word in the changed span
    structural = observed.greeting_changed or any(
        span.classification == EditClassification.STRUCTURAL for span in spans
    )
    return EditRecord(
        record_id=uuid.uuid4().hex,
        proposal_id=proposal_id,
        classification=EditClassification.STRUCTURAL if structural else EditClassification.COSMETIC,
        changed_spans=tuple(spans),
        observed=observed,
        created_at=datetime.now(timezone.utc).isoformat()
    )


def record_edit(proposal, new_text: str) -> Optional[EditRecord]:
    """
    Diff the proposal's generated text against ``new_text``.

    Appends the record to ``proposal.edit_history`` and sets
    ``proposal.text``. Returns None without touching the proposal when
    ``new_text`` equals the current text.
    """
    if new_text == proposal.text:
        return None

    proposal.text = new_text
    record = build_edit_record(proposal.proposal_id, proposal.generated_text, new_text)
    if record is not None:
        proposal.edit_history.append(record)
    return record
