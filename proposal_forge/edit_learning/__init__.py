"""
Edit-learning loop: diff user edits, classify them and promote consistent
patterns into voice profile changes.
"""

from .models import (
    EditClassification,
    EditSpan,
    EditSignals,
    EditRecord
)

from .diff import (
    build_edit_record,
    classify_span,
    diff_spans,
    record_edit
)

from .promotion import (
    decay_weighted_mean,
    latest_per_proposal,
    promote
)

__all__ = [
    'EditClassification',
    'EditSpan',
    'EditSignals',
    'EditRecord',
    'build_edit_record',
    'classify_span',
    'diff_spans',
    'record_edit',
    'decay_weighted_mean',
    'latest_per_proposal',
    'promote'
]
