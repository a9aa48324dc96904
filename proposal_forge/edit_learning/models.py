"""
Edit record data model.
"""

from dataclasses import dataclass, asdict
from enum import Enum
from typing import Any, Dict, Tuple


class EditClassification(Enum):
    STRUCTURAL = "structural"
    COSMETIC = "cosmetic"


@dataclass(frozen=True)
class EditSpan:
    """One changed region of the diff."""
    before: str
    after: str
    classification: EditClassification
    reason: str


@dataclass(frozen=True)
class EditSignals:
    """Style observations taken from the edited text as a whole."""
    observed_formality: float
    generated_formality: float
    observed_avg_sentence_length: float
    generated_avg_sentence_length: float
    added_phrases: Tuple[str, ...] = ()
    markers_introduced: Tuple[str, ...] = ()
    markers_removed: Tuple[str, ...] = ()
    greeting_changed: bool = False


@dataclass(frozen=True)
class EditRecord:
    """Append-only record of how the user changed a generated proposal."""
    record_id: str
    proposal_id: str
    classification: EditClassification
    changed_spans: Tuple[EditSpan, ...]
    observed: EditSignals
    created_at: str

    @property
    def is_structural(self) -> bool:
        return self.classification == EditClassification.STRUCTURAL

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["classification"] = self.classification.value
        for span in data["changed_spans"]:
            span["classification"] = span["classification"].value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EditRecord":
        observed = dict(data["observed"])
        for key in ("added_phrases", "markers_introduced", "markers_removed"):
            observed[key] = tuple(observed.get(key) or ())
        return cls(
            record_id=data["record_id"],
            proposal_id=data["proposal_id"],
            classification=EditClassification(data["classification"]),
            changed_spans=tuple(
                EditSpan(
                    before=span["before"],
                    after=span["after"],
                    classification=EditClassification(span["classification"]),
                    reason=span["reason"]
                )
                for span in data.get("changed_spans") or []
            ),
            observed=EditSignals(**observed),
            created_at=data["created_at"]
        )
