"""
Quality scoring for generated and edited proposals.
"""

from .quality_scorer import (
    QualityScore,
    QualityCategory,
    RiskLevel,
    assess_ai_risk,
    categorize,
    reference_found,
    score
)

__all__ = [
    'QualityScore',
    'QualityCategory',
    'RiskLevel',
    'assess_ai_risk',
    'categorize',
    'reference_found',
    'score'
]
