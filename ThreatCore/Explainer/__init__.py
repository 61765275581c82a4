"""
Threat Explainer
Audience specific explanations, counterfactuals, similar threats and executive summaries
"""

import logging

logging.basicConfig(level=logging.INFO)

from .config import ExplainerConfig
from .enums import Audience, Verbosity, Impact, Feasibility, Outcome
from .models import (
    ExplanationRequest, ExplanationFactor, RiskBreakdown, TechnicalDetails, Explanation,
    ComparativeExplanation, DetectionTimeline, SimilarThreat, CounterfactualExplanation, ExecutiveSummary
)
from .threat_explainer import ThreatExplainer, parse_period

__all__ = [
    'ExplainerConfig',
    'Audience',
    'Verbosity',
    'Impact',
    'Feasibility',
    'Outcome',
    'ExplanationRequest',
    'ExplanationFactor',
    'RiskBreakdown',
    'TechnicalDetails',
    'Explanation',
    'ComparativeExplanation',
    'DetectionTimeline',
    'SimilarThreat',
    'CounterfactualExplanation',
    'ExecutiveSummary',
    'ThreatExplainer',
    'parse_period'
]
