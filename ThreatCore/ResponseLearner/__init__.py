"""
Response Learner - learns from administrator overrides
Mines false positive patterns, tunes tenant thresholds and watches for drift
"""

import logging

logging.basicConfig(level=logging.INFO)

from .config import ResponseLearnerConfig
from .enums import (
    OriginalVerdict, DecisionAction, ActionType, PatternKind, SuggestionType, SuggestionStatus,
    DriftType, ABTestStatus, Recommendation, SignalType, Trend
)
from .models import (
    EmailFeatures, AdminDecision, AdminAction, DecisionFilters, Pattern, PatternAnalysis,
    PolicySuggestion, ThresholdAdjustment, ThresholdSuggestion, DriftReport, DriftMetrics,
    RateMetrics, LearningSignal, TrainingDataset, ActionPatterns, FeedbackQuality,
    AggregatedLearning, ABTestResults, PolicyABTest
)
from .drift import compare_windows
from .response_learner import ResponseLearner

__all__ = [
    'ResponseLearnerConfig',
    'OriginalVerdict',
    'DecisionAction',
    'ActionType',
    'PatternKind',
    'SuggestionType',
    'SuggestionStatus',
    'DriftType',
    'ABTestStatus',
    'Recommendation',
    'SignalType',
    'Trend',
    'EmailFeatures',
    'AdminDecision',
    'AdminAction',
    'DecisionFilters',
    'Pattern',
    'PatternAnalysis',
    'PolicySuggestion',
    'ThresholdAdjustment',
    'ThresholdSuggestion',
    'DriftReport',
    'DriftMetrics',
    'RateMetrics',
    'LearningSignal',
    'TrainingDataset',
    'ActionPatterns',
    'FeedbackQuality',
    'AggregatedLearning',
    'ABTestResults',
    'PolicyABTest',
    'compare_windows',
    'ResponseLearner'
]
