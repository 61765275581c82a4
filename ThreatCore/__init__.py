"""
ThreatCore - adaptive decision core for email threat detection
Scoring, feedback learning, administrator decision learning and verdict explanations
"""

import logging

logging.basicConfig(level=logging.INFO)

from .config import CoreConfig
from .errors import ThreatCoreError, ValidationError, NotFoundError, TransientStoreError
from .storage import Base, create_session_factory
from .audit import AuditLog, NotificationSink
from .ScoringEngine import ThreatPredictor, FeatureVector, PredictionResult
from .FeedbackLearning import FeedbackLearningEngine, FeedbackEvent
from .ResponseLearner import ResponseLearner, AdminDecision, AdminAction, EmailFeatures
from .Explainer import ThreatExplainer, ExplanationRequest

__all__ = [
    'CoreConfig',
    'ThreatCoreError',
    'ValidationError',
    'NotFoundError',
    'TransientStoreError',
    'Base',
    'create_session_factory',
    'AuditLog',
    'NotificationSink',
    'ThreatPredictor',
    'FeatureVector',
    'PredictionResult',
    'FeedbackLearningEngine',
    'FeedbackEvent',
    'ResponseLearner',
    'AdminDecision',
    'AdminAction',
    'EmailFeatures',
    'ThreatExplainer',
    'ExplanationRequest'
]
