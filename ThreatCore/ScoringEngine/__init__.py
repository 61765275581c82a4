"""
Scoring Engine - weighted multi-layer threat scoring
Per-category feature scoring, calibration, versioned models and A/B routing
"""

import logging

logging.basicConfig(level=logging.INFO)

from .config import ScoringConfig
from .models import (
    HeaderFeatures, ContentFeatures, SenderFeatures, UrlFeatures, AttachmentFeatures, BehavioralFeatures,
    FeatureVector, CalibrationParams, ThresholdConfig, ModelVersion, FeatureImportance, PredictionResult,
    ABTestConfig, EngineEvent
)
from .feature_scoring import FeatureScorer
from .threat_predictor import ThreatPredictor, hash_tenant_to_bucket

__all__ = [
    'ScoringConfig',
    'HeaderFeatures',
    'ContentFeatures',
    'SenderFeatures',
    'UrlFeatures',
    'AttachmentFeatures',
    'BehavioralFeatures',
    'FeatureVector',
    'CalibrationParams',
    'ThresholdConfig',
    'ModelVersion',
    'FeatureImportance',
    'PredictionResult',
    'ABTestConfig',
    'EngineEvent',
    'FeatureScorer',
    'ThreatPredictor',
    'hash_tenant_to_bucket'
]
