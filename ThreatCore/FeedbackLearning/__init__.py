"""
Feedback Learning Engine
Turns repeated user feedback into sender reputation, patterns and learned scoring rules
"""

import logging

logging.basicConfig(level=logging.INFO)

from .config import FeedbackLearningConfig
from .enums import FeedbackType, PatternType, RuleType, SenderCategory, LearningEvent
from .rule_conditions import ConditionOperator, RuleCondition, evaluate_condition
from .models import FeedbackEvent, FeedbackResult, LearnedRule, RuleAdjustment, FeedbackAnalytics
from .feedback_learning_engine import FeedbackLearningEngine

__all__ = [
    'FeedbackLearningConfig',
    'FeedbackType',
    'PatternType',
    'RuleType',
    'SenderCategory',
    'LearningEvent',
    'ConditionOperator',
    'RuleCondition',
    'evaluate_condition',
    'FeedbackEvent',
    'FeedbackResult',
    'LearnedRule',
    'RuleAdjustment',
    'FeedbackAnalytics',
    'FeedbackLearningEngine'
]
