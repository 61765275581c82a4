"""
Pytest configuration and fixtures.
Every engine runs against a fresh in-memory SQLite database.
"""
import pytest
from datetime import datetime, timedelta

from sqlalchemy.exc import OperationalError

import ThreatCore  # registers every table on the shared metadata
from ThreatCore.storage import create_session_factory
from ThreatCore.audit import NotificationSink
from ThreatCore.ScoringEngine import ThreatPredictor, FeatureVector
from ThreatCore.FeedbackLearning import FeedbackLearningEngine
from ThreatCore.ResponseLearner import ResponseLearner, AdminDecision, EmailFeatures
from ThreatCore.ResponseLearner.database_models import AdminDecisionRecord
from ThreatCore.Explainer import ThreatExplainer


@pytest.fixture
def session_factory():
    return create_session_factory("sqlite://")


@pytest.fixture
def feedback_engine(session_factory):
    return FeedbackLearningEngine(session_factory=session_factory)


@pytest.fixture
def predictor(session_factory, feedback_engine):
    return ThreatPredictor(session_factory=session_factory, feedback_engine=feedback_engine)


@pytest.fixture
def notifier():
    return NotificationSink()


@pytest.fixture
def learner(session_factory, notifier):
    return ResponseLearner(session_factory=session_factory, notifier=notifier)


@pytest.fixture
def explainer(session_factory, predictor):
    return ThreatExplainer(session_factory=session_factory, predictor=predictor)


# ============================================================================
# DATA FACTORIES
# ============================================================================

def phishing_features():
    """Lookalike sender asking for credentials through a malicious link"""
    return FeatureVector.from_dict({
        'header': {'spf_score': 0.0, 'dkim_score': 0.0, 'dmarc_score': 0.0, 'reply_to_mismatch': True,
                   'display_name_spoof': True, 'header_anomaly_count': 3},
        'content': {'urgency_score': 0.9, 'threat_score': 0.8, 'grammar_score': 0.2,
                    'requests_personal_info': True, 'requests_credentials': True,
                    'suspicious_keyword_count': 5},
        'sender': {'reputation_score': 0.1, 'domain_age_days': 5, 'is_cousin_domain': True,
                   'domain_similarity_score': 0.9, 'is_first_contact': True},
        'url': {'url_count': 3, 'external_url_count': 3, 'shortener_count': 1, 'malicious_url_count': 2,
                'max_url_suspicion_score': 0.9},
        'behavioral': {'sent_during_business_hours': False}
    })


def clean_features():
    """Authenticated reply from a known sender"""
    return FeatureVector.from_dict({
        'sender': {'reputation_score': 0.95, 'domain_age_days': 3000},
        'behavioral': {'is_reply_chain': True, 'has_unsubscribe_link': True}
    })


def make_decision(tenant_id='tenant-1', action='release', original='quarantine', domain='news.example.com',
                  sender='digest@news.example.com', reason=None, **features):
    return AdminDecision(
        tenant_id=tenant_id,
        verdict_id=f"verdict-{action}-{domain}",
        original_verdict=original,
        admin_action=action,
        admin_id='admin-1',
        email_features=EmailFeatures(sender_domain=domain, sender_email=sender, **features),
        reason=reason
    )


def insert_decision(session_factory, decision, timestamp):
    """Write a decision row directly so it can be placed anywhere in time"""
    db = session_factory()
    try:
        db.add(AdminDecisionRecord(
            id=decision.id,
            tenant_id=decision.tenant_id,
            verdict_id=decision.verdict_id,
            original_verdict=decision.original_verdict,
            admin_action=decision.admin_action,
            admin_id=decision.admin_id,
            reason=decision.reason,
            timestamp=timestamp,
            sender_domain=decision.email_features.sender_domain,
            ml_category=decision.email_features.ml_category,
            email_features=decision.email_features.to_dict(),
            subsequent_reported_as_phish=False,
            created_at=datetime.utcnow()
        ))
        db.commit()
    finally:
        db.close()


def days_ago(days):
    return datetime.utcnow() - timedelta(days=days)


class UnavailableSession:
    """Session stand-in whose every query fails like a locked database"""

    def query(self, *args, **kwargs):
        raise OperationalError("SELECT", {}, Exception("database is locked"))

    def rollback(self):
        pass

    def close(self):
        pass
