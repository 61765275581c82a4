"""
HTTP surface tests. Each test gets its own in-memory database; the
maintenance scheduler is not started because the client is not used as a
context manager.
"""
import pytest
from fastapi.testclient import TestClient

from ThreatCore import api
from ThreatCore.storage import create_session_factory

from conftest import phishing_features


@pytest.fixture
def client():
    api.init_core(create_session_factory("sqlite://"))
    yield TestClient(api.app)
    api.core = None


def phishing_payload(**extra):
    payload = {'features': phishing_features().to_dict(), 'tenant_id': 'tenant-1'}
    payload.update(extra)
    return payload


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy", "component": "threat_core"}


def test_predict(client):
    response = client.post("/predict", json=phishing_payload())
    assert response.status_code == 200
    body = response.json()
    assert body['threat_type'] == 'phishing'
    assert body['risk_level'] == 'high'
    assert 'verdict_id' not in body


def test_predict_rejects_unknown_section(client):
    response = client.post("/predict", json={'features': {'network': {'hops': 3}}})
    assert response.status_code == 400


def test_predict_rejects_unknown_field(client):
    response = client.post("/predict", json={'features': {'header': {'spf': 1.0}}})
    assert response.status_code == 400


def test_predict_rejects_non_numeric_value(client):
    response = client.post("/predict", json={'features': {'header': {'spf_score': 'x'}}})
    assert response.status_code == 400


def test_batch_predict(client):
    response = client.post("/predict/batch", json={'features': [phishing_features().to_dict(), {}]})
    assert response.status_code == 200
    assert [r['risk_level'] for r in response.json()['results']] == ['high', 'safe']


def test_recorded_verdict_can_be_explained(client):
    response = client.post("/predict", json=phishing_payload(
        record=True, sender='it@examp1e.com', subject='Verify your account'
    ))
    verdict_id = response.json()['verdict_id']

    response = client.get(f"/explain/{verdict_id}", params={'audience': 'analyst'})
    assert response.status_code == 200
    body = response.json()
    assert body['summary'].startswith('Detection triggered by the following factors:')
    assert len(body['technical_details']['thresholds']) == 4

    response = client.get(f"/explain/{verdict_id}/timeline")
    assert response.status_code == 200
    assert response.json()['entries'][0]['layer'] == 'intake'


def test_unknown_verdict_is_404(client):
    assert client.get("/explain/missing").status_code == 404
    assert client.get("/explain/missing/counterfactual").status_code == 404


def test_invalid_audience_is_400(client):
    response = client.post("/predict", json=phishing_payload(record=True))
    verdict_id = response.json()['verdict_id']
    assert client.get(f"/explain/{verdict_id}", params={'audience': 'board'}).status_code == 400


def test_models_listing_and_deploy(client):
    response = client.get("/models")
    assert response.json()['active'] == '1.0.0'

    response = client.post("/models", json={'version': '2.0.0', 'weights': {'header': 1, 'content': 1}})
    assert response.status_code == 200
    assert response.json()['event_type'] == 'model_deployed'

    response = client.post("/models", json={'version': '2.0.0', 'weights': {'header': 1}})
    assert response.status_code == 400

    assert client.post("/models/9.9.9/activate").status_code == 404


def test_thresholds(client):
    response = client.put("/thresholds", json={'low_threshold': 0.9})
    assert response.status_code == 400

    response = client.put("/thresholds", json={'tenant_id': 'tenant-1', 'critical_threshold': 0.8})
    assert response.status_code == 200

    assert client.get("/thresholds", params={'tenant_id': 'tenant-1'}).json()['critical_threshold'] == 0.8
    assert client.get("/thresholds").json()['critical_threshold'] == 0.85


def test_feedback_flow(client):
    payload = {'feedback_id': 'fb-1', 'tenant_id': 'tenant-1', 'sender_domain': 'news.example.com',
               'feedback_type': 'false_positive'}
    first = client.post("/feedback", json=payload).json()
    replay = client.post("/feedback", json=payload).json()
    assert first['duplicate'] is False
    assert replay['duplicate'] is True

    response = client.get("/feedback/tenant-1/reputation/news.example.com")
    assert response.status_code == 200
    assert client.get("/feedback/tenant-1/reputation/unknown.example.com").status_code == 404

    analytics = client.get("/feedback/tenant-1/analytics").json()
    assert analytics['total_feedback'] == 1

    assert client.post("/feedback/fb-1/incorporate").json()['status'] == 'incorporated'
    assert client.post("/feedback/missing/incorporate").status_code == 404


def test_decisions(client):
    decision = {
        'tenant_id': 'tenant-1', 'verdict_id': 'v-1', 'admin_id': 'admin-1',
        'original_verdict': 'quarantine', 'admin_action': 'release',
        'email_features': {'sender_domain': 'news.example.com', 'sender_email': 'digest@news.example.com'}
    }
    response = client.post("/decisions", json=decision)
    assert response.status_code == 200
    assert response.json()['decision_id']

    invalid = dict(decision, admin_action='ignore')
    assert client.post("/decisions", json=invalid).status_code == 400

    unknown_feature = dict(decision, email_features={'sender_domain': 'a.com', 'colour': 'red'})
    assert client.post("/decisions", json=unknown_feature).status_code == 400

    response = client.post("/decisions/tenant-1/query", json={'admin_actions': ['release']})
    assert response.json()['count'] == 1

    patterns = client.get("/learning/tenant-1/patterns").json()
    assert patterns['insufficient_data'] is True

    trail = client.get("/audit/tenant-1").json()
    assert trail['count'] == 1
    assert trail['entries'][0]['action'] == 'admin_action'
    assert client.get("/audit/tenant-2").json()['count'] == 0


def test_learning_settings_and_rates(client):
    settings = client.get("/learning/tenant-1/settings").json()
    assert settings['deterministic_quarantine_threshold'] == 40

    rates = client.get("/learning/tenant-1/rates").json()
    assert rates['false_positive']['overall_rate'] == 0.0
    assert rates['false_negative']['sample_size'] == 0


def test_executive_summary(client):
    client.post("/predict", json=phishing_payload(record=True))
    response = client.get("/reports/tenant-1/executive-summary", params={'period': '1 week'})
    assert response.status_code == 200
    assert response.json()['statistics']['total_emails'] == 1


def test_policy_test_validation(client):
    response = client.post("/policy-tests", json={
        'tenant_id': 'tenant-1', 'suggestion_id': 'missing', 'name': 'test', 'test_group_percentage': 20
    })
    assert response.status_code == 404
