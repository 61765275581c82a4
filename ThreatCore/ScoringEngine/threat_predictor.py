import logging
import random
import threading
import time
from dataclasses import asdict, replace
from datetime import datetime
from typing import Dict, List, Optional, Any, Tuple
from uuid import uuid4

from sqlalchemy.exc import SQLAlchemyError

from ..audit import AuditLog
from ..errors import NotFoundError, TransientStoreError, ValidationError
from ..storage import create_session_factory, upsert
from .config import ScoringConfig
from .database_models import (
    ModelVersionRecord, ActiveModelPointer, ThresholdRecord, ModelABTestRecord, VerdictRecord
)
from .feature_scoring import FeatureScorer
from .models import (
    FeatureVector, ModelVersion, CalibrationParams, ThresholdConfig, PredictionResult,
    ABTestConfig, EngineEvent
)

logger = logging.getLogger(__name__)


def hash_tenant_to_bucket(tenant_id: str) -> int:
    """Deterministic 0-99 bucket: 31-multiplier string hash truncated to signed 32 bits"""
    h = 0
    for ch in tenant_id:
        h = (h * 31 + ord(ch)) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return abs(h) % 100


def _normalize_weights(weights: Dict[str, float]) -> Dict[str, float]:
    if any(w < 0 for w in weights.values()):
        raise ValidationError("Model weights must be non-negative")
    total = sum(weights.values())
    if total <= 0:
        raise ValidationError("Model weights must sum to a positive value")
    return {category: w / total for category, w in weights.items()}


def _model_from_record(record: ModelVersionRecord) -> ModelVersion:
    return ModelVersion(
        version=record.version,
        weights=dict(record.weights),
        calibration=CalibrationParams(**record.calibration),
        metrics=dict(record.metrics or {}),
        trained_at=record.trained_at,
        deployed_at=record.deployed_at,
        is_active=record.is_active
    )


def _thresholds_from_record(record: ThresholdRecord) -> ThresholdConfig:
    return ThresholdConfig(
        critical_threshold=record.critical_threshold,
        high_threshold=record.high_threshold,
        medium_threshold=record.medium_threshold,
        low_threshold=record.low_threshold,
        threat_type_thresholds=dict(record.threat_type_thresholds or {})
    )


class ThreatPredictor:
    """Versioned weighted multi-layer scoring engine with calibration and A/B routing"""

    def __init__(self, config: ScoringConfig = None, session_factory=None, feedback_engine=None):
        self.config = config or ScoringConfig()

        if session_factory is None:
            self._initialize_storage()
        else:
            self.SessionLocal = session_factory

        self.scorer = FeatureScorer(
            precedence=self.config.THREAT_TYPE_PRECEDENCE,
            elevated_score=self.config.ELEVATED_SCORE,
            clean_score=self.config.CLEAN_SCORE,
            confidence_floor=self.config.CONFIDENCE_FLOOR,
            confidence_ceiling=self.config.CONFIDENCE_CEILING
        )
        self.feedback_engine = feedback_engine
        self.audit = AuditLog()

        self.prediction_cache: Dict[Tuple, Tuple[PredictionResult, float]] = {}
        self._cache_lock = threading.Lock()

        self._seed_defaults()

        logger.info("Threat Predictor initialized")

    def _initialize_storage(self):
        self.SessionLocal = create_session_factory(self.config.DATABASE_URL)

    def _seed_defaults(self):
        db = self.SessionLocal()
        try:
            now = datetime.utcnow()
            scope = self.config.SCOPE_GLOBAL
            has_pointer = db.query(ActiveModelPointer).filter_by(scope=scope).first() is not None

            db.execute(upsert(db, ModelVersionRecord).values(
                version=self.config.DEFAULT_MODEL_VERSION,
                weights=_normalize_weights(dict(self.config.DEFAULT_WEIGHTS)),
                calibration=dict(self.config.DEFAULT_CALIBRATION),
                metrics=dict(self.config.DEFAULT_METRICS),
                trained_at=now,
                deployed_at=now,
                is_active=not has_pointer,
                created_at=now
            ).on_conflict_do_nothing(index_elements=['version']))

            db.execute(upsert(db, ActiveModelPointer).values(
                scope=scope,
                version=self.config.DEFAULT_MODEL_VERSION,
                generation=0,
                updated_at=now
            ).on_conflict_do_nothing(index_elements=['scope']))

            defaults = ThresholdConfig(**self.config.DEFAULT_THRESHOLDS)
            defaults.validate()
            db.execute(upsert(db, ThresholdRecord).values(
                scope=scope,
                critical_threshold=defaults.critical_threshold,
                high_threshold=defaults.high_threshold,
                medium_threshold=defaults.medium_threshold,
                low_threshold=defaults.low_threshold,
                threat_type_thresholds={},
                updated_at=now
            ).on_conflict_do_nothing(index_elements=['scope']))

            db.commit()
        except SQLAlchemyError as e:
            logger.error(f"Error seeding default model: {e}")
            db.rollback()
            raise TransientStoreError("Failed to seed default model") from e
        finally:
            db.close()

    # ------------------------------------------------------------------
    # prediction
    # ------------------------------------------------------------------

    def _select_model_version(self, db, tenant_id: Optional[str]) -> Tuple[str, Optional[str]]:
        now = datetime.utcnow()
        tests = db.query(ModelABTestRecord).filter_by(active=True).order_by(
            ModelABTestRecord.start_time
        ).all()

        for test in tests:
            if test.end_time and now > test.end_time:
                continue

            bucket = hash_tenant_to_bucket(tenant_id) if tenant_id else random.random() * 100
            if bucket < test.variant_b_percentage:
                return test.variant_b_model, f"{test.test_id}:B"
            return test.variant_a_model, f"{test.test_id}:A"

        pointer = db.query(ActiveModelPointer).filter_by(scope=self.config.SCOPE_GLOBAL).one()
        return pointer.version, None

    def _load_thresholds(self, db, tenant_id: Optional[str]) -> ThresholdConfig:
        record = None
        if tenant_id:
            record = db.query(ThresholdRecord).filter_by(scope=tenant_id).first()
        if record is None:
            record = db.query(ThresholdRecord).filter_by(scope=self.config.SCOPE_GLOBAL).one()
        return _thresholds_from_record(record)

    def _bump_generation(self, db):
        db.query(ActiveModelPointer).filter(ActiveModelPointer.scope == self.config.SCOPE_GLOBAL).update(
            {'generation': ActiveModelPointer.generation + 1}, synchronize_session=False
        )

    def _resolve(self, tenant_id: Optional[str]) -> Tuple[ModelVersion, ThresholdConfig, Optional[str], int]:
        db = self.SessionLocal()
        try:
            version, variant = self._select_model_version(db, tenant_id)
            record = db.query(ModelVersionRecord).filter_by(version=version).first()
            if record is None:
                raise NotFoundError(f"Model version {version} not found")
            generation = db.query(ActiveModelPointer.generation).filter_by(scope=self.config.SCOPE_GLOBAL).scalar()
            return _model_from_record(record), self._load_thresholds(db, tenant_id), variant, generation or 0
        finally:
            db.close()

    def score(self, features: FeatureVector, model: ModelVersion, thresholds: ThresholdConfig,
              ab_test_variant: Optional[str] = None) -> PredictionResult:
        start = time.perf_counter()

        raw_scores, indicators = self.scorer.raw_scores(features)
        combined = self.scorer.combine(raw_scores, model.weights)
        threat_score = self.scorer.calibrate(combined, model.calibration)
        threat_type = self.scorer.threat_type(features, threat_score)

        importance = []
        if self.config.ENABLE_FEATURE_IMPORTANCE:
            importance = self.scorer.feature_importance(raw_scores, indicators, model.weights)

        return PredictionResult(
            threat_score=threat_score,
            confidence=self.scorer.confidence(features, threat_score),
            threat_type=threat_type,
            risk_level=self.scorer.risk_level(threat_score, threat_type, thresholds),
            model_version=model.version,
            prediction_time_ms=(time.perf_counter() - start) * 1000,
            feature_importance=importance,
            raw_scores=raw_scores,
            ab_test_variant=ab_test_variant
        )

    def _predict(self, features: FeatureVector, tenant_id: Optional[str]) -> Tuple[PredictionResult, ThresholdConfig]:
        start = time.perf_counter()
        model, thresholds, variant, generation = self._resolve(tenant_id)

        # generation moves on every model, threshold or routing write
        cache_key = (features.fingerprint(), model.version, generation, variant, tenant_id)
        if self.config.ENABLE_CACHE:
            with self._cache_lock:
                cached = self.prediction_cache.get(cache_key)
            if cached and (time.monotonic() - cached[1]) * 1000 < self.config.CACHE_TTL_MS:
                return replace(cached[0], prediction_time_ms=(time.perf_counter() - start) * 1000), thresholds

        result = self.score(features, model, thresholds, variant)

        if self.config.ENABLE_CACHE:
            with self._cache_lock:
                self.prediction_cache[cache_key] = (result, time.monotonic())

        logger.debug(
            f"Prediction tenant={tenant_id} score={result.threat_score:.3f} "
            f"type={result.threat_type} risk={result.risk_level} model={model.version}"
        )
        return result, thresholds

    async def predict(self, features: FeatureVector, tenant_id: Optional[str] = None) -> PredictionResult:
        result, _ = self._predict(features, tenant_id)
        return result

    async def batch_predict(self, batch: List[FeatureVector], tenant_id: Optional[str] = None) -> List[PredictionResult]:
        if len(batch) > self.config.MAX_BATCH_SIZE:
            raise ValidationError(
                f"Batch size {len(batch)} exceeds maximum {self.config.MAX_BATCH_SIZE}"
            )

        return [await self.predict(features, tenant_id) for features in batch]

    async def predict_with_feedback(self, features: FeatureVector, tenant_id: str, sender_domain: str,
                                    urls: Optional[List[str]] = None,
                                    subject: Optional[str] = None) -> PredictionResult:
        result, thresholds = self._predict(features, tenant_id)
        if self.feedback_engine is None:
            return replace(result, base_score=result.threat_score)

        rules = await self.feedback_engine.get_applicable_rules(tenant_id, sender_domain, urls, subject)
        adjustment = self.feedback_engine.calculate_rule_adjustment(rules)
        if not adjustment.applied_rules:
            return replace(result, base_score=result.threat_score)

        adjusted = max(0.0, min(1.0, result.threat_score + adjustment.adjustment / 100.0))

        return replace(
            result,
            threat_score=adjusted,
            risk_level=self.scorer.risk_level(adjusted, result.threat_type, thresholds),
            base_score=result.threat_score,
            rule_adjustment=adjustment.adjustment,
            rule_explanation=adjustment.explanation
        )

    def calibrate_confidence(self, raw_score: float, calibration: Optional[CalibrationParams] = None) -> float:
        if calibration is None:
            calibration = self._resolve(None)[0].calibration
        return self.scorer.calibrate(raw_score, calibration)

    # ------------------------------------------------------------------
    # verdict persistence
    # ------------------------------------------------------------------

    async def record_verdict(self, result: PredictionResult, tenant_id: str, features: FeatureVector,
                             subject: str = "", sender: str = "", message_id: Optional[str] = None,
                             layer_results: Optional[List[Dict[str, Any]]] = None,
                             action_taken: Optional[str] = None) -> str:
        verdict_id = str(uuid4())
        verdict = self.config.VERDICT_ACTIONS.get(result.risk_level, 'pass')

        db = self.SessionLocal()
        try:
            db.add(VerdictRecord(
                id=verdict_id,
                tenant_id=tenant_id,
                message_id=message_id or verdict_id,
                subject=subject,
                sender=sender,
                sender_domain=sender.split('@')[-1].lower() if sender else None,
                verdict=verdict,
                threat_type=result.threat_type,
                risk_level=result.risk_level,
                threat_score=result.threat_score,
                confidence=result.confidence,
                model_version=result.model_version,
                raw_scores=result.raw_scores,
                feature_importance=[asdict(fi) for fi in result.feature_importance],
                features=features.to_dict(),
                signals=sorted({fi.feature for fi in result.feature_importance if fi.contribution > 0}),
                layer_results=layer_results or self._derive_layer_results(result),
                processing_time_ms=result.prediction_time_ms,
                action_taken=action_taken or verdict,
                created_at=datetime.utcnow()
            ))
            db.commit()
        except SQLAlchemyError as e:
            logger.error(f"Error recording verdict: {e}")
            db.rollback()
            raise TransientStoreError("Failed to record verdict") from e
        finally:
            db.close()

        logger.info(f"Verdict {verdict_id} recorded: {verdict} ({result.threat_type}, {result.threat_score:.3f})")
        return verdict_id

    def _derive_layer_results(self, result: PredictionResult) -> List[Dict[str, Any]]:
        per_layer = max(result.prediction_time_ms, 0.0) / max(1, len(result.raw_scores))
        layers = []
        for category, raw in result.raw_scores.items():
            layers.append({
                'layer': category,
                'score': raw,
                'signals': [fi.feature for fi in result.feature_importance
                            if fi.category == category and fi.contribution > 0],
                'processing_time_ms': per_layer,
                'skipped': False,
                'skip_reason': None
            })
        return layers

    # ------------------------------------------------------------------
    # model lifecycle
    # ------------------------------------------------------------------

    async def get_model_version(self) -> str:
        db = self.SessionLocal()
        try:
            return db.query(ActiveModelPointer).filter_by(scope=self.config.SCOPE_GLOBAL).one().version
        finally:
            db.close()

    async def get_model(self, version: str) -> ModelVersion:
        db = self.SessionLocal()
        try:
            record = db.query(ModelVersionRecord).filter_by(version=version).first()
            if record is None:
                raise NotFoundError(f"Model version {version} not found")
            return _model_from_record(record)
        finally:
            db.close()

    async def get_all_model_versions(self) -> List[ModelVersion]:
        db = self.SessionLocal()
        try:
            records = db.query(ModelVersionRecord).order_by(ModelVersionRecord.created_at).all()
            return [_model_from_record(r) for r in records]
        finally:
            db.close()

    async def deploy_model(self, version: str, weights: Dict[str, float],
                           calibration: Optional[Dict[str, Any]] = None,
                           metrics: Optional[Dict[str, float]] = None,
                           trained_at: Optional[datetime] = None) -> EngineEvent:
        unknown = set(weights) - set(self.config.DEFAULT_WEIGHTS)
        if unknown:
            raise ValidationError(f"Unknown weight categories: {sorted(unknown)}")
        merged_weights = {category: weights.get(category, 0.0) for category in self.config.DEFAULT_WEIGHTS}
        normalized = _normalize_weights(merged_weights)
        calibration_params = CalibrationParams(**{**self.config.DEFAULT_CALIBRATION, **(calibration or {})})

        db = self.SessionLocal()
        try:
            if db.query(ModelVersionRecord).filter_by(version=version).first():
                raise ValidationError(f"Model version {version} already exists")

            now = datetime.utcnow()
            db.add(ModelVersionRecord(
                version=version,
                weights=normalized,
                calibration=asdict(calibration_params),
                metrics=metrics or {},
                trained_at=trained_at or now,
                deployed_at=now,
                is_active=False,
                created_at=now
            ))
            self.audit.record(db, None, 'model_deployed', 'model_version', version,
                              {'weights': normalized, 'metrics': metrics or {}})
            db.commit()
        except SQLAlchemyError as e:
            logger.error(f"Error deploying model {version}: {e}")
            db.rollback()
            raise TransientStoreError(f"Failed to deploy model {version}") from e
        finally:
            db.close()

        logger.info(f"Model {version} deployed")
        return EngineEvent('model_deployed', {'version': version, 'metrics': metrics or {}})

    def _swap_active(self, version: str) -> str:
        db = self.SessionLocal()
        try:
            target = db.query(ModelVersionRecord).filter_by(version=version).first()
            if target is None:
                raise NotFoundError(f"Model version {version} not found")

            scope = self.config.SCOPE_GLOBAL
            pointer = db.query(ActiveModelPointer).filter_by(scope=scope).one()
            previous, generation = pointer.version, pointer.generation
            now = datetime.utcnow()

            swapped = db.query(ActiveModelPointer).filter(
                ActiveModelPointer.scope == scope,
                ActiveModelPointer.generation == generation
            ).update(
                {'version': version, 'generation': generation + 1, 'updated_at': now},
                synchronize_session=False
            )
            if swapped != 1:
                db.rollback()
                raise TransientStoreError("Concurrent model activation detected, retry")

            db.query(ModelVersionRecord).filter(ModelVersionRecord.version != version).update(
                {'is_active': False}, synchronize_session=False
            )
            db.query(ModelVersionRecord).filter(ModelVersionRecord.version == version).update(
                {'is_active': True, 'deployed_at': now}, synchronize_session=False
            )
            self.audit.record(db, None, 'model_activated', 'model_version', version,
                              {'from_version': previous, 'generation': generation + 1})
            db.commit()
            return previous
        except SQLAlchemyError as e:
            logger.error(f"Error activating model {version}: {e}")
            db.rollback()
            raise TransientStoreError(f"Failed to activate model {version}") from e
        finally:
            db.close()

    async def activate_model(self, version: str) -> EngineEvent:
        previous = self._swap_active(version)
        self.clear_cache()
        logger.info(f"Model activated: {previous} -> {version}")
        return EngineEvent('model_activated', {'from_version': previous, 'to_version': version})

    async def rollback(self, version: str) -> EngineEvent:
        previous = self._swap_active(version)
        self.clear_cache()
        logger.info(f"Model rolled back: {previous} -> {version}")
        return EngineEvent('model_rollback', {
            'from_version': previous,
            'to_version': version,
            'timestamp': datetime.utcnow().isoformat()
        })

    async def update_model_weights(self, version: str, weights: Dict[str, float]) -> EngineEvent:
        unknown = set(weights) - set(self.config.DEFAULT_WEIGHTS)
        if unknown:
            raise ValidationError(f"Unknown weight categories: {sorted(unknown)}")

        db = self.SessionLocal()
        try:
            record = db.query(ModelVersionRecord).filter_by(version=version).first()
            if record is None:
                raise NotFoundError(f"Model version {version} not found")

            normalized = _normalize_weights({**record.weights, **weights})
            record.weights = normalized
            self._bump_generation(db)
            self.audit.record(db, None, 'weights_updated', 'model_version', version, {'weights': normalized})
            db.commit()
        except SQLAlchemyError as e:
            logger.error(f"Error updating weights for {version}: {e}")
            db.rollback()
            raise TransientStoreError(f"Failed to update weights for {version}") from e
        finally:
            db.close()

        self.clear_cache()
        return EngineEvent('weights_updated', {'version': version, 'weights': normalized})

    async def update_calibration(self, version: str, calibration: Dict[str, Any]) -> EngineEvent:
        unknown = set(calibration) - {'a', 'b', 'enabled'}
        if unknown:
            raise ValidationError(f"Unknown calibration fields: {sorted(unknown)}")

        db = self.SessionLocal()
        try:
            record = db.query(ModelVersionRecord).filter_by(version=version).first()
            if record is None:
                raise NotFoundError(f"Model version {version} not found")

            updated = {**record.calibration, **calibration}
            record.calibration = updated
            self._bump_generation(db)
            self.audit.record(db, None, 'calibration_updated', 'model_version', version, {'calibration': updated})
            db.commit()
        except SQLAlchemyError as e:
            logger.error(f"Error updating calibration for {version}: {e}")
            db.rollback()
            raise TransientStoreError(f"Failed to update calibration for {version}") from e
        finally:
            db.close()

        self.clear_cache()
        return EngineEvent('calibration_updated', {'version': version, 'calibration': updated})

    # ------------------------------------------------------------------
    # thresholds
    # ------------------------------------------------------------------

    async def get_thresholds(self, tenant_id: Optional[str] = None) -> ThresholdConfig:
        db = self.SessionLocal()
        try:
            return self._load_thresholds(db, tenant_id)
        finally:
            db.close()

    async def update_thresholds(self, thresholds: Dict[str, Any], tenant_id: Optional[str] = None) -> EngineEvent:
        scope = tenant_id or self.config.SCOPE_GLOBAL

        db = self.SessionLocal()
        try:
            current = self._load_thresholds(db, tenant_id)
            updated = current.merged(thresholds)
            updated.validate()

            record = db.query(ThresholdRecord).filter_by(scope=scope).first()
            if record is None:
                record = ThresholdRecord(scope=scope)
                db.add(record)
            record.critical_threshold = updated.critical_threshold
            record.high_threshold = updated.high_threshold
            record.medium_threshold = updated.medium_threshold
            record.low_threshold = updated.low_threshold
            record.threat_type_thresholds = dict(updated.threat_type_thresholds)
            record.updated_at = datetime.utcnow()

            self._bump_generation(db)
            self.audit.record(db, tenant_id, 'thresholds_updated', 'threshold_config', scope, updated.to_dict())
            db.commit()
        except SQLAlchemyError as e:
            logger.error(f"Error updating thresholds for {scope}: {e}")
            db.rollback()
            raise TransientStoreError("Failed to update thresholds") from e
        finally:
            db.close()

        self.clear_cache()
        logger.info(f"Thresholds updated for {scope}")
        return EngineEvent('thresholds_updated', {'tenant_id': tenant_id, 'thresholds': updated.to_dict()})

    # ------------------------------------------------------------------
    # A/B tests
    # ------------------------------------------------------------------

    async def enable_ab_test(self, test_id: str, variant_a_model: str, variant_b_model: str,
                             variant_b_percentage: float, end_time: Optional[datetime] = None) -> EngineEvent:
        if variant_b_percentage < 0 or variant_b_percentage > 100:
            raise ValidationError("Variant B percentage must be between 0 and 100")

        db = self.SessionLocal()
        try:
            for model in (variant_a_model, variant_b_model):
                if db.query(ModelVersionRecord).filter_by(version=model).first() is None:
                    raise NotFoundError(f"Model version {model} not found")

            record = db.query(ModelABTestRecord).filter_by(test_id=test_id).first()
            if record is None:
                record = ModelABTestRecord(test_id=test_id)
                db.add(record)
            record.variant_a_model = variant_a_model
            record.variant_b_model = variant_b_model
            record.variant_b_percentage = variant_b_percentage
            record.active = True
            record.start_time = datetime.utcnow()
            record.end_time = end_time

            self._bump_generation(db)
            self.audit.record(db, None, 'ab_test_started', 'model_ab_test', test_id, {
                'variant_a_model': variant_a_model,
                'variant_b_model': variant_b_model,
                'variant_b_percentage': variant_b_percentage
            })
            db.commit()
        except SQLAlchemyError as e:
            logger.error(f"Error enabling A/B test {test_id}: {e}")
            db.rollback()
            raise TransientStoreError(f"Failed to enable A/B test {test_id}") from e
        finally:
            db.close()

        self.clear_cache()
        return EngineEvent('ab_test_started', {
            'test_id': test_id,
            'variant_a_model': variant_a_model,
            'variant_b_model': variant_b_model,
            'variant_b_percentage': variant_b_percentage
        })

    async def disable_ab_test(self, test_id: str) -> EngineEvent:
        db = self.SessionLocal()
        try:
            record = db.query(ModelABTestRecord).filter_by(test_id=test_id).first()
            if record is None:
                raise NotFoundError(f"A/B test {test_id} not found")

            record.active = False
            record.end_time = datetime.utcnow()
            self._bump_generation(db)
            self.audit.record(db, None, 'ab_test_ended', 'model_ab_test', test_id, {})
            db.commit()
        except SQLAlchemyError as e:
            logger.error(f"Error disabling A/B test {test_id}: {e}")
            db.rollback()
            raise TransientStoreError(f"Failed to disable A/B test {test_id}") from e
        finally:
            db.close()

        self.clear_cache()
        return EngineEvent('ab_test_ended', {'test_id': test_id})

    async def get_ab_test_status(self, test_id: str) -> ABTestConfig:
        db = self.SessionLocal()
        try:
            record = db.query(ModelABTestRecord).filter_by(test_id=test_id).first()
            if record is None:
                raise NotFoundError(f"A/B test {test_id} not found")
            return ABTestConfig(
                test_id=record.test_id,
                variant_a_model=record.variant_a_model,
                variant_b_model=record.variant_b_model,
                variant_b_percentage=record.variant_b_percentage,
                active=record.active,
                start_time=record.start_time,
                end_time=record.end_time
            )
        finally:
            db.close()

    # ------------------------------------------------------------------
    # housekeeping
    # ------------------------------------------------------------------

    async def get_stats(self) -> Dict[str, Any]:
        db = self.SessionLocal()
        try:
            return {
                'active_model': db.query(ActiveModelPointer).filter_by(scope=self.config.SCOPE_GLOBAL).one().version,
                'total_model_versions': db.query(ModelVersionRecord).count(),
                'active_ab_tests': db.query(ModelABTestRecord).filter_by(active=True).count(),
                'cache_size': len(self.prediction_cache),
                'tenant_configurations': db.query(ThresholdRecord).filter(
                    ThresholdRecord.scope != self.config.SCOPE_GLOBAL
                ).count()
            }
        finally:
            db.close()

    def clear_cache(self):
        with self._cache_lock:
            self.prediction_cache.clear()

