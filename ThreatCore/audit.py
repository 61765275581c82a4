import logging
from collections import deque
from datetime import datetime
from typing import Dict, List, Optional, Any
from uuid import uuid4

from sqlalchemy import Column, String, DateTime, JSON

from .config import CoreConfig
from .storage import Base

logger = logging.getLogger(__name__)


class AuditLogRecord(Base):
    """Tenant scoped audit trail entry"""
    __tablename__ = 'audit_logs'

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    tenant_id = Column(String, index=True)
    actor_id = Column(String, default='system')
    action = Column(String, index=True)
    resource_type = Column(String)
    resource_id = Column(String)
    after_state = Column(JSON)
    created_at = Column(DateTime, default=datetime.utcnow)


class AuditLog:
    """Appends audit entries inside the caller's transaction"""

    def record(self, db, tenant_id: Optional[str], action: str, resource_type: str,
               resource_id: str, after_state: Optional[Dict[str, Any]] = None,
               actor_id: str = 'system'):
        db.add(AuditLogRecord(
            id=str(uuid4()),
            tenant_id=tenant_id,
            actor_id=actor_id,
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            after_state=after_state or {},
            created_at=datetime.utcnow()
        ))

    def entries(self, db, tenant_id: Optional[str] = None, action: Optional[str] = None,
                limit: int = 100) -> List[Dict[str, Any]]:
        query = db.query(AuditLogRecord)
        if tenant_id:
            query = query.filter(AuditLogRecord.tenant_id == tenant_id)
        if action:
            query = query.filter(AuditLogRecord.action == action)

        records = query.order_by(AuditLogRecord.created_at.desc()).limit(
            min(limit, CoreConfig.AUDIT_QUERY_LIMIT)
        ).all()

        return [
            {
                'id': r.id,
                'tenant_id': r.tenant_id,
                'actor_id': r.actor_id,
                'action': r.action,
                'resource_type': r.resource_type,
                'resource_id': r.resource_id,
                'after_state': r.after_state,
                'created_at': r.created_at
            }
            for r in records
        ]


class NotificationSink:
    """Receives emerging-pattern alerts; delivery is logged and kept in a bounded history"""

    def __init__(self, history: int = CoreConfig.NOTIFICATION_HISTORY):
        self.sent = deque(maxlen=history)

    def notify(self, tenant_id: Optional[str], kind: str, message: str,
               details: Optional[Dict[str, Any]] = None):
        alert = {
            'tenant_id': tenant_id,
            'kind': kind,
            'message': message,
            'details': details or {},
            'timestamp': datetime.utcnow()
        }
        self.sent.append(alert)
        logger.warning(f"[{kind}] tenant={tenant_id}: {message}")
