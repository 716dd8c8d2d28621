"""
Append-only audit trail for privileged mutations (KYC decisions, role changes,
account suspensions).
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field
import structlog

from .database import AuditLogModel, DatabaseManager

logger = structlog.get_logger(__name__)


class AuditSeverity(Enum):
    INFO = "INFO"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class AuditRecord(BaseModel):
    """Audit entry as returned to callers."""
    audit_id: str = Field(..., description="Unique audit identifier")
    timestamp: datetime
    action: str
    performed_by: str
    entity_type: str
    entity_id: str
    details: Dict[str, Any] = Field(default_factory=dict)
    severity: str

    model_config = {"from_attributes": True}


class AuditTrail:
    """Writes and reads audit records. Records are never updated or deleted."""

    def __init__(self, db_manager: DatabaseManager):
        self.db_manager = db_manager

    def record(
        self,
        action: str,
        performed_by: str,
        entity_type: str,
        entity_id: str,
        details: Optional[Dict[str, Any]] = None,
        severity: AuditSeverity = AuditSeverity.INFO,
    ) -> AuditRecord:
        """Append an audit record."""
        with self.db_manager.session_scope() as session:
            entry = AuditLogModel(
                audit_id=uuid.uuid4().hex,
                action=action,
                performed_by=performed_by,
                entity_type=entity_type,
                entity_id=entity_id,
                details=details or {},
                severity=severity.value,
            )
            session.add(entry)
            session.flush()
            record = AuditRecord.model_validate(entry)

        logger.info("Audit record written",
                    action=action,
                    entity_type=entity_type,
                    entity_id=entity_id,
                    severity=severity.value)
        return record

    def for_entity(self, entity_type: str, entity_id: str, limit: int = 100) -> List[AuditRecord]:
        """Audit records for an entity, newest first."""
        with self.db_manager.session_scope() as session:
            entries = session.query(AuditLogModel).filter(
                AuditLogModel.entity_type == entity_type,
                AuditLogModel.entity_id == entity_id
            ).order_by(AuditLogModel.timestamp.desc(), AuditLogModel.id.desc()).limit(limit).all()
            return [AuditRecord.model_validate(entry) for entry in entries]
