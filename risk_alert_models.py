"""
Risk Alert Models
Alerts derived by the risk monitor from anomalous workflow state
"""
from sqlalchemy import (
    Column, Integer, String, Text, DateTime, ForeignKey,
    Enum as SQLEnum, Index, UniqueConstraint
)
from datetime import datetime
import enum
from models import Base


class RiskAlertType(enum.Enum):
    APPROVAL_DELAY = "approval_delay"
    PAPER_LEAK_RISK = "paper_leak_risk"
    MISSING_DEADLINE = "missing_deadline"
    BLUEPRINT_VIOLATION = "blueprint_violation"
    UNAUTHORIZED_ACCESS = "unauthorized_access"


class RiskSeverity(enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class RiskAlertStatus(enum.Enum):
    ACTIVE = "active"
    RESOLVED = "resolved"


SEVERITY_ORDER = {
    RiskSeverity.CRITICAL: 0,
    RiskSeverity.HIGH: 1,
    RiskSeverity.MEDIUM: 2,
    RiskSeverity.LOW: 3,
}


class RiskAlert(Base):
    """Audit finding on a paper, chapter or user; resolved, never deleted"""
    __tablename__ = 'risk_alerts'
    __table_args__ = (
        # At most one active alert per (type, entity); NULL once resolved
        UniqueConstraint('tenant_id', 'active_key', name='uq_risk_alert_active_key'),
        Index('idx_risk_alert_tenant_status', 'tenant_id', 'status'),
    )

    id = Column(Integer, primary_key=True)
    tenant_id = Column(Integer, ForeignKey('tenants.id'), nullable=False)

    alert_type = Column(SQLEnum(RiskAlertType, values_callable=lambda obj: [e.value for e in obj]), nullable=False)
    severity = Column(SQLEnum(RiskSeverity, values_callable=lambda obj: [e.value for e in obj]), nullable=False)
    title = Column(String(200), nullable=False)
    description = Column(Text)

    # Target entity
    entity_type = Column(String(30), nullable=False)  # test, chapter, user
    entity_id = Column(Integer, nullable=False)
    entity_name = Column(String(200))

    status = Column(SQLEnum(RiskAlertStatus, values_callable=lambda obj: [e.value for e in obj]),
                    default=RiskAlertStatus.ACTIVE, nullable=False)
    active_key = Column(String(80), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    resolved_at = Column(DateTime)
    resolved_by = Column(Integer)

    version = Column(Integer, nullable=False)
    __mapper_args__ = {'version_id_col': version}

    @staticmethod
    def make_active_key(alert_type, entity_type, entity_id):
        return f"{alert_type.value}:{entity_type}:{entity_id}"

    def to_dict(self):
        return {
            'id': self.id,
            'type': self.alert_type.value if self.alert_type else None,
            'severity': self.severity.value if self.severity else None,
            'title': self.title,
            'description': self.description,
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
            'entity_name': self.entity_name,
            'status': self.status.value if self.status else None,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'resolved_at': self.resolved_at.isoformat() if self.resolved_at else None,
            'resolved_by': self.resolved_by,
            'version': self.version,
        }

    def __repr__(self):
        return f"<RiskAlert {self.alert_type.value if self.alert_type else None} {self.entity_type}:{self.entity_id}>"
