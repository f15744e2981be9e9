"""
Examination Models for School ERP
Blueprints, examination papers and makeup sittings
"""
from sqlalchemy import (
    Column, Integer, String, Date, DateTime, Text,
    Boolean, ForeignKey, JSON, Enum as SQLEnum, Index, UniqueConstraint
)
from sqlalchemy.orm import relationship
from datetime import datetime
import enum
from models import Base


class PaperWorkflowState(enum.Enum):
    """Stage of an examination paper in the approval and printing pipeline"""
    DRAFT = "draft"
    PENDING_HOD = "pending_hod"
    HOD_REJECTED = "hod_rejected"
    PENDING_PRINCIPAL = "pending_principal"
    PRINCIPAL_REJECTED = "principal_rejected"
    PRINCIPAL_APPROVED = "principal_approved"
    SENT_TO_COMMITTEE = "sent_to_committee"
    LOCKED = "locked"
    COMPLETED = "completed"


class PaperType(enum.Enum):
    UNIT_TEST = "unit_test"
    REVIEW_TEST = "review_test"
    QUARTERLY = "quarterly"
    HALF_YEARLY = "half_yearly"
    REVISION = "revision"
    PREPARATORY = "preparatory"
    ANNUAL = "annual"
    MOCK = "mock"


class PaperFormat(enum.Enum):
    A4 = "A4"
    LEGAL = "Legal"


class MakeupStatus(enum.Enum):
    """Status of a makeup sitting"""
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class Blueprint(Base):
    """Section and mark structure a paper is generated from"""
    __tablename__ = 'blueprints'

    id = Column(Integer, primary_key=True)
    tenant_id = Column(Integer, ForeignKey('tenants.id'), nullable=False)

    name = Column(String(200), nullable=False)
    subject = Column(String(100), nullable=False)
    grade = Column(String(20), nullable=False)
    total_marks = Column(Integer, nullable=False)
    # [{"name", "marks", "question_count", "question_type", "difficulty", "chapters", "instructions"}]
    sections = Column(JSON, default=list)

    created_by = Column(Integer)
    created_at = Column(DateTime, default=datetime.utcnow)

    tenant = relationship("Tenant")

    @property
    def section_marks(self):
        return sum(int(s.get('marks') or 0) for s in (self.sections or []))

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'subject': self.subject,
            'grade': self.grade,
            'total_marks': self.total_marks,
            'sections': list(self.sections or []),
            'created_by': self.created_by,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Blueprint {self.name} ({self.total_marks} marks)>"


class ExamPaper(Base):
    """Examination paper moving through review, committee, lock and printing"""
    __tablename__ = 'exam_papers'
    __table_args__ = (
        Index('idx_exam_paper_tenant_state', 'tenant_id', 'workflow_state'),
    )

    id = Column(Integer, primary_key=True)
    tenant_id = Column(Integer, ForeignKey('tenants.id'), nullable=False)
    blueprint_id = Column(Integer, ForeignKey('blueprints.id'), nullable=False)
    chapter_id = Column(Integer, ForeignKey('chapters.id'), nullable=True)

    # Basic Information
    title = Column(String(200), nullable=False)
    test_type = Column(SQLEnum(PaperType, values_callable=lambda obj: [e.value for e in obj]),
                       default=PaperType.UNIT_TEST, nullable=False)
    subject = Column(String(100), nullable=False)
    grade = Column(String(20), nullable=False)
    section = Column(String(20))

    # Configuration
    total_marks = Column(Integer, nullable=False)
    duration = Column(Integer, nullable=False)  # minutes
    duration_overridden = Column(Boolean, default=False, nullable=False)
    exam_date = Column(Date)
    paper_format = Column(SQLEnum(PaperFormat, values_callable=lambda obj: [e.value for e in obj]),
                          default=PaperFormat.A4, nullable=False)

    # Workflow
    workflow_state = Column(SQLEnum(PaperWorkflowState, values_callable=lambda obj: [e.value for e in obj]),
                            default=PaperWorkflowState.DRAFT, nullable=False)
    is_confidential = Column(Boolean, default=False, nullable=False)
    printing_ready = Column(Boolean, default=False, nullable=False)
    is_revealed = Column(Boolean, default=False, nullable=False)

    # Review stamps
    submitted_at = Column(DateTime)
    hod_approved_by = Column(Integer)
    hod_approved_at = Column(DateTime)
    hod_comments = Column(Text)
    principal_approved_by = Column(Integer)
    principal_approved_at = Column(DateTime)
    principal_comments = Column(Text)
    sent_to_committee_at = Column(DateTime)
    locked_at = Column(DateTime)
    completed_at = Column(DateTime)

    # Metadata
    created_by = Column(Integer)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Optimistic concurrency
    version = Column(Integer, nullable=False)
    __mapper_args__ = {'version_id_col': version}

    # Relationships
    tenant = relationship("Tenant")
    blueprint = relationship("Blueprint")
    makeup_tests = relationship("MakeupTest", back_populates="exam_paper")

    def to_dict(self):
        return {
            'id': self.id,
            'title': self.title,
            'test_type': self.test_type.value if self.test_type else None,
            'subject': self.subject,
            'grade': self.grade,
            'section': self.section,
            'chapter_id': self.chapter_id,
            'blueprint_id': self.blueprint_id,
            'total_marks': self.total_marks,
            'duration': self.duration,
            'duration_overridden': self.duration_overridden,
            'exam_date': self.exam_date.isoformat() if self.exam_date else None,
            'paper_format': self.paper_format.value if self.paper_format else None,
            'workflow_state': self.workflow_state.value if self.workflow_state else None,
            'is_confidential': self.is_confidential,
            'printing_ready': self.printing_ready,
            'is_revealed': self.is_revealed,
            'submitted_at': self.submitted_at.isoformat() if self.submitted_at else None,
            'hod_approved_by': self.hod_approved_by,
            'hod_approved_at': self.hod_approved_at.isoformat() if self.hod_approved_at else None,
            'hod_comments': self.hod_comments,
            'principal_approved_by': self.principal_approved_by,
            'principal_approved_at': self.principal_approved_at.isoformat() if self.principal_approved_at else None,
            'principal_comments': self.principal_comments,
            'sent_to_committee_at': self.sent_to_committee_at.isoformat() if self.sent_to_committee_at else None,
            'locked_at': self.locked_at.isoformat() if self.locked_at else None,
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
            'created_by': self.created_by,
            'version': self.version,
        }

    def __repr__(self):
        return f"<ExamPaper {self.title} ({self.workflow_state.value if self.workflow_state else None})>"


class MakeupTest(Base):
    """Supplementary sitting of a paper for one student"""
    __tablename__ = 'makeup_tests'
    __table_args__ = (
        # Set while the sitting is not cancelled, NULL afterwards
        UniqueConstraint('active_key', name='uq_makeup_active_key'),
        Index('idx_makeup_tenant_test', 'tenant_id', 'exam_paper_id'),
    )

    id = Column(Integer, primary_key=True)
    tenant_id = Column(Integer, ForeignKey('tenants.id'), nullable=False)
    exam_paper_id = Column(Integer, ForeignKey('exam_papers.id'), nullable=False)
    student_id = Column(Integer, ForeignKey('users.id'), nullable=False)

    reason = Column(Text)
    scheduled_date = Column(Date, nullable=False)
    status = Column(SQLEnum(MakeupStatus, values_callable=lambda obj: [e.value for e in obj]),
                    default=MakeupStatus.SCHEDULED, nullable=False)
    active_key = Column(String(64), nullable=True)

    started_at = Column(DateTime)
    completed_at = Column(DateTime)
    cancelled_at = Column(DateTime)

    created_by = Column(Integer)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    version = Column(Integer, nullable=False)
    __mapper_args__ = {'version_id_col': version}

    exam_paper = relationship("ExamPaper", back_populates="makeup_tests")
    student = relationship("User")

    @staticmethod
    def make_active_key(exam_paper_id, student_id):
        return f"{exam_paper_id}:{student_id}"

    def to_dict(self):
        return {
            'id': self.id,
            'test_id': self.exam_paper_id,
            'test_title': self.exam_paper.title if self.exam_paper else None,
            'student_id': self.student_id,
            'student_name': self.student.full_name if self.student else None,
            'reason': self.reason,
            'scheduled_date': self.scheduled_date.isoformat() if self.scheduled_date else None,
            'status': self.status.value if self.status else None,
            'started_at': self.started_at.isoformat() if self.started_at else None,
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
            'cancelled_at': self.cancelled_at.isoformat() if self.cancelled_at else None,
            'version': self.version,
        }

    def __repr__(self):
        return f"<MakeupTest Test:{self.exam_paper_id} Student:{self.student_id} {self.status.value if self.status else None}>"
