"""
Chapter Models for the Examination Workflow
Syllabus units with unlock/lock/deadline/reveal state and portion tracking
"""
from sqlalchemy import (
    Column, Integer, String, DateTime, Boolean, ForeignKey, JSON,
    Enum as SQLEnum, Index
)
from sqlalchemy.orm import relationship
from datetime import datetime
import enum
from models import Base


class ChapterStatus(enum.Enum):
    """Chapter lifecycle state (distinct from a paper's locked state)"""
    DRAFT = "draft"
    LOCKED = "locked"
    UNLOCKED = "unlocked"
    COMPLETED = "completed"


class Chapter(Base):
    """Syllabus unit for a subject and grade"""
    __tablename__ = 'chapters'
    __table_args__ = (
        Index('idx_chapter_tenant_subject', 'tenant_id', 'subject', 'grade'),
    )

    id = Column(Integer, primary_key=True)
    tenant_id = Column(Integer, ForeignKey('tenants.id'), nullable=False)

    name = Column(String(200), nullable=False)
    subject = Column(String(100), nullable=False)
    grade = Column(String(20), nullable=False)
    order_index = Column(Integer, default=0)

    status = Column(SQLEnum(ChapterStatus, values_callable=lambda obj: [e.value for e in obj]),
                    default=ChapterStatus.DRAFT, nullable=False)
    unlock_date = Column(DateTime, nullable=True)
    deadline = Column(DateTime, nullable=True)
    scores_revealed = Column(Boolean, default=False, nullable=False)

    # Portions
    topics = Column(JSON, default=list)
    completed_topics = Column(JSON, default=list)

    created_by = Column(Integer)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Optimistic concurrency
    version = Column(Integer, nullable=False)
    __mapper_args__ = {'version_id_col': version}

    tenant = relationship("Tenant")

    @property
    def progress(self):
        """Percentage of topics completed, rounded to the nearest integer"""
        topics = self.topics or []
        if not topics:
            return 0
        # Half rounds up (12.5 -> 13)
        return int(len(self.completed_topics or []) * 100 / len(topics) + 0.5)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'subject': self.subject,
            'grade': self.grade,
            'order_index': self.order_index,
            'status': self.status.value if self.status else None,
            'unlock_date': self.unlock_date.isoformat() if self.unlock_date else None,
            'deadline': self.deadline.isoformat() if self.deadline else None,
            'scores_revealed': self.scores_revealed,
            'topics': list(self.topics or []),
            'completed_topics': list(self.completed_topics or []),
            'progress': self.progress,
            'version': self.version,
        }

    def __repr__(self):
        return f"<Chapter {self.name} ({self.status.value if self.status else None})>"
