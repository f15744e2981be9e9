"""
Single Database Multi-Tenant Models
This file contains the shared base, tenants, users and the activity log
"""

from sqlalchemy import Column, Integer, String, Text, DateTime, Boolean, ForeignKey, JSON, Index, UniqueConstraint
from sqlalchemy.orm import declarative_base, relationship
from flask_login import UserMixin
from werkzeug.security import generate_password_hash, check_password_hash
from datetime import datetime

Base = declarative_base()

# ===== ROLES =====
USER_ROLES = (
    'super_admin',
    'admin',
    'hod',
    'principal',
    'exam_committee',
    'teacher',
    'student',
    'parent',
)


# ===== TENANT MODEL =====
class Tenant(Base):
    __tablename__ = 'tenants'

    id = Column(Integer, primary_key=True)
    name = Column(String(200), nullable=False)
    slug = Column(String(100), unique=True, nullable=False)  # URL identifier
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    users = relationship("User", back_populates="tenant", cascade="all, delete-orphan")

    def __repr__(self):
        return f'<Tenant {self.name} ({self.slug})>'


# ===== USER MODEL =====
class User(Base, UserMixin):
    __tablename__ = 'users'
    __table_args__ = (
        UniqueConstraint('tenant_id', 'username', name='uq_user_tenant_username'),
    )

    id = Column(Integer, primary_key=True)
    tenant_id = Column(Integer, ForeignKey('tenants.id'), nullable=True)  # NULL for super admin
    username = Column(String(80), nullable=False)
    email = Column(String(120), nullable=False)
    password_hash = Column(String(255), nullable=False)
    role = Column(String(20), nullable=False, default='teacher')  # one of USER_ROLES
    first_name = Column(String(50))
    last_name = Column(String(50))
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    tenant = relationship("Tenant", back_populates="users")

    def set_password(self, password):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        return check_password_hash(self.password_hash, password)

    @property
    def full_name(self):
        return f"{self.first_name or ''} {self.last_name or ''}".strip() or self.username

    def get_id(self):
        """Return user ID in format needed by Flask-Login"""
        if self.tenant_id:
            return f"school_{self.tenant_id}_{self.id}"
        return f"admin_{self.id}"

    def to_dict(self):
        return {
            'id': self.id,
            'tenant_id': self.tenant_id,
            'username': self.username,
            'name': self.full_name,
            'role': self.role,
        }

    def __repr__(self):
        return f'<User {self.username} ({self.role})>'


# ===== ACTIVITY LOG =====
class ActivityLog(Base):
    """Audit trail of committed workflow transitions and denied attempts"""
    __tablename__ = 'activity_logs'
    __table_args__ = (
        Index('idx_activity_tenant_entity', 'tenant_id', 'entity_type', 'entity_id'),
    )

    id = Column(Integer, primary_key=True)
    tenant_id = Column(Integer, ForeignKey('tenants.id'), nullable=False)
    user_id = Column(Integer, nullable=True)
    user_name = Column(String(120))
    user_role = Column(String(20))

    action = Column(String(50), nullable=False)
    entity_type = Column(String(30), nullable=False)
    entity_id = Column(Integer, nullable=True)
    previous_state = Column(String(30))
    new_state = Column(String(30))
    comments = Column(Text)
    details = Column(JSON)

    created_at = Column(DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'user_name': self.user_name,
            'user_role': self.user_role,
            'action': self.action,
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
            'previous_state': self.previous_state,
            'new_state': self.new_state,
            'comments': self.comments,
            'details': self.details,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f'<ActivityLog {self.action} {self.entity_type}:{self.entity_id}>'
