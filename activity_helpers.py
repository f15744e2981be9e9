"""
Activity Log Helper Functions
"""

import logging
from datetime import datetime

from models import ActivityLog

logger = logging.getLogger(__name__)

DENIED_PREFIX = 'denied:'


def _state_value(state):
    if state is None:
        return None
    return state.value if hasattr(state, 'value') else str(state)


def log_activity(session, actor, action, entity_type, entity_id,
                 previous_state=None, new_state=None, comments=None, details=None):
    """
    Record a workflow transition in the same transaction as the change

    Args:
        session: Database session
        actor: Acting user (id, role, tenant_id)
        action: Permission key of the operation, e.g. 'test.lock'
        entity_type: 'test', 'chapter', 'makeup', 'risk_alert', 'blueprint'
        entity_id: Target row id
        previous_state, new_state: Enum members or strings
    """
    log = ActivityLog(
        tenant_id=actor.tenant_id,
        user_id=actor.id,
        user_name=getattr(actor, 'full_name', None),
        user_role=actor.role,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        previous_state=_state_value(previous_state),
        new_state=_state_value(new_state),
        comments=comments,
        details=details,
    )
    session.add(log)
    logger.info(
        f"{action} on {entity_type} {entity_id} by user {actor.id}: "
        f"{_state_value(previous_state)} -> {_state_value(new_state)}"
    )
    return log


def record_denial(session, actor, action, entity_type, entity_id=None, reason=None, now=None):
    """
    Record an operation refused by the permission gate

    Stored as an ActivityLog row with action 'denied:<action>' so the risk
    monitor can count repeated attempts. The caller commits.
    """
    log = ActivityLog(
        tenant_id=actor.tenant_id,
        user_id=actor.id,
        user_name=getattr(actor, 'full_name', None),
        user_role=actor.role,
        action=f"{DENIED_PREFIX}{action}",
        entity_type=entity_type,
        entity_id=entity_id,
        comments=reason,
        created_at=now or datetime.utcnow(),
    )
    session.add(log)
    return log


def get_activity_logs(session, tenant_id, entity_type=None, entity_id=None, limit=200):
    """Newest-first activity for a school, optionally narrowed to one entity"""
    query = session.query(ActivityLog).filter(ActivityLog.tenant_id == tenant_id)
    if entity_type:
        query = query.filter(ActivityLog.entity_type == entity_type)
    if entity_id is not None:
        query = query.filter(ActivityLog.entity_id == entity_id)
    return query.order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc()).limit(limit).all()
