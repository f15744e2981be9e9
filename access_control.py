"""
Access Control Gate
Single permission table consulted by every workflow operation.

authorize() is a pure function of (role, action) plus an optional tenant
check against the target entity; it never touches the database.
"""

from collections import namedtuple
import logging

from workflow_errors import Unauthorized

logger = logging.getLogger(__name__)

AccessDecision = namedtuple('AccessDecision', ['allowed', 'reason'])

# Verified identity of the caller for one request
Actor = namedtuple('Actor', ['id', 'role', 'tenant_id', 'full_name'])

STAFF_ROLES = frozenset({'admin', 'hod', 'principal', 'exam_committee', 'teacher'})
ALL_ROLES = STAFF_ROLES | {'student', 'parent'}

_CHAPTER_EDITORS = frozenset({'admin', 'hod', 'teacher'})
_PAPER_AUTHORS = frozenset({'admin', 'hod'})
_PRINCIPAL_DESK = frozenset({'admin', 'principal'})
_COMMITTEE = frozenset({'admin', 'exam_committee'})
_MAKEUP_SCHEDULERS = frozenset({'admin', 'hod', 'teacher'})

PERMISSIONS = {
    # Chapters
    'chapter.view': ALL_ROLES,
    'chapter.create': _CHAPTER_EDITORS,
    'chapter.unlock': _CHAPTER_EDITORS,
    'chapter.lock': _CHAPTER_EDITORS,
    'chapter.set_deadline': _CHAPTER_EDITORS,
    'chapter.reveal': _CHAPTER_EDITORS,
    'chapter.update_portions': _CHAPTER_EDITORS,
    'chapter.complete': _CHAPTER_EDITORS | {'exam_committee'},

    # Blueprints
    'blueprint.view': STAFF_ROLES,
    'blueprint.create': _PAPER_AUTHORS,

    # Examination papers
    'test.view': STAFF_ROLES,
    'test.create': _PAPER_AUTHORS,
    'test.update': _PAPER_AUTHORS,
    'test.submit': _PAPER_AUTHORS,
    'test.hod_approve': _PAPER_AUTHORS,
    'test.hod_reject': _PAPER_AUTHORS,
    'test.principal_approve': _PRINCIPAL_DESK,
    'test.principal_reject': _PRINCIPAL_DESK,
    'test.send_to_committee': _PRINCIPAL_DESK,
    'test.mark_confidential': _COMMITTEE,
    'test.lock': _COMMITTEE,
    'test.mark_printing_ready': _COMMITTEE,
    'test.complete': _COMMITTEE,
    'test.reveal': _PRINCIPAL_DESK | _COMMITTEE,

    # Makeup sittings
    'makeup.view': STAFF_ROLES,
    'makeup.schedule': _MAKEUP_SCHEDULERS,
    'makeup.start': _MAKEUP_SCHEDULERS,
    'makeup.complete': _MAKEUP_SCHEDULERS,
    'makeup.cancel': _MAKEUP_SCHEDULERS,

    # Risk alerts and audit trail
    'risk_alert.view': _PRINCIPAL_DESK,
    'risk_alert.acknowledge': _PRINCIPAL_DESK,
    'risk_alert.evaluate': _PRINCIPAL_DESK,
    'activity_log.view': _PRINCIPAL_DESK,
}

# super_admin holds every admin right
ADMIN_EQUIVALENT_ROLES = frozenset({'super_admin'})


def authorize(role, action, entity=None, tenant_id=None):
    """
    Decide whether role may perform action on entity.

    Args:
        role: Caller's role name
        action: Permission key, e.g. 'test.lock'
        entity: Optional target carrying a tenant_id attribute
        tenant_id: Caller's tenant; compared with the entity's when both are given

    Returns:
        AccessDecision(allowed, reason)
    """
    allowed_roles = PERMISSIONS.get(action)
    if allowed_roles is None:
        return AccessDecision(False, f"unknown action '{action}'")

    effective_role = 'admin' if role in ADMIN_EQUIVALENT_ROLES else role
    if effective_role not in allowed_roles:
        return AccessDecision(False, f"role '{role}' may not perform '{action}'")

    if entity is not None and tenant_id is not None:
        entity_tenant = getattr(entity, 'tenant_id', None)
        if entity_tenant is not None and entity_tenant != tenant_id:
            return AccessDecision(False, 'entity belongs to another school')

    return AccessDecision(True, None)


def require_permission(actor, action, entity=None):
    """Raise Unauthorized unless actor may perform action"""
    decision = authorize(actor.role, action, entity=entity, tenant_id=actor.tenant_id)
    if not decision.allowed:
        logger.warning(f"Denied {action} for user {getattr(actor, 'id', None)} ({actor.role}): {decision.reason}")
        raise Unauthorized(actor.role, action, decision.reason)
    return decision


def allowed_actions(role, prefix=None):
    """Permission keys available to a role, optionally filtered by entity prefix"""
    return sorted(
        action for action in PERMISSIONS
        if (prefix is None or action.startswith(prefix + '.'))
        and authorize(role, action).allowed
    )
