"""
Entity Helper Functions
Tenant-scoped loading, optimistic version checks and input parsing shared by
the lifecycle helpers
"""

from datetime import datetime, date, timezone
from dateutil import parser as date_parser
import logging

from workflow_errors import EntityNotFound, StaleWrite, ValidationError

logger = logging.getLogger(__name__)


def get_scoped(session, model, entity_type, entity_id, tenant_id):
    """Fetch one row of the caller's school; rows of other schools are not found"""
    entity = session.query(model).filter(
        model.id == entity_id,
        model.tenant_id == tenant_id
    ).first()
    if entity is None:
        raise EntityNotFound(entity_type, entity_id)
    return entity


def load_for_update(session, model, entity_type, entity_id, tenant_id, expected_version=None):
    """
    Load a row under an exclusive row lock and check the caller's last-seen version

    Raises:
        EntityNotFound: no such row in this school
        StaleWrite: expected_version given and the row has moved on
    """
    entity = session.query(model).filter(
        model.id == entity_id,
        model.tenant_id == tenant_id
    ).with_for_update().first()
    if entity is None:
        raise EntityNotFound(entity_type, entity_id)
    if expected_version is not None and int(expected_version) != entity.version:
        logger.warning(f"Stale write on {entity_type} {entity_id}: expected v{expected_version}, found v{entity.version}")
        raise StaleWrite(entity_type, entity_id, expected=int(expected_version), actual=entity.version)
    return entity


def parse_datetime(value, field='deadline'):
    """Accept datetime or ISO-8601 text; aware values are normalised to naive UTC"""
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = date_parser.isoparse(str(value))
        except (ValueError, OverflowError):
            raise ValidationError(field, f"'{value}' is not an ISO-8601 timestamp")
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def parse_date(value, field='date'):
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date_parser.isoparse(str(value)).date()
    except (ValueError, OverflowError):
        raise ValidationError(field, f"'{value}' is not an ISO-8601 date")


def parse_enum(enum_cls, value, field):
    """Enum member from its value; unknown values are a ValidationError"""
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ', '.join(e.value for e in enum_cls)
        raise ValidationError(field, f"'{value}' is not one of: {allowed}")
