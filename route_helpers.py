"""
Shared plumbing for the JSON workflow routes
"""

from flask import request, jsonify, g, current_app
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError
import logging
import traceback

from db_single import get_session
from activity_helpers import record_denial
from workflow_errors import WorkflowError, StaleWrite, ValidationError, DuplicateMakeup, Unauthorized

logger = logging.getLogger(__name__)


def json_body():
    return request.get_json(silent=True) or {}


def expected_version():
    """Last-seen version from the body or an If-Match header"""
    value = json_body().get('version')
    if value is None:
        value = request.headers.get('If-Match')
    if value is None or value == '':
        return None
    try:
        return int(str(value).strip('"'))
    except ValueError:
        raise ValidationError('version', 'must be an integer')


def _error_response(e):
    return jsonify(e.to_dict()), e.status_code


def _queue_risk_evaluation():
    if current_app.config.get('EVALUATE_RISKS_ON_MUTATION'):
        from risk_alert_monitor import queue_tenant_evaluation, risk_settings
        queue_tenant_evaluation(g.actor.tenant_id, risk_settings(current_app.config))


def record_denied_request(session_db, error, entity_type):
    """Persist a permission denial in its own transaction after the failed one is rolled back"""
    entity_id = (request.view_args or {}).get(f'{entity_type}_id')
    try:
        record_denial(session_db, g.actor, error.action, entity_type, entity_id, reason=error.reason)
        session_db.commit()
    except Exception as e:
        session_db.rollback()
        logger.error(f"Could not record denied {error.action} for user {g.actor.id}: {e}")
        return
    _queue_risk_evaluation()


def run_mutation(result_key, operation, entity_type='entity'):
    """
    Run one engine operation in its own transaction and serialise the result

    Args:
        result_key: JSON key for the returned entity
        operation: callable(session) -> model with to_dict()
        entity_type: names the target in StaleWrite messages and denial records
    """
    session_db = get_session()
    try:
        entity = operation(session_db)
        session_db.commit()
        payload = entity.to_dict()
        _queue_risk_evaluation()
        return jsonify({'success': True, result_key: payload})
    except WorkflowError as e:
        session_db.rollback()
        logger.warning(f"{request.path} rejected: {e.message}")
        if isinstance(e, Unauthorized):
            record_denied_request(session_db, e, entity_type)
        return _error_response(e)
    except StaleDataError:
        session_db.rollback()
        logger.warning(f"{request.path} lost a concurrent update")
        return _error_response(StaleWrite(entity_type, request.view_args.get(f'{entity_type}_id')))
    except IntegrityError as e:
        session_db.rollback()
        logger.warning(f"{request.path} hit a uniqueness constraint: {e.orig}")
        if entity_type == 'makeup':
            return _error_response(DuplicateMakeup("A live makeup sitting already exists for this student and paper"))
        return _error_response(StaleWrite(entity_type, request.view_args.get(f'{entity_type}_id')))
    except Exception as e:
        session_db.rollback()
        logger.error(f"Error in {request.path}: {e}")
        logger.error(traceback.format_exc())
        return jsonify({'success': False, 'error': 'Internal error'}), 500
    finally:
        session_db.close()


def run_query(result_key, query):
    """Read-only counterpart of run_mutation; query(session) returns a model or list of models"""
    session_db = get_session()
    try:
        result = query(session_db)
        if isinstance(result, list):
            payload = [item.to_dict() for item in result]
        else:
            payload = result.to_dict()
        return jsonify({'success': True, result_key: payload})
    except WorkflowError as e:
        return _error_response(e)
    except Exception as e:
        logger.error(f"Error in {request.path}: {e}")
        logger.error(traceback.format_exc())
        return jsonify({'success': False, 'error': 'Internal error'}), 500
    finally:
        session_db.close()
