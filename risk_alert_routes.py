"""
Risk Alert Routes
Principal-facing alert list, acknowledgement and the activity audit trail
"""
from flask import request, g, jsonify, current_app
from sqlalchemy.exc import IntegrityError
import logging
import traceback

from access_control import require_permission
from activity_helpers import get_activity_logs
from db_single import get_session
from risk_alert_monitor import list_risk_alerts, acknowledge_alert, evaluate_tenant, risk_settings
from route_helpers import expected_version, record_denied_request, run_mutation, run_query
from workflow_errors import Unauthorized, WorkflowError

logger = logging.getLogger(__name__)


def register_risk_alert_routes(bp, require_school_auth):
    """Register risk alert routes to the school blueprint"""

    @bp.route('/<tenant_slug>/api/risk-alerts', methods=['GET'])
    @require_school_auth
    def risk_alerts_list(tenant_slug):
        def query(session_db):
            require_permission(g.actor, 'risk_alert.view')
            return list_risk_alerts(session_db, g.actor.tenant_id, status=request.args.get('status'))
        return run_query('alerts', query)

    @bp.route('/<tenant_slug>/api/risk-alerts/evaluate', methods=['POST'])
    @require_school_auth
    def risk_alerts_evaluate(tenant_slug):
        """Run the monitor for this school now"""
        session_db = get_session()
        try:
            require_permission(g.actor, 'risk_alert.evaluate')
            created = evaluate_tenant(session_db, g.actor.tenant_id, **risk_settings(current_app.config))
            session_db.commit()
            return jsonify({'success': True, 'created': [a.to_dict() for a in created]})
        except WorkflowError as e:
            session_db.rollback()
            if isinstance(e, Unauthorized):
                record_denied_request(session_db, e, 'risk_alert')
            return jsonify(e.to_dict()), e.status_code
        except IntegrityError:
            # A concurrent evaluation raised the same alerts first
            session_db.rollback()
            logger.warning(f"Concurrent risk evaluation for {tenant_slug}; skipped")
            return jsonify({'success': True, 'created': []})
        except Exception as e:
            session_db.rollback()
            logger.error(f"Error evaluating risk alerts for {tenant_slug}: {e}")
            logger.error(traceback.format_exc())
            return jsonify({'success': False, 'error': 'Internal error'}), 500
        finally:
            session_db.close()

    @bp.route('/<tenant_slug>/api/risk-alerts/<int:alert_id>/acknowledge', methods=['PATCH', 'POST'])
    @require_school_auth
    def risk_alerts_acknowledge(tenant_slug, alert_id):
        return run_mutation('alert', lambda s: acknowledge_alert(
            s, g.actor, alert_id, expected_version=expected_version()
        ), 'alert')

    @bp.route('/<tenant_slug>/api/activity-logs', methods=['GET'])
    @require_school_auth
    def activity_logs_list(tenant_slug):
        def query(session_db):
            require_permission(g.actor, 'activity_log.view')
            return get_activity_logs(session_db, g.actor.tenant_id,
                                     entity_type=request.args.get('entity_type'),
                                     entity_id=request.args.get('entity_id', type=int))
        return run_query('logs', query)
