"""
Makeup Test Routes
"""
from flask import request, g, jsonify
import logging

from access_control import require_permission
from makeup_helpers import schedule_makeup_test, list_makeup_tests, MAKEUP_ACTIONS
from route_helpers import json_body, expected_version, run_mutation, run_query

logger = logging.getLogger(__name__)


def register_makeup_routes(bp, require_school_auth):
    """Register makeup sitting routes to the school blueprint"""

    @bp.route('/<tenant_slug>/api/makeup-tests', methods=['GET'])
    @require_school_auth
    def makeup_list(tenant_slug):
        def query(session_db):
            require_permission(g.actor, 'makeup.view')
            return list_makeup_tests(session_db, g.actor.tenant_id,
                                     test_id=request.args.get('test_id', type=int),
                                     student_id=request.args.get('student_id', type=int),
                                     status=request.args.get('status'))
        return run_query('makeup_tests', query)

    @bp.route('/<tenant_slug>/api/makeup-tests', methods=['POST'])
    @require_school_auth
    def makeup_schedule(tenant_slug):
        data = json_body()
        return run_mutation('makeup_test', lambda s: schedule_makeup_test(
            s, g.actor,
            test_id=data.get('test_id'),
            student_id=data.get('student_id'),
            reason=data.get('reason'),
            scheduled_date=data.get('scheduled_date'),
        ), 'makeup')

    @bp.route('/<tenant_slug>/api/makeup-tests/<int:makeup_id>/<action>', methods=['POST'])
    @require_school_auth
    def makeup_transition(tenant_slug, makeup_id, action):
        """start, complete or cancel a sitting"""
        operation = MAKEUP_ACTIONS.get(action)
        if operation is None:
            return jsonify({'success': False, 'error': f"Unknown action '{action}'"}), 404
        return run_mutation('makeup_test', lambda s: operation(
            s, g.actor, makeup_id, expected_version=expected_version()
        ), 'makeup')
