"""
Examination Routes for School ERP
JSON endpoints for blueprints and the examination paper workflow
"""
from flask import request, g, jsonify
import logging

from access_control import require_permission
from examination_helpers import (
    create_blueprint, list_blueprints, create_exam_paper, list_exam_papers, get_exam_paper,
    update_exam_paper, PAPER_ACTIONS, COMMENTED_ACTIONS
)
from route_helpers import json_body, expected_version, run_mutation, run_query

logger = logging.getLogger(__name__)


def register_examination_routes(bp, require_school_auth):
    """Register examination paper routes to the school blueprint"""

    # ==================== BLUEPRINTS ====================

    @bp.route('/<tenant_slug>/api/blueprints', methods=['GET'])
    @require_school_auth
    def blueprints_list(tenant_slug):
        def query(session_db):
            require_permission(g.actor, 'blueprint.view')
            return list_blueprints(session_db, g.actor.tenant_id,
                                   subject=request.args.get('subject'),
                                   grade=request.args.get('grade'))
        return run_query('blueprints', query)

    @bp.route('/<tenant_slug>/api/blueprints', methods=['POST'])
    @require_school_auth
    def blueprints_create(tenant_slug):
        data = json_body()
        return run_mutation('blueprint', lambda s: create_blueprint(
            s, g.actor,
            name=data.get('name'),
            subject=data.get('subject'),
            grade=data.get('grade'),
            total_marks=data.get('total_marks'),
            sections=data.get('sections'),
        ), 'blueprint')

    # ==================== PAPERS ====================

    @bp.route('/<tenant_slug>/api/tests', methods=['GET'])
    @require_school_auth
    def tests_list(tenant_slug):
        """List papers; ?state= may be repeated"""
        def query(session_db):
            require_permission(g.actor, 'test.view')
            return list_exam_papers(session_db, g.actor.tenant_id,
                                    states=request.args.getlist('state'),
                                    subject=request.args.get('subject'),
                                    grade=request.args.get('grade'))
        return run_query('tests', query)

    @bp.route('/<tenant_slug>/api/tests', methods=['POST'])
    @require_school_auth
    def tests_create(tenant_slug):
        """Create a draft paper from a blueprint"""
        data = json_body()
        return run_mutation('test', lambda s: create_exam_paper(
            s, g.actor,
            blueprint_id=data.get('blueprint_id'),
            title=data.get('title'),
            exam_date=data.get('exam_date'),
            subject=data.get('subject'),
            grade=data.get('grade'),
            total_marks=data.get('total_marks'),
            duration=data.get('duration'),
            paper_format=data.get('paper_format'),
            test_type=data.get('test_type'),
            section=data.get('section'),
            chapter_id=data.get('chapter_id'),
        ), 'test')

    @bp.route('/<tenant_slug>/api/tests/<int:test_id>', methods=['GET'])
    @require_school_auth
    def tests_detail(tenant_slug, test_id):
        def query(session_db):
            require_permission(g.actor, 'test.view')
            return get_exam_paper(session_db, g.actor.tenant_id, test_id)
        return run_query('test', query)

    @bp.route('/<tenant_slug>/api/tests/<int:test_id>', methods=['PATCH'])
    @require_school_auth
    def tests_update(tenant_slug, test_id):
        changes = {k: v for k, v in json_body().items() if k != 'version'}
        return run_mutation('test', lambda s: update_exam_paper(
            s, g.actor, test_id, changes, expected_version=expected_version()
        ), 'test')

    @bp.route('/<tenant_slug>/api/tests/<int:test_id>/<action>', methods=['POST'])
    @require_school_auth
    def tests_transition(tenant_slug, test_id, action):
        """submit, hod-approve, hod-reject, principal-approve, principal-reject,
        send-to-committee, mark-confidential, lock, mark-printing-ready, complete, reveal"""
        operation = PAPER_ACTIONS.get(action)
        if operation is None:
            return jsonify({'success': False, 'error': f"Unknown action '{action}'"}), 404

        if action in COMMENTED_ACTIONS:
            comments = json_body().get('comments')
            return run_mutation('test', lambda s: operation(
                s, g.actor, test_id, comments=comments, expected_version=expected_version()
            ), 'test')
        return run_mutation('test', lambda s: operation(
            s, g.actor, test_id, expected_version=expected_version()
        ), 'test')
