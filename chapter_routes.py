"""
Chapter Routes
JSON endpoints for the chapter lifecycle and syllabus portions
"""
from flask import request, g
import logging

from access_control import require_permission
from chapter_helpers import (
    create_chapter, list_chapters, unlock_chapter, lock_chapter, set_chapter_deadline,
    complete_chapter, reveal_chapter_scores, update_chapter_portions
)
from route_helpers import json_body, expected_version, run_mutation, run_query

logger = logging.getLogger(__name__)


def register_chapter_routes(bp, require_school_auth):
    """Register chapter routes to the school blueprint"""

    @bp.route('/<tenant_slug>/api/chapters', methods=['GET'])
    @require_school_auth
    def chapters_list(tenant_slug):
        """List chapters, optionally by subject, grade or status"""
        def query(session_db):
            require_permission(g.actor, 'chapter.view')
            return list_chapters(
                session_db, g.actor.tenant_id,
                subject=request.args.get('subject'),
                grade=request.args.get('grade'),
                status=request.args.get('status'),
            )
        return run_query('chapters', query)

    @bp.route('/<tenant_slug>/api/chapters', methods=['POST'])
    @require_school_auth
    def chapters_create(tenant_slug):
        data = json_body()
        return run_mutation('chapter', lambda s: create_chapter(
            s, g.actor,
            name=data.get('name'),
            subject=data.get('subject'),
            grade=data.get('grade'),
            topics=data.get('topics'),
            order_index=data.get('order_index', 0),
        ), 'chapter')

    @bp.route('/<tenant_slug>/api/chapters/<int:chapter_id>/unlock', methods=['POST'])
    @require_school_auth
    def chapters_unlock(tenant_slug, chapter_id):
        data = json_body()
        return run_mutation('chapter', lambda s: unlock_chapter(
            s, g.actor, chapter_id, deadline=data.get('deadline'), expected_version=expected_version()
        ), 'chapter')

    @bp.route('/<tenant_slug>/api/chapters/<int:chapter_id>/lock', methods=['POST'])
    @require_school_auth
    def chapters_lock(tenant_slug, chapter_id):
        return run_mutation('chapter', lambda s: lock_chapter(
            s, g.actor, chapter_id, expected_version=expected_version()
        ), 'chapter')

    @bp.route('/<tenant_slug>/api/chapters/<int:chapter_id>/deadline', methods=['POST'])
    @require_school_auth
    def chapters_deadline(tenant_slug, chapter_id):
        data = json_body()
        return run_mutation('chapter', lambda s: set_chapter_deadline(
            s, g.actor, chapter_id, data.get('deadline'), expected_version=expected_version()
        ), 'chapter')

    @bp.route('/<tenant_slug>/api/chapters/<int:chapter_id>/complete', methods=['POST'])
    @require_school_auth
    def chapters_complete(tenant_slug, chapter_id):
        return run_mutation('chapter', lambda s: complete_chapter(
            s, g.actor, chapter_id, expected_version=expected_version()
        ), 'chapter')

    @bp.route('/<tenant_slug>/api/chapters/<int:chapter_id>/reveal', methods=['POST'])
    @require_school_auth
    def chapters_reveal(tenant_slug, chapter_id):
        return run_mutation('chapter', lambda s: reveal_chapter_scores(
            s, g.actor, chapter_id, expected_version=expected_version()
        ), 'chapter')

    @bp.route('/<tenant_slug>/api/chapters/<int:chapter_id>/portions', methods=['PATCH'])
    @require_school_auth
    def chapters_portions(tenant_slug, chapter_id):
        data = json_body()
        return run_mutation('chapter', lambda s: update_chapter_portions(
            s, g.actor, chapter_id, data.get('completed_topics'), expected_version=expected_version()
        ), 'chapter')
