"""
Dynamic School Routes for Single Database Multi-Tenant System
Handles all school-specific routes with a single blueprint
"""

from flask import Blueprint, request, g, jsonify
from flask_login import login_user, logout_user, current_user
from functools import wraps
from sqlalchemy import or_
import logging

from db_single import get_session
from models import User, Tenant
from access_control import Actor, allowed_actions

logger = logging.getLogger(__name__)


def create_school_blueprint():
    """Create a single blueprint that handles all school tenants dynamically"""

    school_bp = Blueprint('school', __name__)

    def require_school_auth(f):
        """Decorator to require school authentication"""
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not hasattr(g, 'current_tenant'):
                return jsonify({'success': False, 'error': 'School not found'}), 404

            if not current_user.is_authenticated:
                return jsonify({'success': False, 'error': 'Authentication required'}), 401

            # Check if user belongs to current tenant
            if current_user.role != 'super_admin' and current_user.tenant_id != g.current_tenant.id:
                logger.warning(f"User {current_user.id} denied access to {g.current_tenant.slug}: wrong school")
                return jsonify({'success': False, 'error': 'Access denied - wrong school'}), 403

            g.actor = Actor(
                id=current_user.id,
                role=current_user.role,
                tenant_id=g.current_tenant.id,
                full_name=current_user.full_name,
            )
            return f(*args, **kwargs)

        return decorated_function

    @school_bp.route('/<tenant_slug>/login', methods=['POST'])
    def login(tenant_slug):
        """School user login"""
        session_db = get_session()
        try:
            school = session_db.query(Tenant).filter_by(slug=tenant_slug, is_active=True).first()
            if not school:
                return jsonify({'success': False, 'error': 'School not found or inactive'}), 404

            data = request.get_json(silent=True) or request.form
            username = (data.get('username') or '').strip()
            password = (data.get('password') or '').strip()

            if not username or not password:
                return jsonify({'success': False, 'error': 'Please enter both username and password'}), 400

            # Find user in this school, or a portal-wide super admin
            user = session_db.query(User).filter(
                User.username == username,
                User.is_active == True,
                or_(User.tenant_id == school.id, User.role == 'super_admin')
            ).first()

            if user and user.check_password(password):
                login_user(user, remember=True)
                logger.info(f"User {user.username} logged in to {tenant_slug}")
                return jsonify({'success': True, 'user': user.to_dict()})

            logger.warning(f"Failed login for '{username}' at {tenant_slug}")
            return jsonify({'success': False, 'error': 'Invalid username or password'}), 401

        except Exception as e:
            logger.error(f"School login error for {tenant_slug}: {e}")
            return jsonify({'success': False, 'error': 'Login error occurred'}), 500
        finally:
            session_db.close()

    @school_bp.route('/<tenant_slug>/logout', methods=['POST'])
    def logout(tenant_slug):
        """Logout school user"""
        logout_user()
        return jsonify({'success': True})

    @school_bp.route('/<tenant_slug>/api/me', methods=['GET'])
    @require_school_auth
    def me(tenant_slug):
        """Current user and the actions their role may perform"""
        return jsonify({
            'success': True,
            'user': current_user.to_dict(),
            'school': {'id': g.current_tenant.id, 'slug': g.current_tenant.slug, 'name': g.current_tenant.name},
            'permissions': allowed_actions(current_user.role),
        })

    # ===== REGISTER CHAPTER ROUTES =====
    from chapter_routes import register_chapter_routes
    register_chapter_routes(school_bp, require_school_auth)

    # ===== REGISTER EXAMINATION ROUTES =====
    from examination_routes import register_examination_routes
    register_examination_routes(school_bp, require_school_auth)

    # ===== REGISTER MAKEUP TEST ROUTES =====
    from makeup_routes import register_makeup_routes
    register_makeup_routes(school_bp, require_school_auth)

    # ===== REGISTER RISK ALERT ROUTES =====
    from risk_alert_routes import register_risk_alert_routes
    register_risk_alert_routes(school_bp, require_school_auth)

    return school_bp
