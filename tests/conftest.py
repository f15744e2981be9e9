# tests/conftest.py
"""
Shared fixtures: a TestingConfig app on in-memory SQLite, two seeded schools
with one user per workflow role, and helpers to walk papers through the
pipeline.

Every fixture works on the app's single StaticPool connection, so only one
session should hold uncommitted work at a time. Route tests commit their
seed data before touching the test client.
"""

import pytest

from access_control import Actor
from db_single import get_session
from examination_helpers import (
    create_exam_paper, submit_paper, hod_approve_paper, principal_approve_paper,
    send_paper_to_committee, lock_paper, mark_paper_printing_ready, complete_paper
)
from examination_models import Blueprint
from main import create_app
from models import Tenant, User

PASSWORD = 'secret123'

ROLES = ('admin', 'hod', 'principal', 'exam_committee', 'teacher', 'student', 'parent')

# Actions that take a paper from draft to each later state
PIPELINE = (
    ('pending_hod', 'hod', submit_paper),
    ('pending_principal', 'hod', hod_approve_paper),
    ('principal_approved', 'principal', principal_approve_paper),
    ('sent_to_committee', 'principal', send_paper_to_committee),
    ('locked', 'exam_committee', lock_paper),
    ('printing_ready', 'exam_committee', mark_paper_printing_ready),
    ('completed', 'exam_committee', complete_paper),
)


@pytest.fixture
def app():
    app = create_app('testing')
    yield app


@pytest.fixture
def seed(app):
    """Two schools, a user per role in 'alpha', an admin and a student in 'beta', one blueprint each"""
    s = get_session()
    try:
        alpha = Tenant(name='Alpha Public School', slug='alpha', is_active=True)
        beta = Tenant(name='Beta High School', slug='beta', is_active=True)
        s.add_all([alpha, beta])
        s.flush()

        users = {}
        for role in ROLES:
            user = User(tenant_id=alpha.id, username=role, email=f'{role}@alpha.test', role=role,
                        first_name=role.replace('_', ' ').title(), last_name='Alpha')
            user.set_password(PASSWORD)
            s.add(user)
            users[role] = user

        beta_admin = User(tenant_id=beta.id, username='admin', email='admin@beta.test', role='admin',
                          first_name='Admin', last_name='Beta')
        beta_admin.set_password(PASSWORD)
        beta_student = User(tenant_id=beta.id, username='student', email='student@beta.test', role='student')
        beta_student.set_password(PASSWORD)
        super_admin = User(tenant_id=None, username='root', email='root@portal.test', role='super_admin')
        super_admin.set_password(PASSWORD)
        s.add_all([beta_admin, beta_student, super_admin])
        s.flush()

        blueprint = Blueprint(tenant_id=alpha.id, name='Maths Term 1', subject='Mathematics', grade='8',
                              total_marks=80,
                              sections=[{'name': 'A', 'marks': 40}, {'name': 'B', 'marks': 40}])
        beta_blueprint = Blueprint(tenant_id=beta.id, name='Science Term 1', subject='Science', grade='8',
                                   total_marks=40, sections=[])
        s.add_all([blueprint, beta_blueprint])
        s.commit()

        data = {
            'alpha_id': alpha.id,
            'beta_id': beta.id,
            'users': {role: user.id for role, user in users.items()},
            'beta_admin_id': beta_admin.id,
            'beta_student_id': beta_student.id,
            'super_admin_id': super_admin.id,
            'blueprint_id': blueprint.id,
            'beta_blueprint_id': beta_blueprint.id,
        }
    finally:
        s.close()
    return data


@pytest.fixture
def actors(seed):
    """Actor per role for school 'alpha'"""
    return {
        role: Actor(id=user_id, role=role, tenant_id=seed['alpha_id'], full_name=f'{role} alpha')
        for role, user_id in seed['users'].items()
    }


@pytest.fixture
def beta_admin(seed):
    return Actor(id=seed['beta_admin_id'], role='admin', tenant_id=seed['beta_id'], full_name='Admin Beta')


@pytest.fixture
def session(seed):
    s = get_session()
    yield s
    s.rollback()
    s.close()


@pytest.fixture
def make_paper(session, actors, seed):
    """
    Create a paper and walk it forward.

    make_paper('locked') returns a paper in the locked state; 'printing_ready'
    returns a locked paper flagged for printing.
    """
    def factory(state='draft', total_marks=None, title='Algebra Unit Test', confidential=False):
        paper = create_exam_paper(session, actors['hod'], seed['blueprint_id'], title,
                                  total_marks=total_marks)
        if confidential:
            from examination_helpers import mark_paper_confidential
            mark_paper_confidential(session, actors['exam_committee'], paper.id)
        if state == 'draft':
            return paper
        for reached, role, step in PIPELINE:
            paper = step(session, actors[role], paper.id)
            if reached == state:
                return paper
        raise ValueError(f"unknown pipeline state {state}")

    return factory


@pytest.fixture
def client(app, seed):
    return app.test_client()


@pytest.fixture
def login(client):
    """Log the test client in as a seeded user of a school"""
    def do_login(username, slug='alpha', password=PASSWORD):
        response = client.post(f'/{slug}/login', json={'username': username, 'password': password})
        assert response.status_code == 200, response.get_json()
        return client

    return do_login
