import pytest
from sqlalchemy import update

from chapter_models import Chapter, ChapterStatus
from db_single import get_session
from examination_models import ExamPaper, MakeupTest, MakeupStatus, PaperWorkflowState
from makeup_helpers import schedule_makeup_test
from risk_alert_models import RiskAlert, RiskAlertStatus


def create_paper(client, seed, title='Route Paper', **extra):
    payload = {'blueprint_id': seed['blueprint_id'], 'title': title}
    payload.update(extra)
    response = client.post('/alpha/api/tests', json=payload)
    assert response.status_code == 200, response.get_json()
    return response.get_json()['test']


def set_state(paper_id, state, **flags):
    s = get_session()
    try:
        paper = s.get(ExamPaper, paper_id)
        paper.workflow_state = state
        for key, value in flags.items():
            setattr(paper, key, value)
        s.commit()
    finally:
        s.close()


def test_unknown_school_is_404(client, seed):
    response = client.get('/nowhere/api/tests')
    assert response.status_code == 404
    assert response.get_json()['success'] is False


def test_requires_login(client, seed):
    response = client.get('/alpha/api/tests')
    assert response.status_code == 401


def test_bad_password(client, seed):
    response = client.post('/alpha/login', json={'username': 'hod', 'password': 'wrong'})
    assert response.status_code == 401


def test_user_of_other_school_is_forbidden(login, seed):
    client = login('admin', slug='beta')
    response = client.get('/alpha/api/tests')
    assert response.status_code == 403


def test_super_admin_reaches_any_school(login, seed):
    client = login('root', slug='alpha')
    assert client.get('/alpha/api/tests').status_code == 200
    assert client.get('/beta/api/tests').status_code == 200


def test_me_lists_permissions(login, seed):
    client = login('exam_committee')
    body = client.get('/alpha/api/me').get_json()
    assert body['user']['role'] == 'exam_committee'
    assert 'test.lock' in body['permissions']
    assert 'test.create' not in body['permissions']


def test_create_paper_derives_duration(login, seed):
    client = login('hod')
    paper = create_paper(client, seed)
    assert paper['workflow_state'] == 'draft'
    assert paper['total_marks'] == 80
    assert paper['duration'] == 180
    assert paper['version'] == 1

    listed = client.get('/alpha/api/tests?state=draft').get_json()['tests']
    assert [p['id'] for p in listed] == [paper['id']]


def test_submit_and_review_flow(login, seed):
    client = login('hod')
    paper = create_paper(client, seed)

    response = client.post(f"/alpha/api/tests/{paper['id']}/submit", json={'version': paper['version']})
    assert response.status_code == 200
    submitted = response.get_json()['test']
    assert submitted['workflow_state'] == 'pending_hod'

    response = client.post(f"/alpha/api/tests/{paper['id']}/hod-reject", json={})
    assert response.status_code == 400
    assert response.get_json()['code'] == 'validation_error'

    response = client.post(f"/alpha/api/tests/{paper['id']}/hod-reject", json={'comments': 'Fix Q4'})
    body = response.get_json()['test']
    assert body['workflow_state'] == 'hod_rejected'
    assert body['hod_comments'] == 'Fix Q4'


def test_stale_version_is_409(login, seed):
    client = login('hod')
    paper = create_paper(client, seed)
    client.post(f"/alpha/api/tests/{paper['id']}/submit")

    response = client.post(f"/alpha/api/tests/{paper['id']}/hod-approve", json={'version': 1})
    assert response.status_code == 409
    assert response.get_json()['code'] == 'stale_write'


def test_if_match_header_is_honoured(login, seed):
    client = login('hod')
    paper = create_paper(client, seed)
    response = client.post(f"/alpha/api/tests/{paper['id']}/submit", headers={'If-Match': '"7"'})
    assert response.status_code == 409


def test_invalid_transition_reports_states(login, seed):
    client = login('hod')
    paper = create_paper(client, seed)
    response = client.post(f"/alpha/api/tests/{paper['id']}/hod-approve")
    assert response.status_code == 409
    body = response.get_json()
    assert body['code'] == 'invalid_transition'
    assert body['from'] == 'draft'
    assert body['to'] == 'pending_principal'


def test_unknown_action_is_404(login, seed):
    client = login('hod')
    paper = create_paper(client, seed)
    assert client.post(f"/alpha/api/tests/{paper['id']}/shred").status_code == 404


def test_role_without_permission_is_403(login, seed):
    client = login('hod')
    paper = create_paper(client, seed)
    set_state(paper['id'], PaperWorkflowState.SENT_TO_COMMITTEE)

    response = client.post(f"/alpha/api/tests/{paper['id']}/lock")
    assert response.status_code == 403
    assert response.get_json()['code'] == 'unauthorized'


def test_reveal_draft_is_not_locked(login, seed):
    client = login('hod')
    paper = create_paper(client, seed)
    client.post('/alpha/logout')

    client = login('principal')
    response = client.post(f"/alpha/api/tests/{paper['id']}/reveal")
    assert response.status_code == 409
    assert response.get_json()['code'] == 'not_locked'


def test_committee_lock_and_print(login, seed):
    client = login('hod')
    paper = create_paper(client, seed)
    set_state(paper['id'], PaperWorkflowState.SENT_TO_COMMITTEE)
    client.post('/alpha/logout')

    client = login('exam_committee')
    assert client.post(f"/alpha/api/tests/{paper['id']}/mark-printing-ready").status_code == 409
    assert client.post(f"/alpha/api/tests/{paper['id']}/mark-confidential").status_code == 200
    assert client.post(f"/alpha/api/tests/{paper['id']}/lock").status_code == 200

    body = client.post(f"/alpha/api/tests/{paper['id']}/mark-printing-ready").get_json()['test']
    assert body['printing_ready'] is True
    assert body['is_confidential'] is True

    body = client.post(f"/alpha/api/tests/{paper['id']}/complete").get_json()['test']
    assert body['workflow_state'] == 'completed'

    response = client.patch(f"/alpha/api/tests/{paper['id']}", json={'title': 'Too late'})
    assert response.status_code == 403


def test_paper_of_other_school_is_404(login, seed):
    client = login('hod')
    paper = create_paper(client, seed)
    client.post('/alpha/logout')

    client = login('admin', slug='beta')
    assert client.get(f"/beta/api/tests/{paper['id']}").status_code == 404


def test_chapter_routes(login, seed):
    client = login('teacher')
    response = client.post('/alpha/api/chapters', json={
        'name': 'Motion', 'subject': 'Physics', 'grade': '9', 'topics': ['A', 'B', 'C']
    })
    chapter = response.get_json()['chapter']
    assert chapter['status'] == 'draft'

    response = client.post(f"/alpha/api/chapters/{chapter['id']}/unlock",
                           json={'deadline': '2001-01-01T00:00:00Z'})
    assert response.status_code == 400
    assert response.get_json()['code'] == 'invalid_deadline'

    response = client.post(f"/alpha/api/chapters/{chapter['id']}/unlock",
                           json={'deadline': '2999-01-01T00:00:00Z'})
    assert response.get_json()['chapter']['status'] == 'unlocked'

    response = client.patch(f"/alpha/api/chapters/{chapter['id']}/portions", json={'completed_topics': ['A', 'B']})
    assert response.get_json()['chapter']['progress'] == 67

    response = client.patch(f"/alpha/api/chapters/{chapter['id']}/portions", json={'completed_topics': ['Q']})
    assert response.status_code == 400
    assert response.get_json()['code'] == 'invalid_topics'

    response = client.post(f"/alpha/api/chapters/{chapter['id']}/reveal")
    assert response.status_code == 409
    assert response.get_json()['code'] == 'not_completed'

    chapters = client.get('/alpha/api/chapters?status=unlocked').get_json()['chapters']
    assert [c['completed_topics'] for c in chapters] == [['A', 'B']]


def test_student_can_view_but_not_change_chapters(login, seed):
    client = login('student')
    assert client.get('/alpha/api/chapters').status_code == 200
    response = client.post('/alpha/api/chapters', json={'name': 'X', 'subject': 'Y', 'grade': '1'})
    assert response.status_code == 403


def test_makeup_routes(login, seed):
    client = login('hod')
    paper = create_paper(client, seed)

    payload = {'test_id': paper['id'], 'student_id': seed['users']['student'],
               'reason': 'Sports meet', 'scheduled_date': '2026-05-02'}
    response = client.post('/alpha/api/makeup-tests', json=payload)
    assert response.status_code == 409
    assert response.get_json()['code'] == 'ineligible_test'

    set_state(paper['id'], PaperWorkflowState.LOCKED)
    response = client.post('/alpha/api/makeup-tests', json=payload)
    assert response.status_code == 200
    makeup = response.get_json()['makeup_test']
    assert makeup['status'] == 'scheduled'

    response = client.post('/alpha/api/makeup-tests', json=payload)
    assert response.status_code == 409
    assert response.get_json()['code'] == 'duplicate_makeup'

    response = client.post(f"/alpha/api/makeup-tests/{makeup['id']}/cancel")
    assert response.get_json()['makeup_test']['status'] == 'cancelled'
    assert client.post('/alpha/api/makeup-tests', json=payload).status_code == 200


def test_risk_alert_routes(login, seed):
    client = login('hod')
    paper = create_paper(client, seed)
    set_state(paper['id'], PaperWorkflowState.LOCKED, printing_ready=True)
    client.post('/alpha/logout')

    client = login('principal')
    created = client.post('/alpha/api/risk-alerts/evaluate').get_json()['created']
    assert [a['type'] for a in created] == ['paper_leak_risk']
    assert client.post('/alpha/api/risk-alerts/evaluate').get_json()['created'] == []

    alerts = client.get('/alpha/api/risk-alerts?status=active').get_json()['alerts']
    assert len(alerts) == 1
    alert_id = alerts[0]['id']

    response = client.patch(f'/alpha/api/risk-alerts/{alert_id}/acknowledge')
    assert response.get_json()['alert']['status'] == 'resolved'

    response = client.patch(f'/alpha/api/risk-alerts/{alert_id}/acknowledge')
    assert response.status_code == 409
    assert response.get_json()['code'] == 'already_resolved'

    logs = client.get('/alpha/api/activity-logs?entity_type=risk_alert').get_json()['logs']
    assert [log['action'] for log in logs] == ['risk_alert.acknowledge']


def test_teacher_cannot_see_risk_alerts(login, seed):
    client = login('teacher')
    assert client.get('/alpha/api/risk-alerts').status_code == 403


@pytest.mark.parametrize('path', ['/alpha/api/blueprints', '/alpha/api/makeup-tests', '/alpha/api/activity-logs'])
def test_listing_endpoints_answer_for_admin(login, seed, path):
    client = login('admin')
    response = client.get(path)
    assert response.status_code == 200
    assert response.get_json()['success'] is True


def bump_version(model, entity_id):
    """Commit a version bump from another session, as a concurrent writer would"""
    other = get_session()
    try:
        other.execute(update(model).where(model.id == entity_id).values(version=model.version + 1))
        other.commit()
    finally:
        other.close()


def create_chapter(client, **extra):
    payload = {'name': 'Motion', 'subject': 'Physics', 'grade': '9', 'topics': ['A', 'B']}
    payload.update(extra)
    response = client.post('/alpha/api/chapters', json=payload)
    assert response.status_code == 200, response.get_json()
    return response.get_json()['chapter']


@pytest.mark.parametrize('path', [
    '/alpha/api/chapters?status=bogus',
    '/alpha/api/makeup-tests?status=bogus',
    '/alpha/api/risk-alerts?status=bogus',
    '/alpha/api/tests?state=bogus',
])
def test_unknown_status_filter_is_400(login, seed, path):
    client = login('admin')
    response = client.get(path)
    assert response.status_code == 400
    assert response.get_json()['code'] == 'validation_error'


def test_unlock_with_empty_deadline(login, seed):
    client = login('teacher')
    chapter = create_chapter(client)
    response = client.post(f"/alpha/api/chapters/{chapter['id']}/unlock", json={'deadline': ''})
    assert response.status_code == 200
    body = response.get_json()['chapter']
    assert body['status'] == 'unlocked'
    assert body['deadline'] is None


def test_concurrent_commit_is_stale_write(login, seed, monkeypatch):
    client = login('teacher')
    chapter = create_chapter(client)
    client.post(f"/alpha/api/chapters/{chapter['id']}/unlock")

    def lock_after_concurrent_write(session_db, actor, chapter_id, expected_version=None):
        row = session_db.get(Chapter, chapter_id)
        bump_version(Chapter, chapter_id)
        row.status = ChapterStatus.LOCKED
        return row

    monkeypatch.setattr('chapter_routes.lock_chapter', lock_after_concurrent_write)
    response = client.post(f"/alpha/api/chapters/{chapter['id']}/lock")
    assert response.status_code == 409
    assert response.get_json()['code'] == 'stale_write'

    s = get_session()
    try:
        stored = s.get(Chapter, chapter['id'])
        assert stored.status == ChapterStatus.UNLOCKED
        assert stored.version == 3
    finally:
        s.close()


def test_colliding_makeup_insert_is_duplicate(login, seed, monkeypatch):
    client = login('hod')
    paper = create_paper(client, seed)
    set_state(paper['id'], PaperWorkflowState.LOCKED)

    def schedule_alongside_racing_sitting(session_db, actor, **params):
        makeup = schedule_makeup_test(session_db, actor, **params)
        session_db.add(MakeupTest(
            tenant_id=makeup.tenant_id, exam_paper_id=makeup.exam_paper_id, student_id=makeup.student_id,
            reason='Entered at the front desk', scheduled_date=makeup.scheduled_date,
            status=MakeupStatus.SCHEDULED, active_key=makeup.active_key, created_by=actor.id,
        ))
        session_db.flush()
        return makeup

    monkeypatch.setattr('makeup_routes.schedule_makeup_test', schedule_alongside_racing_sitting)
    response = client.post('/alpha/api/makeup-tests', json={
        'test_id': paper['id'], 'student_id': seed['users']['student'],
        'reason': 'Sports meet', 'scheduled_date': '2026-05-02',
    })
    assert response.status_code == 409
    assert response.get_json()['code'] == 'duplicate_makeup'
    assert client.get('/alpha/api/makeup-tests').get_json()['makeup_tests'] == []


def test_denied_mutations_are_recorded_and_flagged(app, login, seed):
    app.config['RISK_DENIAL_THRESHOLD'] = 3
    client = login('student')
    for _ in range(3):
        response = client.post('/alpha/api/chapters', json={'name': 'X', 'subject': 'Y', 'grade': '1'})
        assert response.status_code == 403
    client.post('/alpha/logout')

    client = login('principal')
    logs = client.get('/alpha/api/activity-logs?entity_type=chapter').get_json()['logs']
    assert [log['action'] for log in logs] == ['denied:chapter.create'] * 3
    assert {log['user_id'] for log in logs} == {seed['users']['student']}

    created = client.post('/alpha/api/risk-alerts/evaluate').get_json()['created']
    assert [(a['type'], a['severity'], a['entity_type'], a['entity_id']) for a in created] == [
        ('unauthorized_access', 'high', 'user', seed['users']['student'])
    ]
    assert client.post('/alpha/api/risk-alerts/evaluate').get_json()['created'] == []


def test_concurrent_evaluation_is_skipped(login, seed, monkeypatch):
    client = login('hod')
    paper = create_paper(client, seed)
    set_state(paper['id'], PaperWorkflowState.LOCKED, printing_ready=True)
    client.post('/alpha/logout')

    client = login('principal')
    assert len(client.post('/alpha/api/risk-alerts/evaluate').get_json()['created']) == 1

    def evaluate_behind_another_run(session_db, tenant_id, **settings):
        existing = session_db.query(RiskAlert).filter(RiskAlert.tenant_id == tenant_id).one()
        session_db.add(RiskAlert(
            tenant_id=tenant_id, alert_type=existing.alert_type, severity=existing.severity,
            title=existing.title, entity_type=existing.entity_type, entity_id=existing.entity_id,
            status=RiskAlertStatus.ACTIVE, active_key=existing.active_key,
        ))
        session_db.flush()
        return []

    monkeypatch.setattr('risk_alert_routes.evaluate_tenant', evaluate_behind_another_run)
    response = client.post('/alpha/api/risk-alerts/evaluate')
    assert response.status_code == 200
    assert response.get_json()['created'] == []
    assert len(client.get('/alpha/api/risk-alerts').get_json()['alerts']) == 1
