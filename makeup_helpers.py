"""
Makeup Test Helper Functions
Scheduling supplementary sittings for students who missed a paper
"""

from datetime import datetime
import logging

from access_control import require_permission
from activity_helpers import log_activity
from entity_helpers import get_scoped, load_for_update, parse_date, parse_enum
from examination_models import ExamPaper, MakeupTest, MakeupStatus
from models import User
from workflow_errors import DuplicateMakeup, EntityNotFound, IneligibleTest, ValidationError
from workflow_transitions import next_makeup_state, MAKEUP_ELIGIBLE_STATES

logger = logging.getLogger(__name__)


def _get_student(session, tenant_id, student_id):
    student = session.query(User).filter(
        User.id == student_id,
        User.tenant_id == tenant_id,
        User.role == 'student'
    ).first()
    if student is None:
        raise EntityNotFound('student', student_id)
    return student


def schedule_makeup_test(session, actor, test_id, student_id, reason, scheduled_date):
    """
    Schedule a makeup sitting

    Args:
        session: Database session
        actor: Acting user
        test_id: Paper the student missed; must have reached the committee
        student_id: Student-role user of the same school
        reason: Why the sitting is needed
        scheduled_date: Date (or ISO text) of the sitting

    Raises:
        IneligibleTest: the paper has not been set yet
        DuplicateMakeup: a non-cancelled sitting exists for this student and paper
    """
    require_permission(actor, 'makeup.schedule')

    sitting_date = parse_date(scheduled_date, 'scheduled_date')
    if sitting_date is None:
        raise ValidationError('scheduled_date', 'is required')

    paper = get_scoped(session, ExamPaper, 'test', test_id, actor.tenant_id)
    if paper.workflow_state not in MAKEUP_ELIGIBLE_STATES:
        raise IneligibleTest(
            f"Paper {paper.id} is '{paper.workflow_state.value}'; makeup sittings need a locked, "
            f"committee or completed paper"
        )

    student = _get_student(session, actor.tenant_id, student_id)

    active_key = MakeupTest.make_active_key(paper.id, student.id)
    existing = session.query(MakeupTest).filter(
        MakeupTest.tenant_id == actor.tenant_id,
        MakeupTest.active_key == active_key
    ).first()
    if existing is not None:
        raise DuplicateMakeup(
            f"Student {student.id} already has makeup sitting {existing.id} "
            f"({existing.status.value}) for paper {paper.id}"
        )

    makeup = MakeupTest(
        tenant_id=actor.tenant_id,
        exam_paper_id=paper.id,
        student_id=student.id,
        reason=reason,
        scheduled_date=sitting_date,
        status=MakeupStatus.SCHEDULED,
        active_key=active_key,
        created_by=actor.id,
    )
    session.add(makeup)
    session.flush()
    log_activity(session, actor, 'makeup.schedule', 'makeup', makeup.id, new_state=makeup.status,
                 comments=reason, details={'test_id': paper.id, 'student_id': student.id})
    return makeup


def list_makeup_tests(session, tenant_id, test_id=None, student_id=None, status=None):
    query = session.query(MakeupTest).filter(MakeupTest.tenant_id == tenant_id)
    if test_id is not None:
        query = query.filter(MakeupTest.exam_paper_id == test_id)
    if student_id is not None:
        query = query.filter(MakeupTest.student_id == student_id)
    if status:
        query = query.filter(MakeupTest.status == parse_enum(MakeupStatus, status, 'status'))
    return query.order_by(MakeupTest.scheduled_date, MakeupTest.id).all()


def _move(session, actor, makeup_id, action, expected_version=None, now=None):
    require_permission(actor, f'makeup.{action}')
    now = now or datetime.utcnow()
    makeup = load_for_update(session, MakeupTest, 'makeup', makeup_id, actor.tenant_id, expected_version)

    previous = makeup.status
    target = next_makeup_state(previous, action)

    makeup.status = target
    if target == MakeupStatus.IN_PROGRESS:
        makeup.started_at = now
    elif target == MakeupStatus.COMPLETED:
        makeup.completed_at = now
    elif target == MakeupStatus.CANCELLED:
        makeup.cancelled_at = now
        # Frees the pair for a fresh sitting
        makeup.active_key = None

    session.flush()
    log_activity(session, actor, f'makeup.{action}', 'makeup', makeup.id, previous, target)
    return makeup


def start_makeup_test(session, actor, makeup_id, expected_version=None, now=None):
    return _move(session, actor, makeup_id, 'start', expected_version, now)


def complete_makeup_test(session, actor, makeup_id, expected_version=None, now=None):
    return _move(session, actor, makeup_id, 'complete', expected_version, now)


def cancel_makeup_test(session, actor, makeup_id, expected_version=None, now=None):
    """scheduled|in_progress -> cancelled"""
    return _move(session, actor, makeup_id, 'cancel', expected_version, now)


MAKEUP_ACTIONS = {
    'start': start_makeup_test,
    'complete': complete_makeup_test,
    'cancel': cancel_makeup_test,
}
