"""
Examination Paper Workflow Helper Functions
Creation from a blueprint, review desks, committee, lock, printing and reveal
"""

from datetime import datetime
import logging

from access_control import require_permission
from activity_helpers import log_activity
from entity_helpers import get_scoped, load_for_update, parse_date, parse_enum
from examination_models import Blueprint, ExamPaper, PaperWorkflowState, PaperType, PaperFormat
from workflow_errors import EntityNotFound, InvalidTransition, NotLocked, ValidationError
from workflow_transitions import next_paper_state, REVEALABLE_STATES, IMMUTABLE_STATES

logger = logging.getLogger(__name__)

# Fixed sitting length per paper size, in minutes
DURATION_BY_TOTAL_MARKS = {
    40: 90,
    80: 180,
}
DEFAULT_DURATION = 120

EDITABLE_FIELDS = ('title', 'exam_date', 'paper_format', 'total_marks', 'duration', 'section', 'test_type')


def calculate_exam_duration(total_marks):
    """Sitting length for a paper: 40 marks -> 90 min, 80 -> 180, anything else 120"""
    return DURATION_BY_TOTAL_MARKS.get(int(total_marks), DEFAULT_DURATION)


def _positive_int(value, field):
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationError(field, 'must be a whole number')
    if number <= 0:
        raise ValidationError(field, 'must be greater than zero')
    return number


# ===== BLUEPRINTS =====

def resolve_blueprint(session, tenant_id, blueprint_id):
    """Return the school's blueprint or raise EntityNotFound"""
    if blueprint_id is None:
        raise EntityNotFound('blueprint', None)
    return get_scoped(session, Blueprint, 'blueprint', blueprint_id, tenant_id)


def create_blueprint(session, actor, name, subject, grade, total_marks, sections=None):
    require_permission(actor, 'blueprint.create')
    if not name or not subject or not grade:
        raise ValidationError('blueprint', 'name, subject and grade are required')

    blueprint = Blueprint(
        tenant_id=actor.tenant_id,
        name=name,
        subject=subject,
        grade=str(grade),
        total_marks=_positive_int(total_marks, 'total_marks'),
        sections=list(sections or []),
        created_by=actor.id,
    )
    session.add(blueprint)
    session.flush()
    log_activity(session, actor, 'blueprint.create', 'blueprint', blueprint.id)
    return blueprint


def list_blueprints(session, tenant_id, subject=None, grade=None):
    query = session.query(Blueprint).filter(Blueprint.tenant_id == tenant_id)
    if subject:
        query = query.filter(Blueprint.subject == subject)
    if grade:
        query = query.filter(Blueprint.grade == str(grade))
    return query.order_by(Blueprint.created_at.desc(), Blueprint.id.desc()).all()


# ===== PAPERS =====

def create_exam_paper(session, actor, blueprint_id, title, exam_date=None, subject=None, grade=None,
                      total_marks=None, duration=None, paper_format=None, test_type=None,
                      section=None, chapter_id=None):
    """
    Create a draft paper from a blueprint

    Subject, grade and total marks default to the blueprint's. The duration is
    derived from the total marks unless given explicitly.
    """
    require_permission(actor, 'test.create')
    if not title:
        raise ValidationError('title', 'is required')

    blueprint = resolve_blueprint(session, actor.tenant_id, blueprint_id)

    if chapter_id is not None:
        from chapter_models import Chapter
        get_scoped(session, Chapter, 'chapter', chapter_id, actor.tenant_id)

    marks = _positive_int(total_marks, 'total_marks') if total_marks is not None else blueprint.total_marks
    overridden = duration is not None
    paper = ExamPaper(
        tenant_id=actor.tenant_id,
        blueprint_id=blueprint.id,
        chapter_id=chapter_id,
        title=title,
        test_type=parse_enum(PaperType, test_type or PaperType.UNIT_TEST, 'test_type'),
        subject=subject or blueprint.subject,
        grade=str(grade or blueprint.grade),
        section=section,
        total_marks=marks,
        duration=_positive_int(duration, 'duration') if overridden else calculate_exam_duration(marks),
        duration_overridden=overridden,
        exam_date=parse_date(exam_date, 'exam_date'),
        paper_format=parse_enum(PaperFormat, paper_format or PaperFormat.A4, 'paper_format'),
        workflow_state=PaperWorkflowState.DRAFT,
        created_by=actor.id,
    )
    session.add(paper)
    session.flush()
    log_activity(session, actor, 'test.create', 'test', paper.id, new_state=paper.workflow_state,
                 details={'blueprint_id': blueprint.id, 'total_marks': marks, 'duration': paper.duration})
    return paper


def list_exam_papers(session, tenant_id, states=None, subject=None, grade=None):
    query = session.query(ExamPaper).filter(ExamPaper.tenant_id == tenant_id)
    if states:
        query = query.filter(ExamPaper.workflow_state.in_(
            [parse_enum(PaperWorkflowState, s, 'workflow_state') for s in states]
        ))
    if subject:
        query = query.filter(ExamPaper.subject == subject)
    if grade:
        query = query.filter(ExamPaper.grade == str(grade))
    return query.order_by(ExamPaper.created_at.desc(), ExamPaper.id.desc()).all()


def get_exam_paper(session, tenant_id, paper_id):
    return get_scoped(session, ExamPaper, 'test', paper_id, tenant_id)


def update_exam_paper(session, actor, paper_id, changes, expected_version=None):
    """Edit paper details; refused once the paper is locked"""
    require_permission(actor, 'test.update')
    paper = load_for_update(session, ExamPaper, 'test', paper_id, actor.tenant_id, expected_version)

    if paper.workflow_state in IMMUTABLE_STATES:
        raise InvalidTransition(paper.workflow_state.value, 'edit',
                                f"Paper {paper.id} is '{paper.workflow_state.value}' and can no longer be edited")

    unknown = set(changes) - set(EDITABLE_FIELDS)
    if unknown:
        raise ValidationError(', '.join(sorted(unknown)), 'cannot be edited')

    if 'title' in changes:
        if not changes['title']:
            raise ValidationError('title', 'is required')
        paper.title = changes['title']
    if 'exam_date' in changes:
        paper.exam_date = parse_date(changes['exam_date'], 'exam_date')
    if 'paper_format' in changes:
        paper.paper_format = parse_enum(PaperFormat, changes['paper_format'], 'paper_format')
    if 'test_type' in changes:
        paper.test_type = parse_enum(PaperType, changes['test_type'], 'test_type')
    if 'section' in changes:
        paper.section = changes['section']
    if 'duration' in changes:
        if changes['duration'] is None:
            paper.duration_overridden = False
        else:
            paper.duration = _positive_int(changes['duration'], 'duration')
            paper.duration_overridden = True
    if 'total_marks' in changes:
        paper.total_marks = _positive_int(changes['total_marks'], 'total_marks')
    if not paper.duration_overridden:
        paper.duration = calculate_exam_duration(paper.total_marks)

    session.flush()
    log_activity(session, actor, 'test.update', 'test', paper.id, details={'fields': sorted(changes)})
    return paper


def _advance(session, actor, paper_id, action, expected_version=None, comments=None, now=None,
             require_comments=False):
    """Load, authorize and move a paper one step along the pipeline"""
    require_permission(actor, f'test.{action}')
    if require_comments and not comments:
        raise ValidationError('comments', 'a reason for rejection is required')
    now = now or datetime.utcnow()
    paper = load_for_update(session, ExamPaper, 'test', paper_id, actor.tenant_id, expected_version)

    previous = paper.workflow_state
    target = next_paper_state(previous, action)

    if target == PaperWorkflowState.COMPLETED and not paper.printing_ready:
        raise InvalidTransition(previous.value, target.value,
                                f"Paper {paper.id} must be marked printing ready before it can be completed")

    paper.workflow_state = target
    if action == 'submit':
        paper.submitted_at = now
    elif action == 'hod_approve':
        paper.hod_approved_by = actor.id
        paper.hod_approved_at = now
        paper.hod_comments = comments
    elif action == 'hod_reject':
        paper.hod_comments = comments
    elif action == 'principal_approve':
        paper.principal_approved_by = actor.id
        paper.principal_approved_at = now
        paper.principal_comments = comments
    elif action == 'principal_reject':
        paper.principal_comments = comments
    elif action == 'send_to_committee':
        paper.sent_to_committee_at = now
    elif action == 'lock':
        paper.locked_at = now
    elif action == 'complete':
        paper.completed_at = now

    session.flush()
    log_activity(session, actor, f'test.{action}', 'test', paper.id, previous, target, comments=comments)
    return paper


def submit_paper(session, actor, paper_id, expected_version=None, now=None):
    """draft (or a rejected paper) -> pending_hod"""
    return _advance(session, actor, paper_id, 'submit', expected_version, now=now)


def hod_approve_paper(session, actor, paper_id, comments=None, expected_version=None, now=None):
    return _advance(session, actor, paper_id, 'hod_approve', expected_version, comments, now)


def hod_reject_paper(session, actor, paper_id, comments, expected_version=None, now=None):
    return _advance(session, actor, paper_id, 'hod_reject', expected_version, comments, now,
                    require_comments=True)


def principal_approve_paper(session, actor, paper_id, comments=None, expected_version=None, now=None):
    return _advance(session, actor, paper_id, 'principal_approve', expected_version, comments, now)


def principal_reject_paper(session, actor, paper_id, comments, expected_version=None, now=None):
    return _advance(session, actor, paper_id, 'principal_reject', expected_version, comments, now,
                    require_comments=True)


def send_paper_to_committee(session, actor, paper_id, expected_version=None, now=None):
    """principal_approved -> sent_to_committee"""
    return _advance(session, actor, paper_id, 'send_to_committee', expected_version, now=now)


def lock_paper(session, actor, paper_id, expected_version=None, now=None):
    """sent_to_committee -> locked; content is frozen from here on"""
    return _advance(session, actor, paper_id, 'lock', expected_version, now=now)


def complete_paper(session, actor, paper_id, expected_version=None, now=None):
    """locked and printing ready -> completed"""
    return _advance(session, actor, paper_id, 'complete', expected_version, now=now)


def mark_paper_confidential(session, actor, paper_id, expected_version=None):
    """Set the confidential flag; it can never be cleared"""
    require_permission(actor, 'test.mark_confidential')
    paper = load_for_update(session, ExamPaper, 'test', paper_id, actor.tenant_id, expected_version)

    if paper.is_confidential:
        return paper
    if paper.printing_ready:
        raise InvalidTransition(paper.workflow_state.value, 'confidential',
                                f"Paper {paper.id} is already printing ready and can no longer be marked confidential")

    paper.is_confidential = True
    session.flush()
    log_activity(session, actor, 'test.mark_confidential', 'test', paper.id,
                 paper.workflow_state, paper.workflow_state)
    return paper


def mark_paper_printing_ready(session, actor, paper_id, expected_version=None):
    """Flag a locked paper for printing"""
    require_permission(actor, 'test.mark_printing_ready')
    paper = load_for_update(session, ExamPaper, 'test', paper_id, actor.tenant_id, expected_version)

    if paper.workflow_state != PaperWorkflowState.LOCKED:
        raise NotLocked(f"Paper {paper.id} is '{paper.workflow_state.value}', it must be locked before printing")
    if paper.printing_ready:
        return paper

    paper.printing_ready = True
    session.flush()
    log_activity(session, actor, 'test.mark_printing_ready', 'test', paper.id,
                 paper.workflow_state, paper.workflow_state)
    return paper


def reveal_paper(session, actor, paper_id, expected_version=None):
    """Reveal a paper that has reached the committee; state is unchanged"""
    require_permission(actor, 'test.reveal')
    paper = load_for_update(session, ExamPaper, 'test', paper_id, actor.tenant_id, expected_version)

    if paper.workflow_state not in REVEALABLE_STATES:
        raise NotLocked(f"Paper {paper.id} is '{paper.workflow_state.value}' and cannot be revealed yet")
    if paper.is_revealed:
        return paper

    paper.is_revealed = True
    session.flush()
    log_activity(session, actor, 'test.reveal', 'test', paper.id, paper.workflow_state, paper.workflow_state)
    return paper


PAPER_ACTIONS = {
    'submit': submit_paper,
    'hod-approve': hod_approve_paper,
    'hod-reject': hod_reject_paper,
    'principal-approve': principal_approve_paper,
    'principal-reject': principal_reject_paper,
    'send-to-committee': send_paper_to_committee,
    'mark-confidential': mark_paper_confidential,
    'lock': lock_paper,
    'mark-printing-ready': mark_paper_printing_ready,
    'complete': complete_paper,
    'reveal': reveal_paper,
}

# Actions that take reviewer comments
COMMENTED_ACTIONS = frozenset({'hod-approve', 'hod-reject', 'principal-approve', 'principal-reject'})
