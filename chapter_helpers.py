"""
Chapter Lifecycle Helper Functions
Unlock, lock, deadline, completion, score reveal and portion tracking
"""

from datetime import datetime
import logging

from access_control import require_permission
from activity_helpers import log_activity
from chapter_models import Chapter, ChapterStatus
from entity_helpers import load_for_update, parse_datetime, parse_enum
from workflow_errors import InvalidDeadline, InvalidTopics, InvalidTransition, NotCompleted, ValidationError
from workflow_transitions import next_chapter_state

logger = logging.getLogger(__name__)


def _validated_deadline(deadline, now):
    deadline = parse_datetime(deadline)
    if deadline is None:
        raise InvalidDeadline("A deadline timestamp is required")
    if deadline <= now:
        raise InvalidDeadline(f"Deadline {deadline.isoformat()} is not in the future")
    return deadline


def create_chapter(session, actor, name, subject, grade, topics=None, order_index=0):
    """Create a chapter in draft"""
    require_permission(actor, 'chapter.create')

    if not name or not subject or not grade:
        raise ValidationError('chapter', 'name, subject and grade are required')

    topic_list = []
    for topic in topics or []:
        topic = str(topic).strip()
        if topic and topic not in topic_list:
            topic_list.append(topic)

    chapter = Chapter(
        tenant_id=actor.tenant_id,
        name=name,
        subject=subject,
        grade=str(grade),
        order_index=order_index or 0,
        status=ChapterStatus.DRAFT,
        topics=topic_list,
        completed_topics=[],
        created_by=actor.id,
    )
    session.add(chapter)
    session.flush()
    log_activity(session, actor, 'chapter.create', 'chapter', chapter.id, new_state=chapter.status)
    return chapter


def list_chapters(session, tenant_id, subject=None, grade=None, status=None):
    query = session.query(Chapter).filter(Chapter.tenant_id == tenant_id)
    if subject:
        query = query.filter(Chapter.subject == subject)
    if grade:
        query = query.filter(Chapter.grade == str(grade))
    if status:
        query = query.filter(Chapter.status == parse_enum(ChapterStatus, status, 'status'))
    return query.order_by(Chapter.subject, Chapter.grade, Chapter.order_index, Chapter.id).all()


def unlock_chapter(session, actor, chapter_id, deadline=None, expected_version=None, now=None):
    """
    draft|locked -> unlocked

    Any earlier deadline is dropped; a supplied one must lie in the future.
    """
    require_permission(actor, 'chapter.unlock')
    now = now or datetime.utcnow()
    chapter = load_for_update(session, Chapter, 'chapter', chapter_id, actor.tenant_id, expected_version)

    target = next_chapter_state(chapter.status, 'unlock')
    deadline = parse_datetime(deadline)
    new_deadline = _validated_deadline(deadline, now) if deadline is not None else None

    previous = chapter.status
    chapter.status = target
    chapter.unlock_date = now
    chapter.deadline = new_deadline
    session.flush()
    log_activity(session, actor, 'chapter.unlock', 'chapter', chapter.id, previous, target,
                 details={'deadline': new_deadline.isoformat() if new_deadline else None})
    return chapter


def lock_chapter(session, actor, chapter_id, expected_version=None):
    """unlocked -> locked"""
    require_permission(actor, 'chapter.lock')
    chapter = load_for_update(session, Chapter, 'chapter', chapter_id, actor.tenant_id, expected_version)

    target = next_chapter_state(chapter.status, 'lock')
    previous = chapter.status
    chapter.status = target
    chapter.deadline = None
    session.flush()
    log_activity(session, actor, 'chapter.lock', 'chapter', chapter.id, previous, target)
    return chapter


def set_chapter_deadline(session, actor, chapter_id, deadline, expected_version=None, now=None):
    """Set a future deadline on an unlocked chapter"""
    require_permission(actor, 'chapter.set_deadline')
    now = now or datetime.utcnow()
    chapter = load_for_update(session, Chapter, 'chapter', chapter_id, actor.tenant_id, expected_version)

    if chapter.status != ChapterStatus.UNLOCKED:
        raise InvalidTransition(chapter.status.value, 'deadline_set',
                                f"A deadline can only be set on an unlocked chapter (currently '{chapter.status.value}')")
    new_deadline = _validated_deadline(deadline, now)

    chapter.deadline = new_deadline
    session.flush()
    log_activity(session, actor, 'chapter.set_deadline', 'chapter', chapter.id, chapter.status, chapter.status,
                 details={'deadline': new_deadline.isoformat()})
    return chapter


def complete_chapter(session, actor, chapter_id, expected_version=None):
    """unlocked -> completed, once the chapter's examination has finished"""
    require_permission(actor, 'chapter.complete')
    chapter = load_for_update(session, Chapter, 'chapter', chapter_id, actor.tenant_id, expected_version)

    target = next_chapter_state(chapter.status, 'complete')
    previous = chapter.status
    chapter.status = target
    chapter.deadline = None
    session.flush()
    log_activity(session, actor, 'chapter.complete', 'chapter', chapter.id, previous, target)
    return chapter


def reveal_chapter_scores(session, actor, chapter_id, expected_version=None):
    """Reveal scores of a completed chapter; repeating the call changes nothing"""
    require_permission(actor, 'chapter.reveal')
    chapter = load_for_update(session, Chapter, 'chapter', chapter_id, actor.tenant_id, expected_version)

    if chapter.status != ChapterStatus.COMPLETED:
        raise NotCompleted(f"Chapter {chapter.id} is '{chapter.status.value}', scores can only be revealed once completed")
    if chapter.scores_revealed:
        return chapter

    chapter.scores_revealed = True
    session.flush()
    log_activity(session, actor, 'chapter.reveal', 'chapter', chapter.id, chapter.status, chapter.status)
    return chapter


def update_chapter_portions(session, actor, chapter_id, completed_topics, expected_version=None):
    """
    Replace the completed-topic list

    Every supplied topic must belong to the chapter, otherwise nothing changes.
    """
    require_permission(actor, 'chapter.update_portions')
    if completed_topics is None or isinstance(completed_topics, (str, bytes)):
        raise ValidationError('completed_topics', 'must be a list of topic names')

    chapter = load_for_update(session, Chapter, 'chapter', chapter_id, actor.tenant_id, expected_version)

    topics = list(chapter.topics or [])
    requested = [str(t) for t in completed_topics]
    unknown = [t for t in requested if t not in topics]
    if unknown:
        raise InvalidTopics(unknown)

    # Stored in syllabus order without duplicates
    chapter.completed_topics = [t for t in topics if t in set(requested)]
    session.flush()
    log_activity(session, actor, 'chapter.update_portions', 'chapter', chapter.id,
                 details={'completed_topics': chapter.completed_topics, 'progress': chapter.progress})
    return chapter
