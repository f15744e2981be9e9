import pytest
from datetime import date

from examination_models import MakeupStatus
from makeup_helpers import (
    schedule_makeup_test, list_makeup_tests, start_makeup_test, complete_makeup_test, cancel_makeup_test
)
from workflow_errors import (
    DuplicateMakeup, EntityNotFound, IneligibleTest, InvalidTransition, Unauthorized, ValidationError
)

SITTING = date(2026, 4, 10)


@pytest.fixture
def locked_paper(make_paper, session):
    paper = make_paper('locked')
    session.commit()
    return paper


def schedule(session, actors, seed, paper, **kwargs):
    params = dict(test_id=paper.id, student_id=seed['users']['student'], reason='Medical leave',
                  scheduled_date=SITTING)
    params.update(kwargs)
    return schedule_makeup_test(session, actors['teacher'], **params)


def test_schedule_makeup(session, actors, seed, locked_paper):
    makeup = schedule(session, actors, seed, locked_paper, scheduled_date='2026-04-10')
    session.commit()

    assert makeup.status == MakeupStatus.SCHEDULED
    assert makeup.scheduled_date == SITTING
    assert makeup.to_dict()['test_title'] == 'Algebra Unit Test'


def test_makeup_for_draft_paper_fails(session, actors, seed, make_paper):
    paper = make_paper()
    with pytest.raises(IneligibleTest):
        schedule(session, actors, seed, paper)


def test_makeup_for_paper_under_review_fails(session, actors, seed, make_paper):
    paper = make_paper('principal_approved')
    with pytest.raises(IneligibleTest):
        schedule(session, actors, seed, paper)


def test_makeup_requires_a_date(session, actors, seed, locked_paper):
    with pytest.raises(ValidationError):
        schedule(session, actors, seed, locked_paper, scheduled_date=None)


def test_makeup_requires_a_student_of_the_school(session, actors, seed, locked_paper):
    with pytest.raises(EntityNotFound):
        schedule(session, actors, seed, locked_paper, student_id=seed['beta_student_id'])
    with pytest.raises(EntityNotFound):
        schedule(session, actors, seed, locked_paper, student_id=seed['users']['teacher'])


def test_parent_cannot_schedule(session, actors, seed, locked_paper):
    with pytest.raises(Unauthorized):
        schedule_makeup_test(session, actors['parent'], locked_paper.id, seed['users']['student'],
                             'Sick', SITTING)


def test_duplicate_makeup_is_rejected(session, actors, seed, locked_paper):
    schedule(session, actors, seed, locked_paper)
    session.commit()
    with pytest.raises(DuplicateMakeup):
        schedule(session, actors, seed, locked_paper)


def test_completed_makeup_still_blocks_a_new_one(session, actors, seed, locked_paper):
    makeup = schedule(session, actors, seed, locked_paper)
    start_makeup_test(session, actors['teacher'], makeup.id)
    complete_makeup_test(session, actors['teacher'], makeup.id)
    session.commit()
    assert makeup.status == MakeupStatus.COMPLETED

    with pytest.raises(DuplicateMakeup):
        schedule(session, actors, seed, locked_paper)


def test_cancel_frees_the_pair(session, actors, seed, locked_paper):
    makeup = schedule(session, actors, seed, locked_paper)
    cancel_makeup_test(session, actors['teacher'], makeup.id)
    session.commit()
    assert makeup.status == MakeupStatus.CANCELLED
    assert makeup.active_key is None

    again = schedule(session, actors, seed, locked_paper, scheduled_date=date(2026, 4, 17))
    session.commit()
    assert again.id != makeup.id
    assert len(list_makeup_tests(session, seed['alpha_id'], test_id=locked_paper.id)) == 2


def test_makeup_state_machine(session, actors, seed, locked_paper):
    makeup = schedule(session, actors, seed, locked_paper)
    with pytest.raises(InvalidTransition):
        complete_makeup_test(session, actors['teacher'], makeup.id)

    start_makeup_test(session, actors['teacher'], makeup.id)
    assert makeup.started_at is not None
    complete_makeup_test(session, actors['teacher'], makeup.id)

    with pytest.raises(InvalidTransition):
        cancel_makeup_test(session, actors['teacher'], makeup.id)


def test_list_makeup_by_status(session, actors, seed, locked_paper):
    makeup = schedule(session, actors, seed, locked_paper)
    session.commit()
    assert list_makeup_tests(session, seed['alpha_id'], status='scheduled') == [makeup]
    assert list_makeup_tests(session, seed['alpha_id'], status='cancelled') == []
    assert list_makeup_tests(session, seed['beta_id']) == []
    with pytest.raises(ValidationError):
        list_makeup_tests(session, seed['alpha_id'], status='bogus')
