"""
Workflow Transitions
The single table of legal (state, action) pairs for every entity.

Each lifecycle helper asks next_*_state() for the target state and never
assigns a state any other way, so an illegal pair is rejected in one place.
"""

from chapter_models import ChapterStatus
from examination_models import PaperWorkflowState, MakeupStatus
from workflow_errors import InvalidTransition

# ===== CHAPTERS =====

CHAPTER_TRANSITIONS = {
    'unlock': ({ChapterStatus.DRAFT, ChapterStatus.LOCKED}, ChapterStatus.UNLOCKED),
    'lock': ({ChapterStatus.UNLOCKED}, ChapterStatus.LOCKED),
    'complete': ({ChapterStatus.UNLOCKED}, ChapterStatus.COMPLETED),
}

# ===== EXAMINATION PAPERS =====

_REVIEW_RESUBMITTABLE = {
    PaperWorkflowState.DRAFT,
    PaperWorkflowState.HOD_REJECTED,
    PaperWorkflowState.PRINCIPAL_REJECTED,
}

PAPER_TRANSITIONS = {
    'submit': (_REVIEW_RESUBMITTABLE, PaperWorkflowState.PENDING_HOD),
    'hod_approve': ({PaperWorkflowState.PENDING_HOD}, PaperWorkflowState.PENDING_PRINCIPAL),
    'hod_reject': ({PaperWorkflowState.PENDING_HOD}, PaperWorkflowState.HOD_REJECTED),
    'principal_approve': ({PaperWorkflowState.PENDING_PRINCIPAL}, PaperWorkflowState.PRINCIPAL_APPROVED),
    'principal_reject': ({PaperWorkflowState.PENDING_PRINCIPAL}, PaperWorkflowState.PRINCIPAL_REJECTED),
    'send_to_committee': ({PaperWorkflowState.PRINCIPAL_APPROVED}, PaperWorkflowState.SENT_TO_COMMITTEE),
    'lock': ({PaperWorkflowState.SENT_TO_COMMITTEE}, PaperWorkflowState.LOCKED),
    'complete': ({PaperWorkflowState.LOCKED}, PaperWorkflowState.COMPLETED),
}

# Pipeline stage of each state; no transition may lower it
PAPER_STAGE = {
    PaperWorkflowState.DRAFT: 0,
    PaperWorkflowState.PENDING_HOD: 1,
    PaperWorkflowState.HOD_REJECTED: 1,
    PaperWorkflowState.PENDING_PRINCIPAL: 1,
    PaperWorkflowState.PRINCIPAL_REJECTED: 1,
    PaperWorkflowState.PRINCIPAL_APPROVED: 2,
    PaperWorkflowState.SENT_TO_COMMITTEE: 3,
    PaperWorkflowState.LOCKED: 4,
    PaperWorkflowState.COMPLETED: 5,
}

# States in which the paper has left the review desks
REVEALABLE_STATES = frozenset({
    PaperWorkflowState.SENT_TO_COMMITTEE,
    PaperWorkflowState.LOCKED,
    PaperWorkflowState.COMPLETED,
})

# A makeup sitting needs an examination that has actually been set
MAKEUP_ELIGIBLE_STATES = REVEALABLE_STATES

# Paper content is frozen from here on
IMMUTABLE_STATES = frozenset({
    PaperWorkflowState.LOCKED,
    PaperWorkflowState.COMPLETED,
})

# ===== MAKEUP SITTINGS =====

MAKEUP_TRANSITIONS = {
    'start': ({MakeupStatus.SCHEDULED}, MakeupStatus.IN_PROGRESS),
    'complete': ({MakeupStatus.IN_PROGRESS}, MakeupStatus.COMPLETED),
    'cancel': ({MakeupStatus.SCHEDULED, MakeupStatus.IN_PROGRESS}, MakeupStatus.CANCELLED),
}


def _next_state(table, current, action):
    try:
        sources, target = table[action]
    except KeyError:
        raise InvalidTransition(current.value, action, f"Unknown action '{action}'")
    if current not in sources:
        raise InvalidTransition(current.value, target.value)
    return target


def next_chapter_state(current, action):
    return _next_state(CHAPTER_TRANSITIONS, current, action)


def next_paper_state(current, action):
    target = _next_state(PAPER_TRANSITIONS, current, action)
    if PAPER_STAGE[target] < PAPER_STAGE[current]:
        raise InvalidTransition(current.value, target.value)
    return target


def next_makeup_state(current, action):
    return _next_state(MAKEUP_TRANSITIONS, current, action)
