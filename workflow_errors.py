"""
Workflow Errors
Typed failures raised by the examination workflow engine
"""


class WorkflowError(Exception):
    """Base class for every failure an engine operation can report"""
    code = 'workflow_error'
    status_code = 400

    def __init__(self, message):
        self.message = message
        super().__init__(message)

    def to_dict(self):
        return {'success': False, 'error': self.message, 'code': self.code}


class Unauthorized(WorkflowError):
    """Role lacks permission for the action"""
    code = 'unauthorized'
    status_code = 403

    def __init__(self, role, action, reason=None):
        self.role = role
        self.action = action
        self.reason = reason or f"role '{role}' may not perform '{action}'"
        super().__init__(self.reason)


class EntityNotFound(WorkflowError):
    code = 'not_found'
    status_code = 404

    def __init__(self, entity_type, entity_id):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} {entity_id} not found")


class ValidationError(WorkflowError):
    """Malformed request input"""
    code = 'validation_error'

    def __init__(self, field, message):
        self.field = field
        super().__init__(f"{field}: {message}")


class InvalidTransition(WorkflowError):
    """State machine rule violated"""
    code = 'invalid_transition'
    status_code = 409

    def __init__(self, from_state, to_state, message=None):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(message or f"Cannot move from '{from_state}' to '{to_state}'")

    def to_dict(self):
        payload = super().to_dict()
        payload['from'] = self.from_state
        payload['to'] = self.to_state
        return payload


class InvalidDeadline(WorkflowError):
    code = 'invalid_deadline'


class InvalidTopics(WorkflowError):
    code = 'invalid_topics'

    def __init__(self, unknown_topics):
        self.unknown_topics = list(unknown_topics)
        super().__init__(f"Unknown topics: {', '.join(self.unknown_topics)}")


class StaleWrite(WorkflowError):
    """Optimistic concurrency conflict; re-read and retry"""
    code = 'stale_write'
    status_code = 409

    def __init__(self, entity_type, entity_id, expected=None, actual=None):
        self.expected = expected
        self.actual = actual
        if expected is not None and actual is not None:
            message = f"{entity_type} {entity_id} is at version {actual}, not {expected}"
        else:
            message = f"{entity_type} {entity_id} was modified concurrently"
        super().__init__(message)


class NotLocked(WorkflowError):
    code = 'not_locked'
    status_code = 409


class NotCompleted(WorkflowError):
    code = 'not_completed'
    status_code = 409


class AlreadyResolved(WorkflowError):
    code = 'already_resolved'
    status_code = 409


class IneligibleTest(WorkflowError):
    """Test is not in a state that allows a makeup sitting"""
    code = 'ineligible_test'
    status_code = 409


class DuplicateMakeup(WorkflowError):
    code = 'duplicate_makeup'
    status_code = 409
