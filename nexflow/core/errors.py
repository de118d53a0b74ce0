"""Domain errors raised by the services.

Services raise ``ValueError`` subclasses; the HTTP layer maps ``status_code``
and ``code`` onto the response (see ``nexflow.main``).
"""


class NexflowError(ValueError):
    code = "error"
    status_code = 400

    def __init__(self, message: str | None = None):
        super().__init__(message or self.code)
        self.message = message or self.code


class ValidationError(NexflowError):
    code = "validation_error"


class NotFoundError(NexflowError):
    code = "not_found"
    status_code = 404


class ForbiddenError(NexflowError):
    code = "forbidden"
    status_code = 403


class TenantViolationError(NexflowError):
    code = "tenant_violation"
    status_code = 403


class DuplicateSlugError(ValidationError):
    code = "duplicate_slug"


class InvalidSlugError(ValidationError):
    code = "invalid_slug"


class SystemFieldLockedError(ValidationError):
    code = "system_field_locked"


class InvalidFieldConfigurationError(ValidationError):
    code = "invalid_field_configuration"


class LastStepError(ValidationError):
    code = "last_step"


class HasCardsError(ValidationError):
    code = "step_has_cards"


class FlowHasCardsError(ValidationError):
    code = "flow_has_cards"


class InvalidOrderError(ValidationError):
    code = "invalid_order"


class ResponsibleConflictError(ValidationError):
    code = "responsible_conflict"


class StepFlowMismatchError(ValidationError):
    code = "step_flow_mismatch"


class InvalidMovementHistoryError(ValidationError):
    code = "invalid_movement_history"


class InvalidVisibilityError(ValidationError):
    code = "invalid_visibility"


class NoTeamAssignedError(ValidationError):
    code = "no_team_assigned"


class TerminalCardError(NexflowError):
    code = "terminal_card"
    status_code = 409


class InvalidTagColorError(ValidationError):
    code = "invalid_tag_color"


class DuplicateTagError(NexflowError):
    code = "duplicate_tag"
    status_code = 409


class TagInUseError(NexflowError):
    code = "tag_in_use"
    status_code = 409


class TagFlowMismatchError(ValidationError):
    code = "tag_flow_mismatch"
