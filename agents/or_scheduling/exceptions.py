"""
Error taxonomy for the OR Scheduling Agent.

Every error is local and recoverable by the caller:

- ValidationError: bad or missing input, rejected before any constraint check
- ConstraintViolation: a hard rule failed; carries the violated rule names
- NoFeasibleSlotError: the allocator exhausted every room and gap
- ConcurrentModificationError / RepositoryTimeoutError: retryable write failures
- AuthorizationError: the injected Authorizer denied the action

Soft constraint violations are advisory and never raised.
"""

from typing import TYPE_CHECKING, List, Optional

if TYPE_CHECKING:
    from .models import ConflictReport


class SchedulingError(Exception):
    """Base class for all scheduling errors."""

    error_code = "scheduling_error"
    retryable = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(SchedulingError):
    """Input is missing, out of range, or the requested transition is illegal."""

    error_code = "validation_error"


class EntityNotFoundError(ValidationError):
    """A referenced surgery, room or staff member does not exist in the facility."""

    error_code = "not_found"

    def __init__(self, entity: str, entity_id: str):
        super().__init__(f"{entity} '{entity_id}' not found")
        self.entity = entity
        self.entity_id = entity_id


class ConstraintViolation(SchedulingError):
    """A proposed placement failed one or more hard constraints."""

    error_code = "constraint_violation"

    def __init__(self, violated_rules: List[str], report: Optional["ConflictReport"] = None):
        rules = ", ".join(violated_rules)
        super().__init__(f"Placement violates hard constraints: {rules}")
        self.violated_rules = list(violated_rules)
        self.report = report


class NoFeasibleSlotError(SchedulingError):
    """The allocator found no room or gap that fits the surgery."""

    error_code = "no_feasible_slot"

    def __init__(self, surgery_id: str, day: Optional[str] = None):
        suffix = f" on {day}" if day else ""
        super().__init__(f"Could not auto-schedule surgery '{surgery_id}'{suffix}")
        self.surgery_id = surgery_id
        self.day = day


class RetryableSchedulingError(SchedulingError):
    """A write could not be completed now but may succeed on retry."""

    retryable = True


class ConcurrentModificationError(RetryableSchedulingError):
    """Slots changed between validation and commit."""

    error_code = "concurrent_modification"


class RepositoryTimeoutError(RetryableSchedulingError):
    """A repository call exceeded the configured timeout."""

    error_code = "repository_timeout"


class AuthorizationError(SchedulingError):
    """The caller is not allowed to perform the action."""

    error_code = "forbidden"
