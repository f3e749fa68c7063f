"""
Inspection Lifecycle Guard

Single InspectionStatus enum is the source of truth.
State transitions:
    DRAFT --(submit_responses | add_sample | add_photo | dispatch_sample)--> DRAFT
    DRAFT --(submit)--> SUBMITTED

SUBMITTED is terminal: every action against it is an ImmutabilityViolation.
The guard is advisory at read time; the submit flip itself is enforced by a
conditional update in the repository.
"""
from typing import List, Optional, Tuple

from ...errors import ImmutabilityViolation, IncompleteDataError
from ...models.db_models import InspectionStatus, SampleStatus
from ...models.domain import Sample


SUBMIT_RESPONSES = "submit_responses"
SUBMIT = "submit"
ADD_SAMPLE = "add_sample"
ADD_PHOTO = "add_photo"
DISPATCH_SAMPLE = "dispatch_sample"


class InspectionLifecycle:
    """Draft -> submitted state machine with completeness and sample gating."""

    # State transition map: (current_state, action) -> new_state
    TRANSITIONS = {
        (InspectionStatus.DRAFT, SUBMIT_RESPONSES): InspectionStatus.DRAFT,
        (InspectionStatus.DRAFT, ADD_SAMPLE): InspectionStatus.DRAFT,
        (InspectionStatus.DRAFT, ADD_PHOTO): InspectionStatus.DRAFT,
        (InspectionStatus.DRAFT, DISPATCH_SAMPLE): InspectionStatus.DRAFT,
        (InspectionStatus.DRAFT, SUBMIT): InspectionStatus.SUBMITTED,
    }

    def can_transition(self, current: InspectionStatus, action: str) -> Tuple[bool, Optional[str]]:
        """
        Check if an action is allowed from the current status.

        Returns:
            Tuple of (is_allowed, error_message)
        """
        if (current, action) in self.TRANSITIONS:
            return True, None
        if current == InspectionStatus.SUBMITTED:
            return False, f"Cannot {action.replace('_', ' ')}: inspection already submitted"
        return False, f"Invalid transition: {current.value} + {action}"

    def guard(self, current: InspectionStatus, action: str) -> InspectionStatus:
        """
        Validate an action and return the resulting status.

        Raises:
            ImmutabilityViolation: action not allowed from current status
        """
        allowed, error = self.can_transition(current, action)
        if not allowed:
            raise ImmutabilityViolation(error, details={"status": current.value, "action": action})
        return self.TRANSITIONS[(current, action)]

    def get_available_actions(self, current: InspectionStatus) -> List[str]:
        return [action for (state, action) in self.TRANSITIONS if state == current]

    @staticmethod
    def check_completeness(answered: int, required: int) -> None:
        """Raises IncompleteDataError unless every catalog indicator has a response."""
        if answered < required:
            raise IncompleteDataError(answered, required)

    @staticmethod
    def check_sample_mutable(sample: Sample) -> None:
        """A dispatched sample is in lab custody and can no longer change."""
        if sample.status == SampleStatus.DISPATCHED:
            raise ImmutabilityViolation(
                f"Sample {sample.sample_code} already dispatched",
                details={"sample_id": sample.id, "status": sample.status.value},
            )
