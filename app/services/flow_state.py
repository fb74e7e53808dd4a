"""
Registration step guard.

Allowed transitions live in one table; every step check and move in the
registration flow goes through ``require`` and ``advance``.
"""

from typing import Dict, FrozenSet

from app.core.exceptions import WrongStep
from app.models.enums import RegistrationStep


TRANSITIONS: Dict[RegistrationStep, FrozenSet[RegistrationStep]] = {
    RegistrationStep.OTP_PENDING: frozenset({RegistrationStep.DETAILS_PENDING}),
    RegistrationStep.DETAILS_PENDING: frozenset({RegistrationStep.COMPLETED}),
    RegistrationStep.COMPLETED: frozenset(),
}

# Message used when an action is attempted at the wrong step.
ACTION_MESSAGES: Dict[str, str] = {
    "verify_email": "Email verification not required at this step",
    "complete": "Email verification required before completing registration",
    "resend": "OTP resend not available at this step",
}


def require(current: RegistrationStep, expected: RegistrationStep, action: str) -> None:
    """Raise WrongStep unless the flow sits at ``expected``."""
    if current != expected:
        raise WrongStep(ACTION_MESSAGES.get(action))


def can_advance(current: RegistrationStep, target: RegistrationStep) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


def advance(current: RegistrationStep, target: RegistrationStep) -> RegistrationStep:
    if not can_advance(current, target):
        raise WrongStep(
            f"Cannot move registration from {current.value} to {target.value}"
        )
    return target
