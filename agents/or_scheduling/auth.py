"""
Authorization capability injected into the orchestrator.

Authentication happens outside this agent; callers hand the orchestrator an
Actor and the configured Authorizer decides whether the action is allowed.
There is no ambient "current user" state anywhere in the core.
"""

import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Dict, FrozenSet, Optional

from .exceptions import AuthorizationError
from .models import Actor, StaffRole

logger = logging.getLogger(__name__)


class Action(str, Enum):
    PLACE = "place"
    AUTO_PLACE = "auto_place"
    ESCALATE = "escalate"
    APPROVE = "approve"
    TRANSITION = "transition"


ROLE_PERMISSIONS: Dict[StaffRole, FrozenSet[Action]] = {
    StaffRole.OR_MANAGER: frozenset(Action),
    StaffRole.SCHEDULER: frozenset({
        Action.PLACE, Action.AUTO_PLACE, Action.ESCALATE, Action.TRANSITION,
    }),
    StaffRole.SURGEON: frozenset({Action.TRANSITION}),
    StaffRole.ANESTHESIOLOGIST: frozenset(),
    StaffRole.NURSE: frozenset(),
}


class Authorizer(ABC):
    @abstractmethod
    def authorize(self, actor: Optional[Actor], action: Action) -> None:
        """Raise AuthorizationError when ``actor`` may not perform ``action``."""


class AllowAllAuthorizer(Authorizer):
    """For trusted callers such as batch jobs running inside the facility."""

    def authorize(self, actor: Optional[Actor], action: Action) -> None:
        return None


class RoleAuthorizer(Authorizer):
    """Checks the actor's staff role against a permission table."""

    def __init__(self, permissions: Optional[Dict[StaffRole, FrozenSet[Action]]] = None):
        self.permissions = permissions or ROLE_PERMISSIONS

    def authorize(self, actor: Optional[Actor], action: Action) -> None:
        if actor is None or actor.role is None:
            raise AuthorizationError(f"Authentication with a staff role is required to {action.value}")
        if action not in self.permissions.get(actor.role, frozenset()):
            logger.warning(f"Denied {action.value} for user {actor.user_id} ({actor.role.value})")
            raise AuthorizationError(f"Role {actor.role.value} may not {action.value}")
