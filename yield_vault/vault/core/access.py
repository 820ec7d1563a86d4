"""
Access & Emergency Control.

Role gates for the owner and the automated operator, and the
RUNNING <-> PAUSED state machine that blocks new allocation activity
during incidents. The emergency withdrawal path is never gated here.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set

from yield_vault.core import (
    EventType,
    InvalidStateTransitionError,
    PausedError,
    UnauthorizedError,
    VaultAuditLogger,
    get_audit_logger,
    get_logger,
)

from ..models.state import VaultState

logger = get_logger(__name__)


class Permission(Enum):
    """Vault permissions."""

    ADAPTER_REGISTER = "adapter:register"
    ADAPTER_ACTIVATE = "adapter:activate"
    FUNDS_REALLOCATE = "funds:reallocate"
    VAULT_PAUSE = "vault:pause"
    DECISION_APPEND = "decision:append"
    ROLE_ADMIN = "role:admin"


class Role(Enum):
    """Vault roles."""

    OWNER = "owner"  # Everything
    OPERATOR = "operator"  # Automated agent: allocation and incident control


ROLE_PERMISSIONS: Dict[Role, Set[Permission]] = {
    Role.OWNER: set(Permission),
    Role.OPERATOR: {
        Permission.ADAPTER_ACTIVATE,
        Permission.FUNDS_REALLOCATE,
        Permission.VAULT_PAUSE,
        Permission.DECISION_APPEND,
    },
}


class VaultStatus(Enum):
    """Pause state machine states."""

    RUNNING = "running"
    PAUSED = "paused"


VALID_TRANSITIONS: Dict[VaultStatus, Set[VaultStatus]] = {
    VaultStatus.RUNNING: {VaultStatus.PAUSED},
    VaultStatus.PAUSED: {VaultStatus.RUNNING},
}


@dataclass
class PauseTransition:
    """One entry of the pause history."""

    from_status: VaultStatus
    to_status: VaultStatus
    actor: str
    reason: str = ""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "from_status": self.from_status.value,
            "to_status": self.to_status.value,
            "actor": self.actor,
            "reason": self.reason,
            "timestamp": self.timestamp.isoformat(),
        }


class AccessController:
    """
    Role registry and pause state machine.

    The paused flag itself lives on VaultState so that it is snapshotted,
    persisted and restored with the rest of the ledger.

    Example:
        >>> access = AccessController(state, owner="0xowner", operators=["agent"])
        >>> access.require(Permission.VAULT_PAUSE, "agent")
        >>> access.pause("agent", reason="oracle outage")
    """

    def __init__(
        self,
        state: VaultState,
        owner: str,
        operators: Optional[List[str]] = None,
        audit_logger: Optional[VaultAuditLogger] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        if not owner:
            raise ValueError("owner identity is required")

        self._state = state
        self._owner = owner
        self._operators: Set[str] = set(operators or [])
        self._operators.discard(owner)
        self._audit = audit_logger or get_audit_logger()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._history: List[PauseTransition] = []

    @property
    def owner(self) -> str:
        return self._owner

    @property
    def operators(self) -> List[str]:
        return sorted(self._operators)

    @property
    def status(self) -> VaultStatus:
        return VaultStatus.PAUSED if self._state.paused else VaultStatus.RUNNING

    @property
    def is_paused(self) -> bool:
        return self._state.paused

    # =========================================================================
    # Roles
    # =========================================================================

    def roles_of(self, identity: str) -> Set[Role]:
        roles: Set[Role] = set()
        if identity == self._owner:
            roles.add(Role.OWNER)
        if identity in self._operators:
            roles.add(Role.OPERATOR)
        return roles

    def has_role(self, identity: str, role: Role) -> bool:
        return role in self.roles_of(identity)

    def has_permission(self, identity: str, permission: Permission) -> bool:
        return any(permission in ROLE_PERMISSIONS[role] for role in self.roles_of(identity))

    def require(self, permission: Permission, caller: str) -> None:
        """
        Raise Unauthorized unless ``caller`` holds ``permission``.

        Raises:
            UnauthorizedError: Caller lacks the permission
        """
        if self.has_permission(caller, permission):
            return

        required = Role.OPERATOR if permission in ROLE_PERMISSIONS[Role.OPERATOR] else Role.OWNER
        self._audit.control_change(
            EventType.ACCESS_DENIED,
            actor=caller,
            target=permission.value,
        )
        raise UnauthorizedError(
            f"{permission.value} requires the {required.value} role",
            caller=caller,
            required_role=required.value,
        )

    def grant_operator(self, caller: str, identity: str) -> bool:
        """
        Grant the operator role. Owner only.

        Returns:
            True if the role was newly granted
        """
        self.require(Permission.ROLE_ADMIN, caller)
        if not identity:
            raise ValueError("identity is required")
        if identity == self._owner or identity in self._operators:
            return False

        self._operators.add(identity)
        self._audit.control_change(
            EventType.ROLE_GRANTED, actor=caller, target=identity, role=Role.OPERATOR.value
        )
        logger.info(f"Operator role granted to {identity} by {caller}")
        return True

    def revoke_operator(self, caller: str, identity: str) -> bool:
        """
        Revoke the operator role. Owner only; the owner itself cannot be revoked.

        Returns:
            True if the role was held and is now revoked
        """
        self.require(Permission.ROLE_ADMIN, caller)
        if identity == self._owner:
            raise InvalidStateTransitionError(
                "The owner role cannot be revoked",
                details={"identity": identity},
            )
        if identity not in self._operators:
            return False

        self._operators.discard(identity)
        self._audit.control_change(
            EventType.ROLE_REVOKED, actor=caller, target=identity, role=Role.OPERATOR.value
        )
        logger.info(f"Operator role revoked from {identity} by {caller}")
        return True

    # =========================================================================
    # Pause state machine
    # =========================================================================

    def require_running(self, operation: str) -> None:
        """
        Raises:
            PausedError: The vault is paused
        """
        if self._state.paused:
            raise PausedError(
                f"{operation} is not allowed while the vault is paused",
                details={"operation": operation},
            )

    def pause(self, caller: str, reason: str = "") -> PauseTransition:
        """RUNNING -> PAUSED. Operator role."""
        self.require(Permission.VAULT_PAUSE, caller)
        transition = self._transition(VaultStatus.PAUSED, caller, reason)
        logger.warning(f"Vault paused by {caller}: {reason or 'no reason given'}")
        return transition

    def unpause(self, caller: str, reason: str = "") -> PauseTransition:
        """PAUSED -> RUNNING. Operator role."""
        self.require(Permission.VAULT_PAUSE, caller)
        transition = self._transition(VaultStatus.RUNNING, caller, reason)
        logger.info(f"Vault unpaused by {caller}")
        return transition

    def _transition(self, target: VaultStatus, actor: str, reason: str) -> PauseTransition:
        current = self.status
        if target not in VALID_TRANSITIONS[current]:
            raise InvalidStateTransitionError(
                f"Cannot transition from {current.value} to {target.value}",
                details={"from": current.value, "to": target.value},
            )

        self._state.paused = target == VaultStatus.PAUSED
        transition = PauseTransition(
            from_status=current,
            to_status=target,
            actor=actor,
            reason=reason,
            timestamp=self._clock(),
        )
        self._history.append(transition)
        self._audit.control_change(
            EventType.PAUSED if target == VaultStatus.PAUSED else EventType.UNPAUSED,
            actor=actor,
            target=reason or None,
        )
        return transition

    def get_pause_history(self) -> List[PauseTransition]:
        return list(self._history)
