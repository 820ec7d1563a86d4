"""
Access Controller Unit Tests.

Tests for role checks, operator grants and the pause state machine.
"""

import pytest

from yield_vault.core import InvalidStateTransitionError, PausedError, UnauthorizedError
from yield_vault.vault import AccessController, VaultState
from yield_vault.vault.core import Permission, Role, VaultStatus

OWNER = "owner"
AGENT = "agent"


class TestRoles:
    """Test permission lookups."""

    def test_owner_has_every_permission(self, access):
        for permission in Permission:
            assert access.has_permission(OWNER, permission)

    def test_operator_permissions(self, access):
        assert access.has_role(AGENT, Role.OPERATOR)
        assert access.has_permission(AGENT, Permission.FUNDS_REALLOCATE)
        assert access.has_permission(AGENT, Permission.VAULT_PAUSE)
        assert not access.has_permission(AGENT, Permission.ADAPTER_REGISTER)
        assert not access.has_permission(AGENT, Permission.ROLE_ADMIN)

    def test_stranger_has_no_roles(self, access):
        assert access.roles_of("mallory") == set()

    def test_require_reports_required_role(self, access):
        with pytest.raises(UnauthorizedError) as exc_info:
            access.require(Permission.FUNDS_REALLOCATE, "mallory")
        assert exc_info.value.required_role == "operator"

        with pytest.raises(UnauthorizedError) as exc_info:
            access.require(Permission.ADAPTER_REGISTER, AGENT)
        assert exc_info.value.required_role == "owner"

    def test_owner_required(self):
        with pytest.raises(ValueError):
            AccessController(VaultState(), owner="")


class TestOperatorGrants:
    """Test operator role administration."""

    def test_grant_and_revoke(self, access):
        assert access.grant_operator(OWNER, "keeper") is True
        assert access.grant_operator(OWNER, "keeper") is False
        assert "keeper" in access.operators

        assert access.revoke_operator(OWNER, "keeper") is True
        assert access.revoke_operator(OWNER, "keeper") is False
        assert not access.has_role("keeper", Role.OPERATOR)

    def test_operator_cannot_grant(self, access):
        with pytest.raises(UnauthorizedError):
            access.grant_operator(AGENT, "keeper")

    def test_owner_cannot_be_revoked(self, access):
        with pytest.raises(InvalidStateTransitionError):
            access.revoke_operator(OWNER, OWNER)


class TestPause:
    """Test the RUNNING/PAUSED state machine."""

    def test_pause_and_unpause(self, access, state, clock):
        transition = access.pause(AGENT, "oracle outage")

        assert state.paused is True
        assert access.status == VaultStatus.PAUSED
        assert transition.actor == AGENT
        assert transition.timestamp == clock()

        access.unpause(OWNER)
        assert access.is_paused is False
        assert [t.to_status for t in access.get_pause_history()] == [
            VaultStatus.PAUSED,
            VaultStatus.RUNNING,
        ]

    def test_double_pause(self, access):
        access.pause(AGENT)
        with pytest.raises(InvalidStateTransitionError):
            access.pause(AGENT)

    def test_unpause_while_running(self, access):
        with pytest.raises(InvalidStateTransitionError):
            access.unpause(AGENT)

    def test_stranger_cannot_pause(self, access):
        with pytest.raises(UnauthorizedError):
            access.pause("alice")

    def test_require_running(self, access):
        access.require_running("deposit")
        access.pause(AGENT)
        with pytest.raises(PausedError):
            access.require_running("deposit")

    def test_transition_to_dict(self, access):
        data = access.pause(AGENT, "incident").to_dict()
        assert data["from_status"] == "running"
        assert data["to_status"] == "paused"
        assert data["reason"] == "incident"
