"""Unit tests for auth/policy.py -- role capability table and authorize/deny decisions.

Covers:
- every Role has a complete row in the capability table (forces review when roles are added)
- authorize() is plain set membership; empty allow-list denies everyone
- capability table spot checks per role
- self-action guard applies to every role, super_admin included
- role ceiling on assignments
"""

import pytest

from auth.errors import Forbidden
from auth.models import Role, Scope
from auth.policy import CAPABILITIES, Operation, Resource, RolePolicy, SelfAction


def _scope(role: Role, principal_id: int = 10) -> Scope:
    return Scope(principal_id=principal_id, tenant_id=1, role=role)


class TestCapabilityTable:
    def test_every_role_covers_every_resource(self) -> None:
        for role in Role:
            assert role in CAPABILITIES, f"{role} missing from capability table"
            assert set(CAPABILITIES[role]) == set(Resource), f"{role} row incomplete"

    def test_roles_are_ordered_by_privilege(self) -> None:
        ranks = [r.rank for r in Role]
        assert ranks == sorted(ranks, reverse=True)
        assert Role.SUPER_ADMIN.outranks(Role.ADMIN)
        assert not Role.VIEWER.outranks(Role.EMPLOYEE)

    def test_capabilities_never_grow_when_rank_drops(self) -> None:
        roles = list(Role)
        for higher, lower in zip(roles, roles[1:]):
            for resource in Resource:
                assert CAPABILITIES[lower][resource] <= CAPABILITIES[higher][resource], (higher, lower, resource)

    @pytest.mark.parametrize(
        "role,resource,operation,allowed",
        [
            (Role.ADMIN, Resource.PRINCIPALS, Operation.MANAGE, True),
            (Role.MANAGER, Resource.PRINCIPALS, Operation.MANAGE, False),
            (Role.MANAGER, Resource.INVENTORY, Operation.MANAGE, True),
            (Role.EMPLOYEE, Resource.INVENTORY, Operation.WRITE, True),
            (Role.EMPLOYEE, Resource.REPORTS, Operation.WRITE, False),
            (Role.VIEWER, Resource.PRINCIPALS, Operation.READ, False),
            (Role.VIEWER, Resource.INVENTORY, Operation.READ, True),
            (Role.VIEWER, Resource.INVENTORY, Operation.WRITE, False),
        ],
    )
    def test_can(self, policy: RolePolicy, role, resource, operation, allowed) -> None:
        assert policy.can(_scope(role), resource, operation) is allowed

    def test_require_raises_forbidden_on_deny(self, policy: RolePolicy) -> None:
        with pytest.raises(Forbidden):
            policy.require(_scope(Role.VIEWER), Resource.PRINCIPALS, Operation.READ)


class TestAuthorize:
    def test_role_in_set_is_allowed(self, policy: RolePolicy) -> None:
        assert policy.authorize(_scope(Role.ADMIN), {Role.ADMIN, Role.SUPER_ADMIN})

    def test_role_not_in_set_is_denied(self, policy: RolePolicy) -> None:
        assert not policy.authorize(_scope(Role.MANAGER), {Role.ADMIN, Role.SUPER_ADMIN})

    def test_empty_set_denies_everyone(self, policy: RolePolicy) -> None:
        for role in Role:
            assert not policy.authorize(_scope(role), set())

    def test_require_roles_raises_forbidden(self, policy: RolePolicy) -> None:
        with pytest.raises(Forbidden):
            policy.require_roles(_scope(Role.EMPLOYEE), [Role.ADMIN])


class TestGuards:
    @pytest.mark.parametrize("role", list(Role))
    @pytest.mark.parametrize("action", list(SelfAction))
    def test_self_action_forbidden_for_every_role(self, policy: RolePolicy, role: Role, action: SelfAction) -> None:
        with pytest.raises(Forbidden):
            policy.guard_self_action(_scope(role, principal_id=10), 10, action)

    def test_self_action_guard_allows_other_target(self, policy: RolePolicy) -> None:
        policy.guard_self_action(_scope(Role.ADMIN, principal_id=10), 11, SelfAction.DEACTIVATE)

    def test_cannot_assign_role_above_own(self, policy: RolePolicy) -> None:
        with pytest.raises(Forbidden):
            policy.guard_role_assignment(_scope(Role.ADMIN), Role.SUPER_ADMIN)

    def test_can_assign_own_role_or_lower(self, policy: RolePolicy) -> None:
        policy.guard_role_assignment(_scope(Role.ADMIN), Role.ADMIN)
        policy.guard_role_assignment(_scope(Role.ADMIN), Role.VIEWER)
