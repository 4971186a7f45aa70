"""Unit tests for auth/principals.py -- tenant-scoped principal administration.

Covers:
- ids from another tenant look like missing principals (NotFound)
- admins cannot deactivate/suspend/remove themselves
- the last active admin of a tenant cannot be removed, disabled or demoted,
  even when two admins deactivate each other at the same time
- role ceiling: no granting or touching roles above your own
- soft delete hides the principal but keeps its email reserved
- list filtering, search, pagination and stats are tenant-local
"""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from auth.errors import BadRequest, Conflict, Forbidden, NotFound
from auth.hashing import hash_secret, verify_secret
from auth.models import Principal, PrincipalStatus, Role
from auth.policy import RolePolicy
from auth.principals import PrincipalService
from auth.refresh import RefreshStore
from auth.store import PrincipalStore
from conftest import add_principal, scope_for


@pytest.fixture
def admin(store: PrincipalStore):
    return add_principal(store, 1, "admin@one.test", role=Role.ADMIN)


@pytest.fixture
def other_admin(store: PrincipalStore):
    return add_principal(store, 1, "admin2@one.test", role=Role.ADMIN)


@pytest.fixture
def employee(store: PrincipalStore):
    return add_principal(store, 1, "emp@one.test")


@pytest.fixture
def foreigner(store: PrincipalStore):
    return add_principal(store, 2, "emp@two.test")


class TestTenantIsolation:
    def test_get_other_tenant_principal_is_not_found(self, principal_service: PrincipalService, admin, foreigner) -> None:
        with pytest.raises(NotFound):
            principal_service.get_principal(scope_for(admin), foreigner.id)

    @pytest.mark.parametrize("operation", ["deactivate", "suspend", "activate", "remove"])
    def test_status_changes_cannot_reach_other_tenant(
        self, principal_service: PrincipalService, store: PrincipalStore, admin, foreigner, operation
    ) -> None:
        with pytest.raises(NotFound):
            getattr(principal_service, operation)(scope_for(admin), foreigner.id)
        assert store.get_by_id(2, foreigner.id).status == PrincipalStatus.ACTIVE

    def test_list_only_shows_own_tenant(self, principal_service: PrincipalService, admin, employee, foreigner) -> None:
        page = principal_service.list_principals(scope_for(admin))
        assert {p.email for p in page.items} == {"admin@one.test", "emp@one.test"}
        assert page.total == 2


class TestSelfActions:
    @pytest.mark.parametrize("operation", ["deactivate", "suspend", "remove"])
    def test_admin_cannot_disable_self(
        self, principal_service: PrincipalService, store: PrincipalStore, admin, other_admin, operation
    ) -> None:
        with pytest.raises(Forbidden):
            getattr(principal_service, operation)(scope_for(admin), admin.id)
        assert store.get_by_id(1, admin.id).status == PrincipalStatus.ACTIVE

    def test_anyone_can_read_self(self, principal_service: PrincipalService, store: PrincipalStore) -> None:
        viewer = add_principal(store, 1, "viewer@one.test", role=Role.VIEWER)
        assert principal_service.get_principal(scope_for(viewer), viewer.id).email == "viewer@one.test"

    def test_viewer_cannot_read_others(self, principal_service: PrincipalService, store: PrincipalStore, employee) -> None:
        viewer = add_principal(store, 1, "viewer@one.test", role=Role.VIEWER)
        with pytest.raises(Forbidden):
            principal_service.get_principal(scope_for(viewer), employee.id)

    def test_self_profile_update(self, principal_service: PrincipalService, employee) -> None:
        updated = principal_service.update_profile(scope_for(employee), employee.id, first_name="Grace")
        assert updated.first_name == "Grace"
        assert updated.updated_by == employee.id

    def test_employee_cannot_edit_others(self, principal_service: PrincipalService, admin, employee) -> None:
        with pytest.raises(Forbidden):
            principal_service.update_profile(scope_for(employee), admin.id, first_name="Mallory")


class TestLastAdmin:
    def test_super_admin_can_deactivate_sole_admin_peer(
        self, principal_service: PrincipalService, store: PrincipalStore, admin
    ) -> None:
        boss = add_principal(store, 1, "boss@one.test", role=Role.SUPER_ADMIN)
        principal_service.deactivate(scope_for(boss), admin.id)
        assert store.get_by_id(1, admin.id).status == PrincipalStatus.INACTIVE

    def test_last_active_admin_cannot_be_demoted(
        self, principal_service: PrincipalService, store: PrincipalStore, admin
    ) -> None:
        # An inactive super admin does not count, so `admin` is the last active one.
        boss = add_principal(store, 1, "boss@one.test", role=Role.SUPER_ADMIN, status=PrincipalStatus.INACTIVE)
        with pytest.raises(BadRequest):
            principal_service.change_role(scope_for(boss), admin.id, Role.MANAGER)

    def test_demotion_allowed_when_another_admin_remains(
        self, principal_service: PrincipalService, admin, other_admin
    ) -> None:
        updated = principal_service.change_role(scope_for(admin), other_admin.id, Role.MANAGER)
        assert updated.role == Role.MANAGER

    def test_guarded_update_refuses_to_disable_sole_admin(self, store: PrincipalStore, admin, employee) -> None:
        assert not store.update_principal(1, admin.id, keep_admin=True, status=PrincipalStatus.INACTIVE)
        assert not store.remove(1, admin.id, keep_admin=True)
        assert store.get_by_id(1, admin.id).status == PrincipalStatus.ACTIVE
        # Principals that are not admins are never held back by the guard.
        assert store.update_principal(1, employee.id, keep_admin=True, status=PrincipalStatus.INACTIVE)


class TestConcurrentLastAdmin:
    def test_mutual_deactivation_leaves_one_admin(self, tmp_path) -> None:
        # A file database so both threads contend for the same SQLite write lock.
        store = PrincipalStore(f"sqlite:///{tmp_path / 'admins.db'}")
        service = PrincipalService(store, RefreshStore(store.engine), RolePolicy())
        try:
            for tenant_id in range(1, 11):
                first = add_principal(store, tenant_id, "first@admins.test", role=Role.ADMIN)
                second = add_principal(store, tenant_id, "second@admins.test", role=Role.ADMIN)
                barrier = threading.Barrier(2)

                def deactivate(caller, target) -> bool:
                    barrier.wait()
                    try:
                        service.deactivate(scope_for(caller), target.id)
                        return True
                    except BadRequest:
                        return False

                with ThreadPoolExecutor(max_workers=2) as pool:
                    outcomes = list(pool.map(deactivate, [first, second], [second, first]))

                assert sorted(outcomes) == [False, True], f"tenant {tenant_id}: {outcomes}"
                assert store.count_active_admins(tenant_id) == 1
        finally:
            store.close()


class TestRoleCeiling:
    def test_admin_cannot_create_super_admin(self, principal_service: PrincipalService, admin) -> None:
        with pytest.raises(Forbidden):
            principal_service.create_principal(
                scope_for(admin), email="root@one.test", password="s3cret-pass", role=Role.SUPER_ADMIN
            )

    def test_admin_cannot_touch_super_admin(
        self, principal_service: PrincipalService, store: PrincipalStore, admin
    ) -> None:
        boss = add_principal(store, 1, "boss@one.test", role=Role.SUPER_ADMIN)
        with pytest.raises(Forbidden):
            principal_service.change_role(scope_for(admin), boss.id, Role.VIEWER)
        with pytest.raises(Forbidden):
            principal_service.suspend(scope_for(admin), boss.id)

    def test_manager_cannot_manage_principals(self, principal_service: PrincipalService, store: PrincipalStore, employee) -> None:
        manager = add_principal(store, 1, "mgr@one.test", role=Role.MANAGER)
        with pytest.raises(Forbidden):
            principal_service.change_role(scope_for(manager), employee.id, Role.VIEWER)
        with pytest.raises(Forbidden):
            principal_service.stats(scope_for(manager))


class TestLifecycle:
    def test_create_principal(self, principal_service: PrincipalService, admin) -> None:
        created = principal_service.create_principal(
            scope_for(admin), email="New@One.Test", password="s3cret-pass", role=Role.MANAGER, first_name="Nia"
        )
        assert created.email == "new@one.test"
        assert created.tenant_id == 1
        assert created.role == Role.MANAGER
        assert created.updated_by == admin.id

    def test_create_with_digest_shaped_password(
        self, principal_service: PrincipalService, store: PrincipalStore, admin
    ) -> None:
        password = hash_secret("looks-like-a-digest")
        created = principal_service.create_principal(scope_for(admin), email="odd@one.test", password=password)
        stored = store.get_by_id(1, created.id)
        assert stored.password_hash != password
        assert verify_secret(password, stored.password_hash)

    def test_principal_defaults_to_active(self, store: PrincipalStore) -> None:
        principal = Principal(tenant_id=1, email="plain@one.test", password_hash=hash_secret("s3cret-pass"))
        principal_id = store.create_principal(principal)
        stored = store.get_by_id(1, principal_id)
        assert stored.status == PrincipalStatus.ACTIVE
        assert stored.is_active

    def test_create_duplicate_conflicts(self, principal_service: PrincipalService, admin, employee) -> None:
        with pytest.raises(Conflict):
            principal_service.create_principal(scope_for(admin), email="emp@one.test", password="s3cret-pass")

    def test_profile_email_change_conflicts(self, principal_service: PrincipalService, admin, employee) -> None:
        with pytest.raises(Conflict):
            principal_service.update_profile(scope_for(employee), employee.id, email="admin@one.test")

    def test_suspend_clears_sessions(
        self, principal_service: PrincipalService, refresh_store: RefreshStore, admin, employee
    ) -> None:
        refresh_store.rotate(1, employee.id, "token-1")
        suspended = principal_service.suspend(scope_for(admin), employee.id)
        assert suspended.status == PrincipalStatus.SUSPENDED
        assert not refresh_store.has_session(1, employee.id)

    def test_activate_restores(self, principal_service: PrincipalService, admin, employee) -> None:
        principal_service.deactivate(scope_for(admin), employee.id)
        assert principal_service.activate(scope_for(admin), employee.id).status == PrincipalStatus.ACTIVE

    def test_soft_delete_hides_but_reserves_email(
        self, principal_service: PrincipalService, store: PrincipalStore, admin, employee
    ) -> None:
        principal_service.remove(scope_for(admin), employee.id)
        with pytest.raises(NotFound):
            principal_service.get_principal(scope_for(admin), employee.id)
        assert store.email_taken(1, "emp@one.test")
        with pytest.raises(Conflict):
            principal_service.create_principal(scope_for(admin), email="emp@one.test", password="s3cret-pass")


class TestListing:
    @pytest.fixture
    def populated(self, store: PrincipalStore, admin):
        for i in range(5):
            add_principal(store, 1, f"staff{i}@one.test")
        add_principal(store, 1, "late@one.test", status=PrincipalStatus.PENDING)
        add_principal(store, 1, "mgr@one.test", role=Role.MANAGER)
        return admin

    def test_pagination(self, principal_service: PrincipalService, populated) -> None:
        page = principal_service.list_principals(scope_for(populated), page=2, limit=3)
        assert page.total == 8
        assert len(page.items) == 3
        assert page.total_pages == 3
        assert page.has_next and page.has_prev

    def test_filters(self, principal_service: PrincipalService, populated) -> None:
        scope = scope_for(populated)
        assert principal_service.list_principals(scope, role=Role.MANAGER).total == 1
        assert principal_service.list_principals(scope, status=PrincipalStatus.PENDING).total == 1
        assert principal_service.list_principals(scope, search="staff").total == 5

    def test_sorted_by_email(self, principal_service: PrincipalService, populated) -> None:
        items = principal_service.list_principals(scope_for(populated), sort_by="email", descending=True).items
        emails = [p.email for p in items]
        assert emails == sorted(emails, reverse=True)

    def test_stats(self, principal_service: PrincipalService, populated) -> None:
        stats = principal_service.stats(scope_for(populated))
        assert stats["total"] == 8
        assert stats["active"] == 7
        assert stats["pending"] == 1
        assert stats["suspended"] == 0
