"""
Critical integration tests for tenant isolation.
These tests ensure that data is properly isolated between tenants.
"""

import uuid

import pytest
from sqlalchemy import select, update

from cafm.exceptions import InvalidTenant, PrivilegedOperationRequired, TenantViolation
from cafm.models import Asset, AuditEntry, AuditOperation, CompanyStatus, School
from cafm.services import company_service
from cafm.services.repository import TenantRepository
from cafm.services.tenant_context import (
    SYSTEM_TENANT_ID, get_active_tenant, get_context, privileged_scope, set_active_tenant, tenant_scope,
)


class TestReadIsolation:
    """Reads never return another tenant's rows."""

    def test_select_returns_only_active_tenant_rows(self, session, tenant1, school1, school2):
        """Ad-hoc select() is filtered to the active tenant."""
        with tenant_scope(session, tenant1.id):
            schools = session.execute(select(School)).scalars().all()

        assert [s.id for s in schools] == [school1.id]
        assert all(s.company_id == tenant1.id for s in schools)

    def test_get_by_id_of_other_tenant_returns_none(self, session, tenant1, school2):
        """Looking up a foreign row by id finds nothing."""
        with tenant_scope(session, tenant1.id):
            assert TenantRepository(session, School).get(school2.id) is None

    def test_require_other_tenant_row_raises_not_found(self, session, tenant1, school2):
        with pytest.raises(TenantViolation):
            with tenant_scope(session, tenant1.id):
                TenantRepository(session, School).require(school2.id)

    def test_unscoped_session_sees_no_tenant_data(self, session, school1, school2):
        """Without a bound tenant the system tenant applies."""
        assert get_active_tenant(session) == SYSTEM_TENANT_ID
        assert session.execute(select(School)).scalars().all() == []

    def test_same_code_in_different_tenants(self, session, tenant1, tenant2, school1):
        """Unique codes are per tenant."""
        with tenant_scope(session, tenant2.id):
            other = TenantRepository(session, School).create(code=school1.code, name='Namesake')

        assert other.code == school1.code
        assert other.company_id == tenant2.id

    def test_privileged_scope_sees_all_tenants(self, session, school1, school2):
        with privileged_scope(session, 'cross-tenant report'):
            ids = {s.id for s in session.execute(select(School)).scalars()}
        assert ids == {school1.id, school2.id}

    def test_lookup_by_key_after_tenant_switch(self, session, tenant1, tenant2, school1):
        """Objects loaded for one tenant are not served to the next from the identity map."""
        with tenant_scope(session, tenant1.id):
            assert session.get(School, school1.id) is school1

        with tenant_scope(session, tenant2.id):
            assert session.get(School, school1.id) is None

    def test_relationship_load_after_tenant_switch(self, session, tenant2, school1):
        """A many-to-one pointing at another tenant's row resolves to nothing."""
        with tenant_scope(session, tenant2.id):
            asset = TenantRepository(session, Asset).create(asset_code='S-AC-1', name='Chiller')
            table = Asset.__table__
            session.connection().execute(
                update(table).where(table.c.id == asset.id).values(school_id=school1.id)
            )
            session.expire(asset)

            assert asset.school_id == school1.id
            assert asset.school is None

    def test_privileged_reads_evicted_when_tenant_restored(self, session, tenant2, school1):
        with tenant_scope(session, tenant2.id):
            with privileged_scope(session, 'support lookup'):
                assert session.get(School, school1.id) is not None
            assert session.get(School, school1.id) is None


class TestWriteIsolation:
    """Writes are stamped with, and restricted to, the active tenant."""

    def test_new_rows_are_stamped_with_active_tenant(self, session, tenant1):
        with tenant_scope(session, tenant1.id):
            school = TenantRepository(session, School).create(code='N-002', name='North Secondary')
        assert school.company_id == tenant1.id

    def test_create_for_other_tenant_is_rejected(self, session, tenant1, tenant2):
        with pytest.raises(TenantViolation):
            with tenant_scope(session, tenant1.id):
                TenantRepository(session, School).create(code='X-1', name='Planted', company_id=tenant2.id)

        with tenant_scope(session, tenant2.id):
            assert TenantRepository(session, School).list() == []

    def test_update_of_other_tenant_row_is_rejected(self, session, tenant1, tenant2, school2):
        with pytest.raises(TenantViolation):
            with tenant_scope(session, tenant1.id):
                TenantRepository(session, School).update(school2.id, name='Hijacked')

        with tenant_scope(session, tenant2.id):
            assert TenantRepository(session, School).require(school2.id).name == 'South Primary'

    def test_flushing_foreign_object_is_rejected(self, session, tenant1, tenant2, school2):
        """An object loaded under another tenant cannot be written."""
        with pytest.raises(TenantViolation):
            with tenant_scope(session, tenant1.id):
                session.add(school2)
                school2.name = 'Hijacked'

        with tenant_scope(session, tenant2.id):
            assert TenantRepository(session, School).require(school2.id).name == 'South Primary'

    def test_tenant_of_a_row_cannot_change(self, session, tenant1, tenant2, school1):
        with pytest.raises(TenantViolation):
            with privileged_scope(session, 'move school'):
                row = TenantRepository(session, School).require(school1.id)
                row.company_id = tenant2.id

    def test_physical_delete_requires_privileged_scope(self, session, tenant1, school1):
        with pytest.raises(PrivilegedOperationRequired):
            with tenant_scope(session, tenant1.id):
                session.delete(TenantRepository(session, School).require(school1.id))


class TestTenantContext:
    """Binding and releasing the tenant context."""

    def test_unknown_tenant_is_invalid(self, session):
        with pytest.raises(InvalidTenant):
            set_active_tenant(session, uuid.uuid4())

    def test_malformed_tenant_is_invalid(self, session):
        with pytest.raises(InvalidTenant):
            set_active_tenant(session, 'not-a-uuid')

    def test_suspended_tenant_is_invalid(self, session, tenant1):
        with privileged_scope(session, 'suspend tenant'):
            company_service.change_status(session, tenant1.id, CompanyStatus.SUSPENDED)

        with pytest.raises(InvalidTenant):
            set_active_tenant(session, tenant1.id)

    def test_context_carries_request_details(self, session, tenant1, user1):
        ctx = set_active_tenant(
            session, str(tenant1.id), user_id=str(user1.id), request_id='req-1',
            metadata={'ip_address': '10.0.0.8'},
        )
        assert ctx.tenant_id == tenant1.id
        assert ctx.user_id == user1.id
        assert ctx.correlation_id == 'req-1'
        assert get_context(session) is ctx

    def test_context_cleared_after_scope(self, session, tenant1):
        with tenant_scope(session, tenant1.id):
            assert get_active_tenant(session) == tenant1.id
        assert get_context(session) is None

    def test_context_cleared_after_failed_scope(self, session, tenant1):
        with pytest.raises(RuntimeError):
            with tenant_scope(session, tenant1.id):
                raise RuntimeError('boom')
        assert get_context(session) is None
        assert get_active_tenant(session) == SYSTEM_TENANT_ID

    def test_privileged_scope_is_audited(self, session, tenant1):
        with privileged_scope(session, 'support ticket 42'):
            pass

        with privileged_scope(session, 'inspect audit'):
            entries = session.execute(
                select(AuditEntry).where(AuditEntry.operation == AuditOperation.PRIVILEGED_ACCESS)
            ).scalars().all()
        reasons = {e.request_metadata['reason'] for e in entries}
        assert 'support ticket 42' in reasons

    def test_privileged_scope_requires_reason(self, session):
        with pytest.raises(ValueError):
            with privileged_scope(session, ''):
                pass


class TestSoftDelete:
    """Soft-deleted rows disappear from reads until restored."""

    def test_soft_deleted_rows_are_hidden(self, session, tenant1, user1, school1):
        with tenant_scope(session, tenant1.id, user_id=user1.id):
            repo = TenantRepository(session, School)
            repo.soft_delete(school1.id, reason='Closed for renovation')
            assert repo.get(school1.id) is None
            deleted = repo.get(school1.id, include_deleted=True)
            assert deleted.deletion.reason == 'Closed for renovation'
            assert deleted.deleted_by == user1.id

    def test_restore(self, session, tenant1, school1):
        with tenant_scope(session, tenant1.id):
            repo = TenantRepository(session, School)
            repo.soft_delete(school1.id)
            repo.restore(school1.id)
            assert repo.get(school1.id) is not None

    def test_purge_requires_privileged_scope(self, session, tenant1, school1):
        with pytest.raises(PrivilegedOperationRequired):
            with tenant_scope(session, tenant1.id):
                TenantRepository(session, School).purge_deleted(0)

    def test_purge_removes_old_soft_deleted_rows(self, session, tenant1, school1):
        with tenant_scope(session, tenant1.id):
            TenantRepository(session, School).soft_delete(school1.id)

        with privileged_scope(session, 'retention'):
            purged = TenantRepository(session, School).purge_deleted(0)
            remaining = session.execute(
                select(School).execution_options(include_deleted=True)
            ).scalars().all()

        assert purged == 1
        assert remaining == []
