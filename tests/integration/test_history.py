"""
Integration tests for the temporal history store.
"""

from datetime import timedelta, timezone

import pytest

from cafm.exceptions import BusinessLogicError, ImmutableRecordError, NotFoundError, TenantViolation
from cafm.models import School, User
from cafm.services import history_service
from cafm.services.repository import TenantRepository
from cafm.services.tenant_context import tenant_scope
from cafm.utils.serialization import as_utc, utcnow


@pytest.fixture
def edited_school(session, tenant1, user1, school1):
    """school1 renamed, then moved to another city."""
    with tenant_scope(session, tenant1.id, user_id=user1.id):
        repo = TenantRepository(session, School)
        repo.update(school1.id, name='North Academy')
        repo.update(school1.id, city='Dammam')
    return school1


def _versions(session, tenant_id, table_name, record_id):
    with tenant_scope(session, tenant_id):
        return history_service.list_versions(session, table_name, record_id)


class TestVersionRecording:
    """Versions are appended for tracked-field updates only."""

    def test_versions_hold_previous_values(self, session, tenant1, user1, edited_school):
        v1, v2 = _versions(session, tenant1.id, 'schools', edited_school.id)

        assert (v1.version_number, v2.version_number) == (1, 2)
        assert v1.snapshot['name'] == 'North Primary'
        assert v1.snapshot['city'] == 'Riyadh'
        assert v2.snapshot['name'] == 'North Academy'
        assert v2.snapshot['city'] == 'Riyadh'
        assert v1.modified_by == user1.id
        assert v1.company_id == tenant1.id

    def test_versions_are_contiguous(self, session, tenant1, edited_school):
        v1, v2 = _versions(session, tenant1.id, 'schools', edited_school.id)

        assert v1.valid_from < v1.valid_to
        assert v1.valid_to == v2.valid_from
        assert v2.valid_from < v2.valid_to

    def test_excluded_field_update_creates_no_version(self, session, tenant1, user1):
        with tenant_scope(session, tenant1.id):
            TenantRepository(session, User).update(user1.id, last_login_at=utcnow())

        assert _versions(session, tenant1.id, 'users', user1.id) == []

    def test_noop_update_creates_no_version(self, session, tenant1, school1):
        with tenant_scope(session, tenant1.id):
            TenantRepository(session, School).update(school1.id, city='Riyadh')

        assert _versions(session, tenant1.id, 'schools', school1.id) == []

    def test_versions_are_immutable(self, session, tenant1, edited_school):
        with pytest.raises(ImmutableRecordError):
            with tenant_scope(session, tenant1.id):
                version = history_service.list_versions(session, 'schools', edited_school.id)[0]
                version.snapshot = {'name': 'Rewritten'}


class TestPointInTime:
    """get_version_at over the half-open [valid_from, valid_to) intervals."""

    def test_start_of_first_interval(self, session, tenant1, edited_school):
        v1, _ = _versions(session, tenant1.id, 'schools', edited_school.id)
        with tenant_scope(session, tenant1.id):
            state = history_service.get_version_at(session, 'schools', edited_school.id, v1.valid_from)
        assert state['name'] == 'North Primary'

    def test_boundary_belongs_to_next_version(self, session, tenant1, edited_school):
        v1, _ = _versions(session, tenant1.id, 'schools', edited_school.id)
        with tenant_scope(session, tenant1.id):
            state = history_service.get_version_at(session, 'schools', edited_school.id, v1.valid_to)
        assert state['name'] == 'North Academy'
        assert state['city'] == 'Riyadh'

    def test_timestamp_in_another_zone(self, session, tenant1, edited_school):
        v1, _ = _versions(session, tenant1.id, 'schools', edited_school.id)
        riyadh_time = as_utc(v1.valid_to).astimezone(timezone(timedelta(hours=3)))
        with tenant_scope(session, tenant1.id):
            state = history_service.get_version_at(session, 'schools', edited_school.id, riyadh_time)
        assert state['name'] == 'North Academy'
        assert state['city'] == 'Riyadh'

    def test_after_last_version_returns_live_row(self, session, tenant1, edited_school):
        _, v2 = _versions(session, tenant1.id, 'schools', edited_school.id)
        with tenant_scope(session, tenant1.id):
            state = history_service.get_version_at(session, 'schools', edited_school.id, v2.valid_to)
        assert state['name'] == 'North Academy'
        assert state['city'] == 'Dammam'

    def test_without_versions_returns_live_row(self, session, tenant1, school1):
        with tenant_scope(session, tenant1.id):
            state = history_service.get_version_at(session, 'schools', school1.id, utcnow() + timedelta(seconds=5))
        assert state['code'] == 'N-001'

    def test_before_creation_is_not_found(self, session, tenant1, edited_school):
        v1, _ = _versions(session, tenant1.id, 'schools', edited_school.id)
        with pytest.raises(NotFoundError) as exc_info:
            with tenant_scope(session, tenant1.id):
                history_service.get_version_at(
                    session, 'schools', edited_school.id, v1.valid_from - timedelta(days=1),
                )
        assert not isinstance(exc_info.value, TenantViolation)

    def test_other_tenant_record_is_hidden(self, session, tenant2, edited_school):
        with pytest.raises(TenantViolation):
            with tenant_scope(session, tenant2.id):
                history_service.get_version_at(session, 'schools', edited_school.id, utcnow())

    def test_table_without_history(self, session, tenant1):
        with pytest.raises(BusinessLogicError):
            with tenant_scope(session, tenant1.id):
                history_service.get_version_at(session, 'assets', tenant1.id, utcnow())

    def test_historized_models(self):
        assert set(history_service.historized_models()) == {'reports', 'users', 'schools'}
