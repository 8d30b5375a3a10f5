"""
Integration tests for the request middleware, error handlers and CLI commands.
"""

from decimal import Decimal

from sqlalchemy import select, update

from cafm.models import Asset, AuditArchive, CompanyStatus, School
from cafm.services import company_service
from cafm.services.repository import TenantRepository
from cafm.services.tenant_context import get_context, privileged_scope, tenant_scope


class TestRequestContext:
    """Tenant context bound from the Flask session."""

    def test_health(self, client):
        response = client.get('/health')
        assert response.status_code == 200
        assert response.get_json() == {'status': 'ok', 'application': 'cafm-backend'}

    def test_unknown_route_is_json(self, client):
        response = client.get('/no-such-page')
        assert response.status_code == 404
        assert response.get_json()['message'] == 'Not Found'

    def test_tenant_bound_from_session(self, client, tenant1, user1):
        with client.session_transaction() as sess:
            sess['tenant_id'] = str(tenant1.id)
            sess['user_id'] = str(user1.id)

        response = client.get('/_echo/tenant', headers={'X-Request-ID': 'req-abc'})
        assert response.status_code == 200
        assert response.get_json() == {
            'tenant_id': str(tenant1.id),
            'user_id': str(user1.id),
            'request_id': 'req-abc',
        }

    def test_context_released_after_request(self, client, session, tenant1):
        with client.session_transaction() as sess:
            sess['tenant_id'] = str(tenant1.id)

        client.get('/_echo/tenant')
        assert get_context(session) is None

    def test_request_without_tenant_is_rejected(self, client):
        response = client.get('/_echo/tenant')
        assert response.status_code == 403
        assert 'message' in response.get_json()

    def test_suspended_tenant_is_rejected(self, client, session, tenant1):
        with privileged_scope(session, 'suspend tenant'):
            company_service.change_status(session, tenant1.id, CompanyStatus.SUSPENDED)
        with client.session_transaction() as sess:
            sess['tenant_id'] = str(tenant1.id)

        response = client.get('/_echo/tenant')
        assert response.status_code == 403
        with client.session_transaction() as sess:
            assert 'tenant_id' not in sess


class TestCliCommands:
    """Maintenance commands."""

    def test_init_db(self, app, session):
        result = app.test_cli_runner().invoke(args=['init-db'])
        assert result.exit_code == 0
        assert 'Database initialized.' in result.output

    def test_archive_audit_logs(self, app, session, school1):
        result = app.test_cli_runner().invoke(args=['archive-audit-logs', '--days', '0'])
        assert result.exit_code == 0
        assert 'Archived' in result.output

        archived = session.connection().execute(select(AuditArchive.__table__.c.id)).all()
        assert len(archived) > 0

    def test_recalculate_derived(self, app, session, tenant1, years_ago):
        with tenant_scope(session, tenant1.id):
            asset = TenantRepository(session, Asset).create(
                asset_code='AC-9', name='Boiler', purchase_date=years_ago(3),
                purchase_cost=Decimal('100000'), salvage_value=Decimal('10000'), depreciation_rate=Decimal('10'),
            )
            # Drift the stored value behind the ORM's back
            session.connection().execute(
                update(Asset.__table__)
                .where(Asset.__table__.c.id == asset.id)
                .values(current_value=Decimal('1.00'))
            )
        session.expire_all()

        result = app.test_cli_runner().invoke(args=['recalculate-derived'])
        assert result.exit_code == 0
        assert '1 rows updated' in result.output

        current = session.connection().execute(
            select(Asset.__table__.c.current_value).where(Asset.__table__.c.id == asset.id)
        ).scalar()
        assert current == Decimal('73000.00')

    def test_purge_deleted(self, app, session, tenant1, school1):
        with tenant_scope(session, tenant1.id):
            TenantRepository(session, School).soft_delete(school1.id)

        result = app.test_cli_runner().invoke(args=['purge-deleted', '--days', '0'])
        assert result.exit_code == 0
        assert 'schools: 1' in result.output
        assert 'Purged 1 rows.' in result.output
