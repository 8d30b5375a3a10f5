import pytest
from datetime import date

from flask import g, jsonify

from cafm import create_app
from cafm import database
from cafm.middleware import require_tenant
from cafm.models import CompanyStatus, School, User, UserType
from cafm.services import company_service
from cafm.services.repository import TenantRepository
from cafm.services.tenant_context import clear_active_tenant, privileged_scope, tenant_scope


def _years_ago(years, today=None):
    today = today or date.today()
    try:
        return today.replace(year=today.year - years)
    except ValueError:
        return today.replace(year=today.year - years, day=28)


@pytest.fixture
def years_ago():
    """Same calendar day N years back (Feb 29 falls back to Feb 28)."""
    return _years_ago


@pytest.fixture(scope='session')
def app():
    """Create application instance for testing."""
    app = create_app('config.TestConfig')
    app.config['TESTING'] = True

    @app.route('/_echo/tenant')
    @require_tenant
    def tenant_echo():
        """Echo the request's tenant context."""
        return jsonify({
            'tenant_id': str(g.tenant_id),
            'user_id': g.user_id,
            'request_id': g.request_id,
        })

    return app


@pytest.fixture(scope='function')
def session(app):
    """Fresh schema plus the system company for every test."""
    database.create_all()
    session = database.get_session()
    with privileged_scope(session, 'test bootstrap'):
        company_service.ensure_system_company(session)
    yield session
    session.rollback()
    clear_active_tenant(session)
    database.db_session.remove()
    database.Base.metadata.drop_all(bind=database.engine)


@pytest.fixture(scope='function')
def client(app, session):
    """Create test client."""
    return app.test_client()


def _create_company(session, name, **values):
    values.setdefault('status', CompanyStatus.ACTIVE)
    with privileged_scope(session, f'test onboarding of {name}'):
        return company_service.create_company(session, name=name, **values)


@pytest.fixture(scope='function')
def tenant1(session):
    """Create first test tenant."""
    return _create_company(session, 'North District Schools', subdomain='north')


@pytest.fixture(scope='function')
def tenant2(session):
    """Create second test tenant for isolation tests."""
    return _create_company(session, 'South District Schools', subdomain='south')


@pytest.fixture(scope='function')
def user1(session, tenant1):
    """Admin user of tenant1."""
    with tenant_scope(session, tenant1.id):
        return TenantRepository(session, User).create(
            email='nora@north.test', first_name='Nora', last_name='Haddad', user_type=UserType.ADMIN,
        )


@pytest.fixture(scope='function')
def user2(session, tenant2):
    """Admin user of tenant2."""
    with tenant_scope(session, tenant2.id):
        return TenantRepository(session, User).create(
            email='samir@south.test', first_name='Samir', user_type=UserType.ADMIN,
        )


@pytest.fixture(scope='function')
def school1(session, tenant1, user1):
    """School of tenant1."""
    with tenant_scope(session, tenant1.id, user_id=user1.id):
        return TenantRepository(session, School).create(code='N-001', name='North Primary', city='Riyadh')


@pytest.fixture(scope='function')
def school2(session, tenant2, user2):
    """School of tenant2."""
    with tenant_scope(session, tenant2.id, user_id=user2.id):
        return TenantRepository(session, School).create(code='S-001', name='South Primary', city='Jeddah')
