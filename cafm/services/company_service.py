"""Company (tenant) lifecycle and quota service."""
import logging

from sqlalchemy import func, select

from cafm.database import translate_errors
from cafm.exceptions import BusinessLogicError, PrivilegedOperationRequired, QuotaExceededError, TenantViolation
from cafm.models import Company, CompanyStatus, School, User, UserType
from cafm.services.tenant_context import default_tenant_id, get_active_tenant, is_privileged
from cafm.utils.serialization import as_uuid

logger = logging.getLogger(__name__)

# resource -> (quota column, model, extra criteria)
QUOTAS = {
    'users': ('max_users', User, ()),
    'schools': ('max_schools', School, ()),
    'supervisors': ('max_supervisors', User, (User.user_type == UserType.SUPERVISOR,)),
    'technicians': ('max_technicians', User, (User.user_type == UserType.TECHNICIAN,)),
}

# Allowed status transitions
STATUS_TRANSITIONS = {
    CompanyStatus.PENDING_SETUP: {CompanyStatus.TRIAL, CompanyStatus.ACTIVE, CompanyStatus.INACTIVE},
    CompanyStatus.TRIAL: {CompanyStatus.ACTIVE, CompanyStatus.SUSPENDED, CompanyStatus.INACTIVE},
    CompanyStatus.ACTIVE: {CompanyStatus.SUSPENDED, CompanyStatus.INACTIVE},
    CompanyStatus.SUSPENDED: {CompanyStatus.ACTIVE, CompanyStatus.INACTIVE},
    CompanyStatus.INACTIVE: {CompanyStatus.ACTIVE},
}


def _require_privileged(session, action):
    if not is_privileged(session):
        raise PrivilegedOperationRequired(f"{action} requires a privileged scope")


def get_company(session, company_id):
    """Company by id (including soft-deleted), or None."""
    return session.execute(
        select(Company)
        .where(Company.id == as_uuid(company_id))
        .execution_options(include_deleted=True)
    ).scalar_one_or_none()


def create_company(session, name, **values):
    """
    Onboard a new company.

    Args:
        session: Database session (privileged scope)
        name: Company name
        **values: Other Company columns (status, quotas, domain...)

    Returns:
        The new Company

    Raises:
        PrivilegedOperationRequired: Outside a privileged scope
        BusinessLogicError: If a quota is not positive
    """
    _require_privileged(session, "Creating a company")

    for column in ('max_users', 'max_schools', 'max_supervisors', 'max_technicians', 'max_storage_gb'):
        if column in values and (values[column] is None or values[column] <= 0):
            raise BusinessLogicError(f"{column} must be a positive integer")

    company = Company(name=name, **values)
    with translate_errors(session):
        session.add(company)
        session.flush()
    logger.info(f"[TENANT] Company created: {company.name} ({company.id}, status={company.status})")
    return company


def ensure_system_company(session):
    """Create the bootstrap company if it does not exist yet."""
    system_id = default_tenant_id(session)
    company = get_company(session, system_id)
    if company is None:
        company = create_company(
            session,
            name='System',
            id=system_id,
            display_name='System Tenant',
            status=CompanyStatus.ACTIVE,
        )
    return company


def change_status(session, company_id, status):
    """
    Move a company to a new lifecycle status.

    Raises:
        PrivilegedOperationRequired: Outside a privileged scope
        TenantViolation: Unknown company
        BusinessLogicError: Transition not allowed
    """
    _require_privileged(session, "Changing company status")
    status = CompanyStatus(status) if not isinstance(status, CompanyStatus) else status

    company = get_company(session, company_id)
    if company is None:
        raise TenantViolation("companies not found")
    if status == company.status:
        return company
    if status not in STATUS_TRANSITIONS.get(company.status, set()):
        raise BusinessLogicError(f"Cannot change company status from {company.status.value} to {status.value}")

    previous = company.status
    company.status = status
    with translate_errors(session):
        session.flush()
    logger.info(f"[TENANT] Company {company.id} status {previous.value} -> {status.value}")
    return company


def usage(session, company_id, resource):
    """Live (not soft-deleted) rows counted against a quota."""
    _, model, criteria = QUOTAS[resource]
    return session.execute(
        select(func.count()).select_from(model)
        .where(model.company_id == company_id, model.deleted_at.is_(None), *criteria)
    ).scalar()


def check_quota(session, company_id, resource):
    """
    Ensure one more row of ``resource`` fits in the company's quota.

    Raises:
        QuotaExceededError: If the quota is already used up
    """
    column, _, _ = QUOTAS[resource]
    company = get_company(session, company_id)
    if company is None:
        raise TenantViolation("companies not found")
    limit = getattr(company, column)
    used = usage(session, company.id, resource)
    if used >= limit:
        logger.warning(f"[TENANT] Quota {resource} exhausted for {company.id}: {used}/{limit}")
        raise QuotaExceededError(resource, limit)
    return limit - used


def enforce_quota_for(session, model, values):
    """Quota checks applying to creating a ``model`` row with ``values``."""
    company_id = as_uuid(values.get('company_id')) or get_active_tenant(session)
    if model is School:
        check_quota(session, company_id, 'schools')
    elif model is User:
        check_quota(session, company_id, 'users')
        user_type = values.get('user_type')
        if user_type in (UserType.SUPERVISOR, UserType.SUPERVISOR.value):
            check_quota(session, company_id, 'supervisors')
        elif user_type in (UserType.TECHNICIAN, UserType.TECHNICIAN.value):
            check_quota(session, company_id, 'technicians')
