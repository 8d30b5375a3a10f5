"""
Unit tests for the exception hierarchy.
"""

from decimal import Decimal

from cafm.exceptions import (
    AuditWriteFailure, BusinessLogicError, CafmError, ImmutableRecordError, InsufficientStockError,
    InvalidTenant, NotFoundError, PersistenceError, PrivilegedOperationRequired, QuotaExceededError,
    StaleWrite, TenantViolation, UnauthorizedError,
)


class TestExceptionHierarchy:
    """Status codes and base classes."""

    def test_tenant_violation_reads_as_not_found(self):
        error = TenantViolation("schools not found")
        assert isinstance(error, NotFoundError)
        assert error.status_code == 404

    def test_status_codes(self):
        assert InvalidTenant().status_code == 403
        assert StaleWrite().status_code == 409
        assert PersistenceError().status_code == 500
        assert PrivilegedOperationRequired().status_code == 403

    def test_conflicts_keep_business_rule_base(self):
        assert BusinessLogicError("bad input").status_code == 400
        assert ImmutableRecordError().status_code == 409
        assert QuotaExceededError('schools', 5).status_code == 409

    def test_subclassing(self):
        assert issubclass(AuditWriteFailure, PersistenceError)
        assert issubclass(ImmutableRecordError, BusinessLogicError)
        assert issubclass(QuotaExceededError, BusinessLogicError)
        assert issubclass(PrivilegedOperationRequired, UnauthorizedError)
        assert issubclass(PersistenceError, CafmError)

    def test_to_dict_merges_payload(self):
        error = QuotaExceededError('users', 10)
        assert error.to_dict() == {
            'resource': 'users',
            'limit': 10,
            'message': 'Quota exceeded for users: limit is 10',
            'status': 'error',
        }

    def test_insufficient_stock_message(self):
        error = InsufficientStockError('Air filter', Decimal('5'), Decimal('2.5'))
        assert error.message == 'Insufficient stock for Air filter: 5 required, 2.5 available'
        assert error.status_code == 409
