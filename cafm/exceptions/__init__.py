"""Custom exceptions for the CAFM data layer."""

class CafmError(Exception):
    """Base exception for all application errors."""
    def __init__(self, message="An internal error occurred", status_code=500, payload=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload

    def to_dict(self):
        rv = dict(self.payload or ())
        rv['message'] = self.message
        rv['status'] = 'error'
        return rv

class BusinessLogicError(CafmError):
    """Exception raised for business logic violations."""
    def __init__(self, message, status_code=400, payload=None):
        super().__init__(message, status_code, payload)

class NotFoundError(CafmError):
    """Exception raised when a resource is not found."""
    def __init__(self, message="Resource not found", payload=None):
        super().__init__(message, 404, payload)

class UnauthorizedError(CafmError):
    """Raised when a caller lacks permission for an action."""
    def __init__(self, message="Unauthorized access"):
        super().__init__(message, 403)


class TenantViolation(NotFoundError):
    """
    A row outside the active tenant was addressed.

    Reported as "not found" so callers cannot probe for the existence
    of other tenants' data.
    """
    def __init__(self, message="Resource not found", payload=None):
        super().__init__(message, payload)

class InvalidTenant(CafmError):
    """The requested tenant does not exist or is not accessible."""
    def __init__(self, message="Tenant is not available"):
        super().__init__(message, 403)

class StaleWrite(CafmError):
    """Optimistic-lock version mismatch; reload and retry."""
    def __init__(self, message="Record was modified by another transaction", payload=None):
        super().__init__(message, 409, payload)

class PersistenceError(CafmError):
    """The unit of work could not be committed and was rolled back."""
    def __init__(self, message="The operation could not be saved"):
        super().__init__(message, 500)

class AuditWriteFailure(PersistenceError):
    """An audit or history side effect could not be staged."""

class RecalculationDegraded(CafmError):
    """A derived field could not be recomputed from its inputs."""
    def __init__(self, message):
        super().__init__(message, 500)

class ImmutableRecordError(BusinessLogicError):
    """Raised on attempts to modify append-only audit or history rows."""
    def __init__(self, message="Audit and history records are append-only"):
        super().__init__(message, status_code=409)

class QuotaExceededError(BusinessLogicError):
    """Raised when a tenant's resource quota is exhausted."""
    def __init__(self, resource, limit):
        message = f"Quota exceeded for {resource}: limit is {limit}"
        super().__init__(message, status_code=409, payload={'resource': resource, 'limit': limit})

class InsufficientStockError(BusinessLogicError):
    """Raised when an operation fails due to lack of stock."""
    def __init__(self, item_name, required, available):
        req_fmt = f"{int(required)}" if required % 1 == 0 else f"{required:.3f}".rstrip('0').rstrip('.')
        avail_fmt = f"{int(available)}" if available % 1 == 0 else f"{available:.3f}".rstrip('0').rstrip('.')
        message = f"Insufficient stock for {item_name}: {req_fmt} required, {avail_fmt} available"
        super().__init__(message, status_code=409)

class PrivilegedOperationRequired(UnauthorizedError):
    """Raised when an operation needs an explicit privileged scope."""
    def __init__(self, message="This operation requires a privileged scope"):
        super().__init__(message)
