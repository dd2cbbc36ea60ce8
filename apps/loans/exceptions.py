# loans/exceptions.py

"""Exception hierarchy for the loan engine.

DomainError subclasses mean "your request was invalid for the current
state": retrying cannot change the outcome. TransientStoreError subclasses
mean "try again": the caller should retry with backoff.
"""


class LoanEngineError(Exception):
    """Base exception for all loan engine errors."""

    code = 'loan_engine_error'
    http_status = 400
    retryable = False
    default_message = 'Loan engine error'

    def __init__(self, message=None):
        super().__init__(message or self.default_message)


# =============================================================================
# DOMAIN ERRORS
# =============================================================================

class DomainError(LoanEngineError):
    """Validation or state-conflict error. Not retryable."""


class InvalidDateRange(DomainError):
    """Raised when a due date is not strictly after the start date."""

    code = 'invalid_date_range'
    default_message = 'Due date must be after start date'


class InvalidAmount(DomainError):
    """Raised when a monetary amount is outside its allowed range."""

    code = 'invalid_amount'
    default_message = 'Amount must be greater than zero'


class AlreadySigned(DomainError):
    """Raised when a party signs a contract it has already signed."""

    code = 'already_signed'
    http_status = 409
    default_message = 'Contract already signed by this party'


class OutOfOrderSignature(DomainError):
    """Raised when a signature is attempted before its prerequisite."""

    code = 'out_of_order_signature'
    http_status = 409
    default_message = 'The client must sign before the company'


class CryptoUnavailable(DomainError):
    """Raised when no signing certificate is configured."""

    code = 'crypto_unavailable'
    http_status = 422
    default_message = 'No signing certificate configured'


class AlreadyFinalized(DomainError):
    """Raised when a payment has already been validated or rejected."""

    code = 'already_finalized'
    http_status = 409
    default_message = 'Payment is no longer pending'


# =============================================================================
# TRANSIENT STORE ERRORS
# =============================================================================

class TransientStoreError(LoanEngineError):
    """Backing store failure. Safe to retry."""

    code = 'transient_store_error'
    http_status = 503
    retryable = True
    default_message = 'Temporary storage failure, try again'


class ConcurrentUpdate(TransientStoreError):
    """Raised when an optimistic version check loses a race."""

    code = 'concurrent_update'
    http_status = 409
    default_message = 'Record was modified concurrently, try again'


class StoreUnavailable(TransientStoreError):
    """Raised when the database connection fails."""

    code = 'store_unavailable'
    default_message = 'Database unavailable, try again'
