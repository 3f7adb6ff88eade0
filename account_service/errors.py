"""
Error Taxonomy Module

Typed, non-retryable business errors raised by the account core, plus the
retryable collaborator failure. Every error carries the metadata the HTTP
boundary needs (status code, machine-readable code, details) but does not
depend on the web framework.
"""

from typing import Any, Dict, List, Optional


class AccountServiceError(Exception):
    """Base class for all account service errors"""

    error_code = "ACCOUNT_SERVICE_ERROR"
    status_code = 500
    retryable = False

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = {k: v for k, v in (details or {}).items() if v is not None}

    def __str__(self):
        return f"[{self.error_code}] {self.message}"

    def __repr__(self):
        return f"{self.__class__.__name__}(message={self.message!r}, error_code={self.error_code!r})"


class Unauthenticated(AccountServiceError):
    """Missing, malformed, expired or forged credential"""
    error_code = "UNAUTHENTICATED"
    status_code = 401


class Unauthorized(AccountServiceError):
    """Authenticated but not allowed to touch this resource"""
    error_code = "UNAUTHORIZED_ACCESS"
    status_code = 403


class UnauthorizedStatusChange(Unauthorized):
    """Status change outside what the caller's role may request"""
    error_code = "UNAUTHORIZED_STATUS_CHANGE"

    def __init__(self, current_status: str, requested_status: str):
        super().__init__(
            f"Customers cannot change status from {current_status} to {requested_status}",
            {"currentStatus": current_status, "requestedStatus": requested_status}
        )
        self.current_status = current_status
        self.requested_status = requested_status


class AccountNotFound(AccountServiceError):
    error_code = "ACCOUNT_NOT_FOUND"
    status_code = 404

    def __init__(self, message: str, account_id: Optional[int] = None,
                 account_number: Optional[str] = None):
        super().__init__(message, {"accountId": account_id, "accountNumber": account_number})
        self.account_id = account_id
        self.account_number = account_number


class CustomerNotFound(AccountServiceError):
    error_code = "CUSTOMER_NOT_FOUND"
    status_code = 404

    def __init__(self, customer_id: Any):
        super().__init__(f"Customer not found with ID: {customer_id}", {"customerId": customer_id})
        self.customer_id = customer_id


class DuplicateAccount(AccountServiceError):
    error_code = "DUPLICATE_ACCOUNT"
    status_code = 409

    def __init__(self, customer_id: int, account_type: str):
        super().__init__(
            f"Customer {customer_id} already has a {account_type} account",
            {"customerId": customer_id, "accountType": account_type}
        )
        self.customer_id = customer_id
        self.account_type = account_type


class InvalidBalance(AccountServiceError):
    error_code = "INVALID_BALANCE"
    status_code = 400

    def __init__(self, message: str, requested_balance: Any = None,
                 required_minimum: Any = None):
        super().__init__(message, {
            "requestedBalance": str(requested_balance) if requested_balance is not None else None,
            "requiredMinimum": str(required_minimum) if required_minimum is not None else None,
        })
        self.requested_balance = requested_balance
        self.required_minimum = required_minimum


class InsufficientBalance(AccountServiceError):
    error_code = "INSUFFICIENT_BALANCE"
    status_code = 422

    def __init__(self, account_number: str, current_balance: Any,
                 requested_amount: Any, minimum_balance: Any):
        super().__init__(
            f"Insufficient balance. Available: {current_balance}, "
            f"Required: {requested_amount}, Minimum: {minimum_balance}",
            {
                "accountNumber": account_number,
                "currentBalance": str(current_balance),
                "requestedAmount": str(requested_amount),
                "minimumBalance": str(minimum_balance),
            }
        )
        self.current_balance = current_balance
        self.requested_amount = requested_amount
        self.minimum_balance = minimum_balance


class InvalidStatusTransition(AccountServiceError):
    error_code = "INVALID_STATUS_TRANSITION"
    status_code = 400

    def __init__(self, current_status: str, requested_status: str):
        super().__init__(
            f"Invalid status transition from {current_status} to {requested_status}",
            {"currentStatus": current_status, "requestedStatus": requested_status}
        )
        self.current_status = current_status
        self.requested_status = requested_status


class InvalidAccountOperation(AccountServiceError):
    """Operation not permitted in the account's current state"""
    error_code = "INVALID_ACCOUNT_OPERATION"
    status_code = 409


class AccountNumberExhausted(AccountServiceError):
    error_code = "ACCOUNT_GENERATION_FAILED"
    status_code = 503

    def __init__(self, account_type: str, attempts: int):
        super().__init__(
            f"Failed to generate unique {account_type} account number after {attempts} attempts",
            {"accountType": account_type, "attempts": attempts}
        )
        self.attempts = attempts


class ValidationFailed(AccountServiceError):
    error_code = "VALIDATION_FAILED"
    status_code = 400


class KycNotVerified(AccountServiceError):
    error_code = "KYC_NOT_VERIFIED"
    status_code = 409

    def __init__(self, customer_id: int, kyc_status: Optional[str] = None):
        super().__init__(
            f"KYC not verified for customer: {customer_id}",
            {"customerId": customer_id, "kycStatus": kyc_status}
        )
        self.customer_id = customer_id


class ServiceUnavailable(AccountServiceError):
    """A collaborator timed out or failed; the caller may retry"""
    error_code = "SERVICE_UNAVAILABLE"
    status_code = 503
    retryable = True

    def __init__(self, service: str, reason: str):
        super().__init__(f"{service} unavailable: {reason}", {"service": service})
        self.service = service


class ProvisioningIncomplete(AccountServiceError):
    """Some account types could not be provisioned"""
    error_code = "PROVISIONING_INCOMPLETE"

    def __init__(self, customer_id: int, failures: Dict[str, Exception], accounts: List[Any]):
        failed = ", ".join(sorted(failures))
        super().__init__(
            f"Provisioning incomplete for customer {customer_id}: failed {failed}",
            {
                "customerId": customer_id,
                "failures": {t: str(e) for t, e in failures.items()},
                "provisioned": [a.account_number for a in accounts],
            }
        )
        self.customer_id = customer_id
        self.failures = failures
        self.accounts = accounts
        first = next(iter(failures.values()))
        if isinstance(first, AccountServiceError):
            self.status_code = first.status_code
            self.retryable = first.retryable
