from typing import Any, Optional


class BaseAPIException(Exception):
    """
    Base exception for all API errors.

    Provides consistent structure with status_code, error_code, and details.
    """

    status_code: int = 500
    error_code: str = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        if error_code:
            self.error_code = error_code
        self.details = details or {}


class ValidationException(BaseAPIException):
    """Invalid input data (HTTP 422)."""

    status_code = 422
    error_code = "VALIDATION_ERROR"


class BusinessException(BaseAPIException):
    """Business rule violation (HTTP 409)."""

    status_code = 409
    error_code = "BUSINESS_RULE_VIOLATION"


class NotFoundException(BaseAPIException):
    """Resource not found (HTTP 404)."""

    status_code = 404
    error_code = "RESOURCE_NOT_FOUND"


class SystemException(BaseAPIException):
    """Internal system error (HTTP 500)."""

    status_code = 500
    error_code = "SYSTEM_ERROR"


# Domain-specific exceptions
class InvalidStateTransitionException(BusinessException):
    """Referral status change not permitted from its current status."""

    error_code = "INVALID_STATE_TRANSITION"

    def __init__(self, referral_id: str, from_status: str, to_status: str):
        super().__init__(
            message=f"Cannot move commission from {from_status} to {to_status}",
            details={
                "referral_id": referral_id,
                "from_status": from_status,
                "to_status": to_status,
            },
        )
        self.from_status = from_status
        self.to_status = to_status


class CommissionNotFoundException(NotFoundException):
    """Referral ID not found in database."""

    error_code = "COMMISSION_NOT_FOUND"

    def __init__(self, referral_id: str):
        super().__init__(
            message=f"Commission not found: {referral_id}",
            details={"referral_id": referral_id},
        )


class AffiliateNotFoundException(NotFoundException):
    """Affiliate ID or code not found in database."""

    error_code = "AFFILIATE_NOT_FOUND"

    def __init__(self, affiliate_ref: str):
        super().__init__(
            message=f"Affiliate not found: {affiliate_ref}",
            details={"affiliate": affiliate_ref},
        )


class PayoutNotFoundException(NotFoundException):
    """Payout ID not found in database."""

    error_code = "PAYOUT_NOT_FOUND"

    def __init__(self, payout_id: str):
        super().__init__(
            message=f"Payout not found: {payout_id}",
            details={"payout_id": payout_id},
        )


class InsufficientBalanceException(BusinessException):
    """Payout amount exceeds approved unpaid balance."""

    error_code = "PAYOUT_INSUFFICIENT_BALANCE"

    def __init__(self, affiliate_id: str, available: int, required: int):
        super().__init__(
            message="Insufficient approved balance for payout",
            details={
                "affiliate_id": affiliate_id,
                "available_cents": available,
                "required_cents": required,
            },
        )


class PayoutMetadataException(SystemException):
    """Pending payout record carries metadata that cannot be trusted."""

    error_code = "PAYOUT_METADATA_INVALID"

    def __init__(self, payout_id: str, reason: str):
        super().__init__(
            message="Pending payout has invalid metadata - manual intervention required",
            details={"payout_id": payout_id, "reason": reason},
        )


class InvalidPayoutStateException(SystemException):
    """Payout left pending state through a path other than this batch."""

    error_code = "PAYOUT_INVALID_STATE"

    def __init__(self, payout_id: str, status: str):
        super().__init__(
            message=f"Payout {payout_id} is {status} - manual intervention required",
            details={"payout_id": payout_id, "status": status},
        )


class TransferGatewayException(SystemException):
    """External transfer API rejected or failed the transfer."""

    status_code = 502
    error_code = "TRANSFER_FAILED"

    def __init__(self, message: str, idempotency_key: Optional[str] = None):
        super().__init__(
            message=message,
            details={"idempotency_key": idempotency_key} if idempotency_key else {},
        )


class DuplicateJobRunException(BusinessException):
    """Job already ran (or is running) for the given run key."""

    error_code = "JOB_DUPLICATE_RUN"

    def __init__(self, run_key: str):
        super().__init__(
            message=f"Job already ran for key: {run_key}",
            details={"run_key": run_key},
        )


class JobAlreadyRunningException(BusinessException):
    """Another run of the same job has not finished yet."""

    error_code = "JOB_ALREADY_RUNNING"

    def __init__(self, job_name: str, run_key: str):
        super().__init__(
            message=f"Job {job_name} is already running",
            details={"job_name": job_name, "run_key": run_key},
        )


class JobNotFoundException(NotFoundException):
    """Job name not registered with the runner."""

    error_code = "JOB_NOT_FOUND"

    def __init__(self, job_name: str):
        super().__init__(
            message=f"Job {job_name} not found",
            details={"job_name": job_name},
        )


class DuplicateAffiliateCodeException(BusinessException):
    """Affiliate code already taken by another affiliate."""

    error_code = "AFFILIATE_CODE_TAKEN"

    def __init__(self):
        super().__init__(message="Affiliate code already exists")
