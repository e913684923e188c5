from app.services.alerting import ErrorAlertingService
from app.services.balance_calculator import BalanceCalculator
from app.services.commission_state_machine import CommissionStateMachine
from app.services.job_runner import JobDefinition, JobRunner
from app.services.manual_payouts import ManualPayoutRecorder
from app.services.payout_eligibility import PayoutEligibilityEvaluator
from app.services.payout_orchestrator import PayoutBatchOrchestrator
from app.services.settings_provider import AffiliateSettingsProvider
from app.services.transfer_gateway import (
    StripeTransferGateway,
    TransferGateway,
    TransferResult,
)

__all__ = [
    "AffiliateSettingsProvider",
    "BalanceCalculator",
    "CommissionStateMachine",
    "ErrorAlertingService",
    "JobDefinition",
    "JobRunner",
    "ManualPayoutRecorder",
    "PayoutBatchOrchestrator",
    "PayoutEligibilityEvaluator",
    "StripeTransferGateway",
    "TransferGateway",
    "TransferResult",
]
