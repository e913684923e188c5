import logging
import time
from collections import defaultdict, deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

from app.core.enums import AlertCategory, AlertSeverity
from app.metrics import alerts_total

logger = logging.getLogger(__name__)


@dataclass
class Alert:
    category: AlertCategory
    severity: AlertSeverity
    title: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


Notifier = Callable[[Alert], Awaitable[None]]


class ErrorAlertingService:
    """Logs operational alerts and forwards them to a notifier.

    Notifications (not log lines) are rate limited per category: at most
    ``max_per_window`` within ``window_seconds``. Info alerts are only logged.
    """

    def __init__(
        self,
        notifier: Optional[Notifier] = None,
        window_seconds: float = 15 * 60,
        max_per_window: int = 3,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._notifier = notifier
        self._window_seconds = window_seconds
        self._max_per_window = max_per_window
        self._clock = clock
        self._sent: dict[AlertCategory, deque[float]] = defaultdict(deque)

    def _allow(self, category: AlertCategory) -> bool:
        now = self._clock()
        sent = self._sent[category]
        while sent and now - sent[0] >= self._window_seconds:
            sent.popleft()
        if len(sent) >= self._max_per_window:
            return False
        sent.append(now)
        return True

    async def alert(
        self,
        category: AlertCategory,
        severity: AlertSeverity,
        title: str,
        message: str,
        details: Optional[dict[str, Any]] = None,
    ) -> bool:
        """Record an alert. Returns True when the notifier was invoked."""
        alert = Alert(
            category=category,
            severity=severity,
            title=title,
            message=message,
            details=details or {},
        )
        level = logging.ERROR if severity == AlertSeverity.CRITICAL else logging.WARNING
        logger.log(
            level,
            "[%s][%s] %s: %s",
            category.value.upper(),
            severity.value.upper(),
            title,
            message,
            extra={
                "alert_category": category.value,
                "alert_severity": severity.value,
                "alert_details": alert.details,
            },
        )
        alerts_total.labels(category=category.value, severity=severity.value).inc()

        if self._notifier is None or severity == AlertSeverity.INFO:
            return False

        if not self._allow(category):
            logger.info(
                "Alert notification rate limited category=%s title=%s",
                category.value,
                title,
            )
            return False

        try:
            await self._notifier(alert)
        except Exception as e:
            logger.error(
                "Alert notifier failed category=%s: %s",
                category.value,
                e,
                exc_info=True,
            )
            return False
        return True

    async def alert_payout_batch_error(
        self,
        batch_id: str,
        total_payouts: int,
        failed_count: int,
        total_amount: int,
        errors: list[str],
    ) -> AlertSeverity:
        safe_total = max(total_payouts, 1)
        severity = (
            AlertSeverity.CRITICAL
            if failed_count > safe_total * 0.5
            else AlertSeverity.WARNING
        )
        success_rate = (
            f"{(total_payouts - failed_count) / total_payouts * 100:.1f}%"
            if total_payouts > 0
            else "N/A"
        )

        await self.alert(
            category=AlertCategory.PAYOUT_ERROR,
            severity=severity,
            title="Affiliate Payout Batch Errors",
            message=(
                f"Payout batch {batch_id} completed with {failed_count} failures "
                f"out of {total_payouts} payouts. "
                f"Total amount affected: ${total_amount / 100:.2f}"
            ),
            details={
                "batch_id": batch_id,
                "total_payouts": total_payouts,
                "failed_count": failed_count,
                "success_rate": success_rate,
                "errors": errors[:10],
                "error_count": len(errors),
            },
        )
        return severity

    async def alert_ledger_drift(
        self, affiliate_id: str, source: str, shortfall_cents: int
    ) -> None:
        await self.alert(
            category=AlertCategory.LEDGER_DRIFT,
            severity=AlertSeverity.WARNING,
            title="Affiliate Pending Balance Drift",
            message=(
                f"Pending balance of affiliate {affiliate_id} was {shortfall_cents} "
                f"cents short during {source}; floored at zero"
            ),
            details={
                "affiliate_id": affiliate_id,
                "source": source,
                "shortfall_cents": shortfall_cents,
            },
        )

    async def alert_system_error(
        self, component: str, operation: str, error_message: str
    ) -> None:
        await self.alert(
            category=AlertCategory.SYSTEM_ERROR,
            severity=AlertSeverity.CRITICAL,
            title=f"System Error: {component}",
            message=f"{operation} failed: {error_message}",
            details={"component": component, "operation": operation},
        )
