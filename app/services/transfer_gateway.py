import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Optional, Protocol

import stripe

from app.exceptions import TransferGatewayException

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransferResult:
    id: str


class TransferGateway(Protocol):
    async def create_transfer(
        self,
        amount: int,
        currency: str,
        destination: str,
        metadata: dict[str, str],
        idempotency_key: str,
    ) -> TransferResult: ...


class StripeTransferGateway:
    """Moves money to connected accounts through Stripe Connect transfers.

    The idempotency key goes to Stripe unchanged, so a retried call for the same
    payout resolves to the transfer created the first time.
    """

    def __init__(self, api_key: Optional[str]) -> None:
        self._api_key = api_key

    async def create_transfer(
        self,
        amount: int,
        currency: str,
        destination: str,
        metadata: dict[str, str],
        idempotency_key: str,
    ) -> TransferResult:
        if not self._api_key:
            raise TransferGatewayException(
                "Stripe is not configured", idempotency_key=idempotency_key
            )

        params: dict[str, Any] = {
            "amount": amount,
            "currency": currency,
            "destination": destination,
            "metadata": metadata,
            "idempotency_key": idempotency_key,
            "api_key": self._api_key,
        }
        try:
            transfer = await asyncio.to_thread(stripe.Transfer.create, **params)
        except stripe.StripeError as e:
            message = e.user_message or str(e) or "Stripe transfer failed"
            logger.warning(
                "Stripe transfer failed destination=%s amount=%s key=%s: %s",
                destination,
                amount,
                idempotency_key,
                message,
                extra={
                    "destination": destination,
                    "amount_cents": amount,
                    "idempotency_key": idempotency_key,
                },
            )
            raise TransferGatewayException(
                message, idempotency_key=idempotency_key
            ) from e

        logger.info(
            "Stripe transfer created transfer_id=%s destination=%s amount=%s",
            transfer.id,
            destination,
            amount,
            extra={
                "transfer_id": transfer.id,
                "destination": destination,
                "amount_cents": amount,
                "idempotency_key": idempotency_key,
            },
        )
        return TransferResult(id=transfer.id)
