"""Payment processor port.

The processor is the system of record for money movement: it executes
refunds, honours idempotency keys, and reports refund status changes by
webhook. Amounts cross this boundary as integer cents.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class RefundResult:
    """Result of a refund attempt."""

    success: bool
    gateway_refund_id: str | None = None
    gateway_status: str | None = None  # pending, succeeded, failed, canceled
    amount_cents: int = 0
    failure_reason: str | None = None


class PaymentGateway(ABC):
    @abstractmethod
    def create_refund(
        self,
        amount_cents: int,
        reason: str,
        idempotency_key: str,
        payment_intent_id: str | None = None,
        charge_id: str | None = None,
        connected_account_id: str | None = None,
    ) -> RefundResult:
        """Refund part of a captured payment.

        One of ``payment_intent_id``/``charge_id`` identifies the payment.
        Retrying with the same ``idempotency_key`` must return the original
        refund instead of moving money twice.
        """
        ...

    @abstractmethod
    def verify_webhook_signature(self, payload: str, signature: str) -> bool:
        ...
