"""Configurable fake payment processor for development and testing.

Refunds can be configured to succeed, stay pending, or be declined. Like a
real processor it replays the original result for a repeated idempotency
key, so retry behaviour can be exercised without network calls.
"""

from uuid import uuid4

from orders.gateway.port import PaymentGateway, RefundResult


class FakeGateway(PaymentGateway):
    """Configurable fake payment processor."""

    def __init__(self) -> None:
        self.should_succeed: bool = True
        self.failure_reason: str = "Refund declined"
        self.refund_status: str = "succeeded"
        self.calls: list[dict] = []
        self._results_by_key: dict[str, RefundResult] = {}

    def configure(
        self,
        should_succeed: bool,
        failure_reason: str = "Refund declined",
        refund_status: str = "succeeded",
    ) -> None:
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason
        self.refund_status = refund_status

    def create_refund(
        self,
        amount_cents: int,
        reason: str,
        idempotency_key: str,
        payment_intent_id: str | None = None,
        charge_id: str | None = None,
        connected_account_id: str | None = None,
    ) -> RefundResult:
        self.calls.append(
            {
                "method": "create_refund",
                "amount_cents": amount_cents,
                "reason": reason,
                "idempotency_key": idempotency_key,
                "payment_intent_id": payment_intent_id,
                "charge_id": charge_id,
                "connected_account_id": connected_account_id,
            }
        )

        if idempotency_key in self._results_by_key:
            return self._results_by_key[idempotency_key]

        if not (payment_intent_id or charge_id):
            return RefundResult(success=False, failure_reason="No payment reference")

        if self.should_succeed:
            result = RefundResult(
                success=True,
                gateway_refund_id=f"fake_re_{uuid4().hex[:12]}",
                gateway_status=self.refund_status,
                amount_cents=amount_cents,
            )
            self._results_by_key[idempotency_key] = result
            return result
        return RefundResult(
            success=False,
            gateway_status="failed",
            failure_reason=self.failure_reason,
        )

    def verify_webhook_signature(self, payload: str, signature: str) -> bool:  # noqa: ARG002
        return signature == "test-signature"
