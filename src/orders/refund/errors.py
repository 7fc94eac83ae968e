"""Typed refund rejections.

Each error carries a stable ``code`` that callers (and the HTTP layer) key
on, plus the figures needed to explain the rejection.
"""


class RefundError(Exception):
    code = "REFUND_ERROR"

    def __init__(self, message: str, order_id) -> None:
        super().__init__(message)
        self.order_id = str(order_id)

    def to_dict(self) -> dict:
        return {"error": str(self), "code": self.code, "order_id": self.order_id}


class FullyRefundedError(RefundError):
    code = "ALREADY_FULLY_REFUNDED"

    def __init__(self, order_id, refunded_cents: int, ceiling_cents: int) -> None:
        super().__init__("Order is already fully refunded", order_id)
        self.refunded_cents = refunded_cents
        self.ceiling_cents = ceiling_cents

    def to_dict(self) -> dict:
        return {
            **super().to_dict(),
            "refunded_cents": self.refunded_cents,
            "ceiling_cents": self.ceiling_cents,
        }


class ExceedsRefundableError(RefundError):
    code = "EXCEEDS_REMAINING"

    def __init__(
        self,
        order_id,
        requested_cents: int,
        remaining_cents: int,
        refunded_cents: int = 0,
        ceiling_cents: int = 0,
    ) -> None:
        super().__init__(
            f"Refund of {requested_cents} cents exceeds the remaining refundable {remaining_cents} cents",
            order_id,
        )
        self.requested_cents = requested_cents
        self.remaining_cents = remaining_cents
        self.refunded_cents = refunded_cents
        self.ceiling_cents = ceiling_cents

    def to_dict(self) -> dict:
        return {
            **super().to_dict(),
            "requested_cents": self.requested_cents,
            "remaining_cents": self.remaining_cents,
            "refunded_cents": self.refunded_cents,
            "ceiling_cents": self.ceiling_cents,
        }


class PaymentProcessorError(RefundError):
    code = "PROCESSOR_DECLINED"

    def __init__(self, order_id, reason: str | None) -> None:
        super().__init__(f"Payment processor declined the refund: {reason or 'unknown reason'}", order_id)
        self.reason = reason


class RefundInProgressError(RefundError):
    """Another refund for the same order held the lock for too long."""

    code = "REFUND_IN_PROGRESS"

    def __init__(self, order_id) -> None:
        super().__init__("Another refund for this order is in progress", order_id)
