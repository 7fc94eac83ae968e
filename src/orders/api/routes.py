"""FastAPI routes for the Orders domain: orders, shipments and refunds."""

import json

from fastapi import APIRouter, FastAPI, Header, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from protean.integrations.fastapi import register_exception_handlers
from pydantic import ValidationError as PydanticValidationError
from protean.utils.globals import current_domain

from orders.api.schemas import (
    ConfigureGatewayRequest,
    GatewayConfigResponse,
    IssueRefundRequest,
    MarkDeliveredRequest,
    MarkTrackingNotifiedRequest,
    OrderAmountsResponse,
    OrderIdResponse,
    PlaceOrderRequest,
    ProcessRefundWebhookRequest,
    RecomputeRefundStateRequest,
    RecordProcessorFeesRequest,
    RecordShipmentRequest,
    RefundableRemainderResponse,
    RefundResponse,
    StatusResponse,
    WebhookResponse,
)
from orders.config import is_production
from orders.gateway import get_gateway
from orders.gateway.fake_adapter import FakeGateway
from orders.money import usd_to_cents
from orders.order.fees import RecordProcessorFees
from orders.order.order import Order
from orders.order.placement import PlaceOrder
from orders.order.tracking import MarkDelivered, MarkTrackingNotified, RecordShipment
from orders.refund.engine import RefundOptions, build_idempotency_key, compute_refundable_remainder
from orders.refund.errors import PaymentProcessorError, RefundError
from orders.refund.issuance import issue_refund
from orders.refund.recompute import reconcile_refund_state
from orders.refund.webhook import ProcessRefundWebhook, RecomputeRefundState


def _adjustment_cents(cents: int | None, usd: str | None) -> int:
    if cents is not None:
        return cents
    if usd:
        return usd_to_cents(usd)
    return 0


# ---------------------------------------------------------------------------
# Order Router
# ---------------------------------------------------------------------------
order_router = APIRouter(prefix="/orders", tags=["orders"])


@order_router.post("", status_code=201, response_model=OrderIdResponse)
async def place_order(body: PlaceOrderRequest) -> OrderIdResponse:
    """Record a paid checkout as an order."""
    command = PlaceOrder(
        order_number=body.order_number,
        tenant_id=body.tenant_id,
        items=json.dumps([item.model_dump(mode="json") for item in body.items]),
        total_cents=body.total_cents,
        currency=body.currency,
        buyer_id=body.buyer_id,
        buyer_email=body.buyer_email,
        checkout_session_id=body.checkout_session_id,
        payment_intent_id=body.payment_intent_id,
        charge_id=body.charge_id,
        connected_account_id=body.connected_account_id,
        shipping_total_cents=body.shipping_total_cents,
        discount_total_cents=body.discount_total_cents,
        stripe_fee_cents=body.stripe_fee_cents,
        platform_fee_cents=body.platform_fee_cents,
        shipment=json.dumps(body.shipment.model_dump()) if body.shipment else None,
    )
    order_id = current_domain.process(command, asynchronous=False)
    return OrderIdResponse(order_id=order_id)


@order_router.get("/{order_id}/amounts", response_model=OrderAmountsResponse)
async def get_order_amounts(order_id: str) -> OrderAmountsResponse:
    order = current_domain.repository_for(Order).get(order_id)
    return OrderAmountsResponse(order_id=order_id, **order.compute_amounts().to_dict())


@order_router.put("/{order_id}/fees", response_model=StatusResponse)
async def record_processor_fees(order_id: str, body: RecordProcessorFeesRequest) -> StatusResponse:
    command = RecordProcessorFees(
        order_id=order_id,
        stripe_fee_cents=body.stripe_fee_cents,
        platform_fee_cents=body.platform_fee_cents,
    )
    current_domain.process(command, asynchronous=False)
    return StatusResponse(status="fees_recorded")


@order_router.post("/{order_id}/shipments", response_model=StatusResponse)
async def record_shipment(order_id: str, body: RecordShipmentRequest) -> StatusResponse:
    command = RecordShipment(
        order_id=order_id,
        carrier=body.carrier,
        tracking_number=body.tracking_number,
        shipped_at=body.shipped_at,
    )
    current_domain.process(command, asynchronous=False)
    return StatusResponse(status="shipment_recorded")


@order_router.put("/{order_id}/tracking-notified", response_model=StatusResponse)
async def mark_tracking_notified(order_id: str, body: MarkTrackingNotifiedRequest) -> StatusResponse:
    command = MarkTrackingNotified(order_id=order_id, message_key=body.message_key)
    current_domain.process(command, asynchronous=False)
    return StatusResponse(status="tracking_notified")


@order_router.put("/{order_id}/deliver", response_model=StatusResponse)
async def mark_delivered(order_id: str, body: MarkDeliveredRequest) -> StatusResponse:
    command = MarkDelivered(order_id=order_id, delivered_at=body.delivered_at)
    current_domain.process(command, asynchronous=False)
    return StatusResponse(status="delivered")


@order_router.post("/{order_id}/refunds", status_code=201, response_model=RefundResponse)
async def create_refund(order_id: str, body: IssueRefundRequest) -> RefundResponse:
    """Refund selected lines of an order.

    Without an ``idempotency_key`` one is derived from the request, so a
    double submission replays the first refund instead of issuing another.
    """
    selections = [selection.model_dump() for selection in body.selections]
    restocking = _adjustment_cents(body.restocking_fee_cents, body.restocking_fee_usd)
    shipping = _adjustment_cents(body.refund_shipping_cents, body.refund_shipping_usd)
    idempotency_key = body.idempotency_key or build_idempotency_key(
        order_id, selections, body.reason, restocking, shipping
    )

    outcome = issue_refund(
        order_id,
        selections,
        RefundOptions(
            idempotency_key=idempotency_key,
            reason=body.reason,
            restocking_fee_cents=restocking,
            refund_shipping_cents=shipping,
            notes=body.notes,
        ),
    )
    order = current_domain.repository_for(Order).get(order_id)
    return RefundResponse(
        refund_record_id=str(outcome.record.id),
        gateway_refund_id=outcome.record.gateway_refund_id,
        order_id=order_id,
        amount_cents=outcome.record.amount_cents,
        status=outcome.record.status,
        replayed=outcome.replayed,
        order_status=order.status,
        refunded_total_cents=order.refunded_total_cents,
    )


@order_router.get("/{order_id}/refunds/remaining", response_model=RefundableRemainderResponse)
async def get_refundable_remainder(order_id: str, include_pending: bool = False) -> RefundableRemainderResponse:
    remainder = compute_refundable_remainder(order_id, include_pending=include_pending)
    return RefundableRemainderResponse(
        order_id=remainder.order_id,
        ceiling_cents=remainder.ceiling_cents,
        refunded_cents=remainder.refunded_cents,
        remaining_cents=remainder.remaining_cents,
        remaining_quantity_by_item=remainder.remaining_quantity_by_item,
        refunded_cents_by_item=remainder.refunded_cents_by_item,
    )


@order_router.post("/{order_id}/refunds/recompute", response_model=StatusResponse)
async def recompute_refunds(order_id: str, body: RecomputeRefundStateRequest) -> StatusResponse:
    """Manual reconciliation of the order's refund summary."""
    command = RecomputeRefundState(order_id=order_id, include_pending=body.include_pending)
    changed = current_domain.process(command, asynchronous=False)
    return StatusResponse(status="updated" if changed else "unchanged")


# ---------------------------------------------------------------------------
# Refund Router (processor-facing)
# ---------------------------------------------------------------------------
refund_router = APIRouter(prefix="/refunds", tags=["refunds"])


@refund_router.post("/webhook", response_model=WebhookResponse)
async def process_refund_webhook(
    request: Request,
    x_gateway_signature: str = Header(default=""),
) -> WebhookResponse:
    """Apply a refund status change reported by the payment processor.

    The signature covers the raw request bytes, so it is checked before the
    body is parsed.
    """
    payload = await request.body()
    if not get_gateway().verify_webhook_signature(payload.decode("utf-8", errors="replace"), x_gateway_signature):
        raise HTTPException(status_code=401, detail="Invalid webhook signature")
    try:
        body = ProcessRefundWebhookRequest.model_validate_json(payload)
    except PydanticValidationError as exc:
        raise RequestValidationError(exc.errors()) from exc

    command = ProcessRefundWebhook(
        gateway_refund_id=body.gateway_refund_id,
        status=body.status,
        amount_cents=body.amount_cents,
        payment_intent_id=body.payment_intent_id,
        charge_id=body.charge_id,
        reason=body.reason,
        occurred_at=body.occurred_at,
    )
    order_id = current_domain.process(command, asynchronous=False)
    if order_id is None:
        return WebhookResponse(status="ignored")

    reconcile_refund_state(order_id, include_pending=False)
    return WebhookResponse(status="processed", order_id=order_id)


@refund_router.post("/gateway/configure", response_model=GatewayConfigResponse)
async def configure_gateway(body: ConfigureGatewayRequest) -> GatewayConfigResponse:
    """Configure the FakeGateway behavior (non-production only)."""
    if is_production():
        raise HTTPException(status_code=403, detail="Gateway configuration not available in production")

    gateway = get_gateway()
    if not isinstance(gateway, FakeGateway):
        raise HTTPException(status_code=400, detail="Gateway configuration only available for FakeGateway")

    gateway.configure(
        should_succeed=body.should_succeed,
        failure_reason=body.failure_reason,
        refund_status=body.refund_status,
    )
    return GatewayConfigResponse(
        gateway=type(gateway).__name__,
        should_succeed=gateway.should_succeed,
        failure_reason=gateway.failure_reason,
        refund_status=gateway.refund_status,
    )


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------
async def _refund_error_handler(request: Request, exc: RefundError) -> JSONResponse:  # noqa: ARG001
    status_code = 502 if isinstance(exc, PaymentProcessorError) else 409
    return JSONResponse(status_code=status_code, content=exc.to_dict())


def register_error_handlers(app: FastAPI) -> None:
    """Protean errors (400/404/...) plus refund rejections (409/502)."""
    register_exception_handlers(app)
    app.add_exception_handler(RefundError, _refund_error_handler)
