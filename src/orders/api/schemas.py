"""Pydantic request/response schemas for the Orders API.

These are external contracts (anti-corruption layer), separate from
internal Protean commands. Money is integer cents throughout; ``*_usd``
fields are parsed exactly into cents at the boundary.
"""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Shared sub-models
# ---------------------------------------------------------------------------
class OrderItemSchema(BaseModel):
    id: str | None = None
    product_id: str | None = None
    name_snapshot: str
    unit_amount: int | None = None
    quantity: int | None = None
    amount_subtotal: int | None = None
    amount_tax: int | None = None
    amount_total: int | None = None
    refund_policy: str | None = None
    returns_accepted_through: datetime | None = None


class ShipmentSchema(BaseModel):
    carrier: Literal["usps", "ups", "fedex", "other"] | None = None
    tracking_number: str | None = None
    tracking_url: str | None = None
    shipped_at: str | None = None


class RefundSelectionSchema(BaseModel):
    item_id: str
    quantity: int = Field(gt=0)


# ---------------------------------------------------------------------------
# Order Request Schemas
# ---------------------------------------------------------------------------
class PlaceOrderRequest(BaseModel):
    order_number: str
    tenant_id: str
    items: list[OrderItemSchema] = Field(default_factory=list)
    total_cents: int | None = None
    currency: str = "USD"
    buyer_id: str | None = None
    buyer_email: str | None = None
    checkout_session_id: str | None = None
    payment_intent_id: str | None = None
    charge_id: str | None = None
    connected_account_id: str | None = None
    shipping_total_cents: int | None = None
    discount_total_cents: int | None = None
    stripe_fee_cents: int | None = None
    platform_fee_cents: int | None = None
    shipment: ShipmentSchema | None = None

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "order_number": "AH-1001",
                    "tenant_id": "tenant-001",
                    "payment_intent_id": "pi_123",
                    "items": [
                        {"id": "line-1", "name_snapshot": "Loom", "unit_amount": 2000, "quantity": 2},
                        {"id": "line-2", "name_snapshot": "Yarn", "unit_amount": 1500, "quantity": 1},
                    ],
                }
            ]
        }
    }


class RecordShipmentRequest(BaseModel):
    carrier: Literal["usps", "ups", "fedex", "other"]
    tracking_number: str = Field(min_length=1)
    shipped_at: str | None = None


class MarkTrackingNotifiedRequest(BaseModel):
    message_key: str


class MarkDeliveredRequest(BaseModel):
    delivered_at: datetime | None = None


class RecordProcessorFeesRequest(BaseModel):
    stripe_fee_cents: int = Field(ge=0)
    platform_fee_cents: int | None = Field(default=None, ge=0)


# ---------------------------------------------------------------------------
# Refund Request Schemas
# ---------------------------------------------------------------------------
class IssueRefundRequest(BaseModel):
    selections: list[RefundSelectionSchema] = Field(min_length=1)
    reason: Literal["requested_by_customer", "duplicate", "fraudulent", "other"] | None = None
    restocking_fee_cents: int | None = Field(default=None, ge=0)
    refund_shipping_cents: int | None = Field(default=None, ge=0)
    restocking_fee_usd: str | None = None
    refund_shipping_usd: str | None = None
    notes: str | None = None
    idempotency_key: str | None = None


class ProcessRefundWebhookRequest(BaseModel):
    gateway_refund_id: str
    status: str
    amount_cents: int | None = None
    payment_intent_id: str | None = None
    charge_id: str | None = None
    reason: str | None = None
    occurred_at: datetime | None = None


class RecomputeRefundStateRequest(BaseModel):
    include_pending: bool = False


class ConfigureGatewayRequest(BaseModel):
    should_succeed: bool = True
    failure_reason: str = "Refund declined"
    refund_status: Literal["succeeded", "pending"] = "succeeded"


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------
class OrderIdResponse(BaseModel):
    order_id: str


class StatusResponse(BaseModel):
    status: str


class OrderAmountsResponse(BaseModel):
    order_id: str
    subtotal_cents: int
    tax_total_cents: int
    shipping_total_cents: int
    discount_total_cents: int
    platform_fee_cents: int
    stripe_fee_cents: int
    seller_net_cents: int
    total_cents: int


class RefundResponse(BaseModel):
    refund_record_id: str
    gateway_refund_id: str | None = None
    order_id: str
    amount_cents: int
    status: str
    replayed: bool = False
    order_status: str | None = None
    refunded_total_cents: int | None = None


class RefundableRemainderResponse(BaseModel):
    order_id: str
    ceiling_cents: int
    refunded_cents: int
    remaining_cents: int
    remaining_quantity_by_item: dict[str, int]
    refunded_cents_by_item: dict[str, int]


class WebhookResponse(BaseModel):
    status: str
    order_id: str | None = None


class GatewayConfigResponse(BaseModel):
    gateway: str
    should_succeed: bool
    failure_reason: str
    refund_status: str
