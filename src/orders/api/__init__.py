"""Orders domain API package."""

from orders.api.routes import order_router, refund_router, register_error_handlers

__all__ = ["order_router", "refund_router", "register_error_handlers"]
