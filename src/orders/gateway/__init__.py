"""Payment processor factory.

get_gateway() / set_gateway() swap the processor used for refunds. Only the
FakeGateway ships with the project; a real processor adapter implements
``PaymentGateway`` and is installed with set_gateway() at startup.
"""

from orders.gateway.fake_adapter import FakeGateway
from orders.gateway.port import PaymentGateway

_current_gateway: PaymentGateway | None = None


def get_gateway() -> PaymentGateway:
    """Return the current payment gateway. Defaults to FakeGateway."""
    global _current_gateway
    if _current_gateway is None:
        _current_gateway = FakeGateway()
    return _current_gateway


def set_gateway(gateway: PaymentGateway) -> None:
    global _current_gateway
    _current_gateway = gateway


def reset_gateway() -> None:
    global _current_gateway
    _current_gateway = None
