"""Abandoned Hobby orders service: FastAPI application.

Commands are processed synchronously over HTTP inside the Orders domain
context.

Usage:
    uvicorn app:app --app-dir src --host 0.0.0.0 --port 8000 --reload
"""

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from orders.api import order_router, refund_router, register_error_handlers
from orders.domain import orders
from orders.utils.logging import bind_request_context, clear_request_context, configure_logging

configure_logging()
orders.init()

_DOMAIN_PREFIXES = ("/orders", "/refunds")

app = FastAPI(
    title="Abandoned Hobby Orders API",
    description="Order amounts, shipment tracking and refund reconciliation",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def domain_context_middleware(request: Request, call_next):
    """Bind request log context; push the Orders domain context for domain routes."""
    request_id = bind_request_context(request.method, request.url.path, request.headers.get("X-Request-ID"))
    try:
        if request.url.path.startswith(_DOMAIN_PREFIXES):
            with orders.domain_context():
                response = await call_next(request)
        else:
            response = await call_next(request)
    finally:
        clear_request_context()
    response.headers["X-Request-ID"] = request_id
    return response


app.include_router(order_router)
app.include_router(refund_router)
register_error_handlers(app)


@app.get("/health")
async def health():
    return {"status": "ok", "domain": orders.name}
