"""HTTP surface for orders, payment initiation and the retry worker lifecycle."""

import asyncio
from contextlib import asynccontextmanager
from time import perf_counter
from uuid import uuid4

import redis
from fastapi import Depends, FastAPI, HTTPException, Request, Response

from orderpay.common.auth import BearerCredential, verify_token
from orderpay.common.config import settings
from orderpay.common.db import Base, SessionLocal, engine
from orderpay.common.errors import InvalidAmountError, OrderNotFoundError, PaymentConflictError, SchedulingFailure
from orderpay.common.logging import configure_logging, logger, trace_id_ctx
from orderpay.common.metrics import http_request_duration_seconds, http_requests_total, metrics_response
from orderpay.common.ratelimit import TokenBucketLimiter
from orderpay.common.startup import log_startup_config
from orderpay.common.state_machine import OrderStatus
from orderpay.common.tracing import instrument_app, setup_tracing
from orderpay.services.orders.gateway import GatewayPolicy, PaymentGatewayClient
from orderpay.services.orders.scheduler import DatabaseRetryScheduler, RetryWorker
from orderpay.services.orders.schemas import (
    OrderCreatedResponse,
    OrderCreateRequest,
    OrderView,
    PaymentResponse,
    TransactionView,
)
from orderpay.services.orders.service import PaymentService

configure_logging()
setup_tracing(settings.service_name)
log_startup_config(
    settings.service_name,
    ["database_url", "redis_url", "gateway_url", "jwt_secret", "retry_delay_seconds", "payment_provider"],
)
service = PaymentService(
    SessionLocal,
    gateway=PaymentGatewayClient(settings.gateway_url, GatewayPolicy.interactive()),
    retry_gateway=PaymentGatewayClient(settings.gateway_url, GatewayPolicy.background()),
    scheduler=DatabaseRetryScheduler(SessionLocal),
)
worker = RetryWorker(
    SessionLocal,
    service,
    poll_interval_seconds=settings.retry_poll_interval_seconds,
    claim_timeout_seconds=settings.retry_claim_timeout_seconds,
)
rate_limit = TokenBucketLimiter(
    redis.Redis.from_url(settings.redis_url, decode_responses=True),
    settings.rate_limit_per_minute,
    prefix="orders-api",
)


@asynccontextmanager
async def lifespan(_: FastAPI):
    """Run the delayed-retry worker with app lifecycle."""

    if settings.auto_create_schema:
        Base.metadata.create_all(bind=engine)
    worker_task = asyncio.create_task(worker.run_forever())
    yield
    worker_task.cancel()


app = FastAPI(title="OrderPay Orders", lifespan=lifespan)
instrument_app(app)


@app.middleware("http")
async def metrics_middleware(request: Request, call_next):
    """Bind a trace id and record request count and latency for every call."""

    trace_id_ctx.set(request.headers.get("x-trace-id") or str(uuid4()))
    start = perf_counter()
    route = request.url.path
    method = request.method
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        route_obj = request.scope.get("route")
        if route_obj is not None and getattr(route_obj, "path", None):
            route = route_obj.path
        return response
    finally:
        elapsed = max(0.0, perf_counter() - start)
        http_request_duration_seconds.labels(
            service=settings.service_name,
            route=route,
            method=method,
        ).observe(elapsed)
        http_requests_total.labels(
            service=settings.service_name,
            route=route,
            method=method,
            status_code=str(status_code),
        ).inc()


@app.post("/orders", response_model=OrderCreatedResponse, dependencies=[Depends(rate_limit)])
def create_order(req: OrderCreateRequest, credential: BearerCredential = Depends(verify_token)):
    """Create a pending order together with its pending transaction."""

    try:
        order = service.create_order(credential.subject, req.amount)
    except InvalidAmountError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return OrderCreatedResponse(status="success", message="Order created successfully!", order_id=order.id)


@app.post("/orders/{order_id}/pay", response_model=PaymentResponse, dependencies=[Depends(rate_limit)])
def pay_order(order_id: int, response: Response, credential: BearerCredential = Depends(verify_token)):
    """Run one payment attempt; failures are recovered and retried later."""

    try:
        result = service.initiate(order_id, credential)
    except OrderNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except PaymentConflictError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except SchedulingFailure as exc:
        raise HTTPException(status_code=500, detail=f"An error occurred: {exc}") from exc
    except Exception as exc:
        logger.exception("payment_initiation_error order_id=%s error=%s", order_id, exc)
        raise HTTPException(status_code=500, detail=f"An error occurred: {exc}") from exc

    if result.status == OrderStatus.PAID.value:
        return PaymentResponse(
            status="success", message=result.message, order_id=order_id, order_status=result.status
        )
    response.status_code = 202
    return PaymentResponse(status="processing", message=result.message, order_id=order_id, order_status=result.status)


@app.get("/orders/{order_id}", response_model=OrderView, dependencies=[Depends(verify_token)])
def get_order(order_id: int):
    """Current order status, with its transaction."""

    try:
        return OrderView.from_model(service.get_order(order_id))
    except OrderNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.get("/transactions/{transaction_id}", response_model=TransactionView, dependencies=[Depends(verify_token)])
def get_transaction(transaction_id: int):
    """Current transaction status and captured provider response."""

    try:
        return TransactionView.from_model(service.get_transaction(transaction_id))
    except OrderNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.get("/metrics")
def metrics():
    """Prometheus scrape endpoint."""

    return metrics_response()


@app.get("/health")
def health():
    """Container health probe endpoint."""

    return {"ok": True}
