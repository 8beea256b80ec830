"""Mock payment provider API used as the gateway in development and tests."""

import redis
from fastapi import Depends, FastAPI
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from orderpay.common.auth import verify_token
from orderpay.common.config import settings
from orderpay.common.db import SessionLocal
from orderpay.common.logging import configure_logging
from orderpay.common.metrics import metrics_response
from orderpay.common.ratelimit import TokenBucketLimiter
from orderpay.common.startup import log_startup_config
from orderpay.common.tracing import instrument_app, setup_tracing
from orderpay.services.mock_provider.service import MockProviderService

configure_logging()
setup_tracing("mock-provider")
log_startup_config("mock-provider", ["database_url", "redis_url", "jwt_secret"])
service = MockProviderService(SessionLocal)
rate_limit = TokenBucketLimiter(
    redis.Redis.from_url(settings.redis_url, decode_responses=True),
    settings.mock_charge_rate_limit_per_minute,
    prefix="mock-charge",
)


class ChargeRequest(BaseModel):
    """Charge payload sent by the orders service."""

    amount: float = Field(gt=0)
    currency: str = Field(min_length=1, max_length=3)
    order_id: int
    payment_method: str = Field(min_length=1)


app = FastAPI(title="OrderPay Mock Provider")
instrument_app(app)


@app.post("/mock-stripe/charge", dependencies=[Depends(verify_token), Depends(rate_limit)])
def charge(req: ChargeRequest):
    """Approve or decline one charge."""

    status_code, body = service.charge(req)
    return JSONResponse(status_code=status_code, content=body)


@app.get("/metrics")
def metrics():
    """Prometheus scrape endpoint."""

    return metrics_response()


@app.get("/health")
def health():
    """Container health probe endpoint."""

    return {"ok": True}
