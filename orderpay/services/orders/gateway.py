"""Payment gateway client.

Sends one charge request per attempt with a bounded timeout, retrying
immediately on transport-level faults only. Provider answers are reduced to a
`ChargeOutcome` so the state machine never sees raw HTTP errors.
"""

import time
from dataclasses import dataclass
from enum import Enum
from typing import Any

import httpx

from orderpay.common.auth import BearerCredential
from orderpay.common.config import settings
from orderpay.common.logging import logger
from orderpay.common.metrics import gateway_latency_seconds, gateway_transport_retries_total


SUCCESS_STATUSES = frozenset({"paid", "succeeded"})


class OutcomeKind(str, Enum):
    SUCCEEDED = "succeeded"
    DECLINED = "declined"
    TRANSPORT_ERROR = "transport_error"


@dataclass(frozen=True)
class ChargeOutcome:
    """Tri-state result of one gateway call (transport retries included)."""

    kind: OutcomeKind
    body: Any = None
    reason: str | None = None
    attempts: int = 1
    latency_ms: int = 0

    @property
    def succeeded(self) -> bool:
        return self.kind is OutcomeKind.SUCCEEDED

    @property
    def response_data(self) -> Any:
        """What the transaction keeps: provider body on success, reason otherwise."""

        return self.body if self.succeeded else self.reason


@dataclass(frozen=True)
class GatewayPolicy:
    timeout_seconds: float
    max_attempts: int
    backoff_seconds: float

    @classmethod
    def interactive(cls) -> "GatewayPolicy":
        return cls(
            timeout_seconds=settings.gateway_timeout_seconds,
            max_attempts=settings.gateway_max_attempts,
            backoff_seconds=settings.gateway_backoff_seconds,
        )

    @classmethod
    def background(cls) -> "GatewayPolicy":
        return cls(
            timeout_seconds=settings.retry_gateway_timeout_seconds,
            max_attempts=settings.retry_gateway_max_attempts,
            backoff_seconds=settings.retry_gateway_backoff_seconds,
        )


def _is_transport_status(status_code: int) -> bool:
    # Provider-side overload/outage; a decline is always a 4xx.
    return status_code == 429 or status_code >= 500


def _decode_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


class PaymentGatewayClient:
    """Charges orders against the configured payment endpoint."""

    def __init__(
        self,
        url: str,
        policy: GatewayPolicy,
        transport: httpx.BaseTransport | None = None,
        sleep=time.sleep,
        service_name: str = "orders",
    ) -> None:
        self.url = url
        self.policy = policy
        self.transport = transport
        self.sleep = sleep
        self.service_name = service_name

    def charge(self, payload: dict[str, Any], credential: BearerCredential) -> ChargeOutcome:
        """POST `{amount, currency, order_id, payment_method}` and classify the answer."""

        headers = {"Authorization": credential.authorization, "Content-Type": "application/json"}
        start = time.perf_counter()
        last_error = "gateway call not attempted"
        attempt = 0
        with httpx.Client(timeout=self.policy.timeout_seconds, transport=self.transport) as client:
            for attempt in range(1, self.policy.max_attempts + 1):
                try:
                    response = client.post(self.url, json=payload, headers=headers)
                except httpx.TimeoutException as exc:
                    last_error = (
                        f"Payment gateway timed out after {self.policy.timeout_seconds}s "
                        f"({type(exc).__name__}: {exc})"
                    )
                except httpx.TransportError as exc:
                    last_error = f"Payment gateway unreachable ({type(exc).__name__}: {exc})"
                else:
                    if not _is_transport_status(response.status_code):
                        return self._classify(response, attempt, start)
                    last_error = f"Payment gateway returned HTTP {response.status_code} {response.reason_phrase}"

                if attempt < self.policy.max_attempts:
                    gateway_transport_retries_total.labels(service=self.service_name).inc()
                    logger.warning(
                        "gateway_transport_retry order_id=%s attempt=%s backoff_s=%s error=%s",
                        payload.get("order_id"),
                        attempt,
                        self.policy.backoff_seconds,
                        last_error,
                    )
                    self.sleep(self.policy.backoff_seconds)

        return ChargeOutcome(
            kind=OutcomeKind.TRANSPORT_ERROR,
            reason=last_error,
            attempts=attempt,
            latency_ms=self._observe(start),
        )

    def _classify(self, response: httpx.Response, attempt: int, start: float) -> ChargeOutcome:
        body = _decode_body(response)
        latency_ms = self._observe(start)
        if response.is_success:
            status = body.get("status") if isinstance(body, dict) else None
            if status in SUCCESS_STATUSES:
                return ChargeOutcome(
                    kind=OutcomeKind.SUCCEEDED, body=body, attempts=attempt, latency_ms=latency_ms
                )
            # Neither clearly paid nor clearly declined: never leave it pending.
            return ChargeOutcome(
                kind=OutcomeKind.DECLINED,
                reason=f"Ambiguous gateway response (HTTP {response.status_code}): {body}",
                attempts=attempt,
                latency_ms=latency_ms,
            )

        message = body.get("message") if isinstance(body, dict) else None
        reason = message or response.reason_phrase or "Payment declined"
        return ChargeOutcome(
            kind=OutcomeKind.DECLINED,
            reason=f"{reason} (HTTP {response.status_code})",
            attempts=attempt,
            latency_ms=latency_ms,
        )

    def _observe(self, start: float) -> int:
        elapsed = max(0.0, time.perf_counter() - start)
        gateway_latency_seconds.labels(service=self.service_name).observe(elapsed)
        return int(elapsed * 1000)
