"""Bearer JWT verification for API callers and service tokens for workers."""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from fastapi import Header, HTTPException
from jose import JWTError, jwt

from orderpay.common.config import settings


RETRY_WORKER_SUBJECT = "orderpay-retry-worker"


@dataclass(frozen=True)
class BearerCredential:
    """Verified caller: raw token (forwarded to the gateway) and its subject."""

    token: str
    subject: str

    @property
    def authorization(self) -> str:
        return f"Bearer {self.token}"


def decode_token(token: str) -> dict:
    return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])


def verify_token(authorization: str | None = Header(default=None)) -> BearerCredential:
    """FastAPI dependency: require `Authorization: Bearer <jwt>`."""

    if not authorization:
        raise HTTPException(status_code=401, detail="Invalid or missing token")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise HTTPException(status_code=401, detail="Invalid or missing token")
    try:
        claims = decode_token(token)
    except JWTError as exc:
        raise HTTPException(status_code=401, detail="Invalid or missing token") from exc
    subject = claims.get("sub")
    if not isinstance(subject, str) or not subject:
        raise HTTPException(status_code=401, detail="Invalid or missing token")
    return BearerCredential(token=token, subject=subject)


def issue_service_token(subject: str = RETRY_WORKER_SUBJECT, ttl_seconds: int | None = None) -> BearerCredential:
    """Mint a short-lived token for calls made on behalf of the service itself."""

    ttl = ttl_seconds if ttl_seconds is not None else settings.service_token_ttl_seconds
    now = datetime.now(timezone.utc)
    token = jwt.encode(
        {"sub": subject, "iat": now, "exp": now + timedelta(seconds=ttl)},
        settings.jwt_secret,
        algorithm=settings.jwt_algorithm,
    )
    return BearerCredential(token=token, subject=subject)
