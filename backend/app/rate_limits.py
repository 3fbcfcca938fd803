import os

from fastapi import Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded


def _rate_limits_disabled() -> bool:
    return (os.getenv("DISABLE_RATE_LIMITS") or "").lower() == "true"


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        parts = [ip.strip() for ip in forwarded.split(",") if ip.strip()]
        if parts:
            return parts[-1]
    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip
    if request.client and request.client.host:
        return request.client.host
    return "anonymous"


limiter = Limiter(key_func=client_ip)


def command_rate_limit() -> str:
    # A scorer taps quickly during a rally; keep headroom for bursts.
    if _rate_limits_disabled():
        return "1000/second"
    return "120/minute"


def write_rate_limit() -> str:
    if _rate_limits_disabled():
        return "1000/second"
    return "30/minute"


async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    detail = exc.detail if isinstance(exc.detail, str) else ""
    if detail:
        message = f"rate limit exceeded: {detail}"
    else:
        message = "rate limit exceeded: please wait before submitting another request."
    return JSONResponse(
        status_code=429,
        content={
            "title": "Too Many Requests",
            "detail": message,
            "status": 429,
            "code": "rate_limit_exceeded",
        },
        media_type="application/problem+json",
    )
