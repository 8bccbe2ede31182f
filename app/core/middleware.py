import time
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse
from collections import defaultdict

class RateLimitMiddleware(BaseHTTPMiddleware):
    exempt_suffixes = ("/payments/notify",)

    def __init__(self, app, limit_per_minute: int = 60, checkout_limit_per_minute: int = 20):
        super().__init__(app)
        self.limit = limit_per_minute
        self.checkout_limit = checkout_limit_per_minute
        # In-memory store: IP -> [timestamp1, timestamp2, ...]
        # Per process only; put Redis behind this when running several workers.
        self.requests = defaultdict(list)

    async def dispatch(self, request: Request, call_next):
        # Gateway confirmations come from a few PayHere IPs and must never be dropped
        if request.url.path.endswith(self.exempt_suffixes):
            return await call_next(request)

        client_ip = request.client.host if request.client else "unknown"
        now = time.time()

        # Drop requests older than 60s
        self.requests[client_ip] = [t for t in self.requests[client_ip] if now - t < 60]

        limit = self.limit
        # Checkout creates ledger rows, keep it tighter than reads
        if request.url.path.endswith("/checkout") and request.method == "POST":
            limit = min(limit, self.checkout_limit)

        if len(self.requests[client_ip]) >= limit:
            return JSONResponse(
                status_code=429,
                content={"detail": "Too many requests. Please try again later."}
            )

        self.requests[client_ip].append(now)

        response = await call_next(request)
        return response
