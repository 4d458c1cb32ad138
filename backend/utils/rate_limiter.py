from fastapi import Request, HTTPException, status
import time
from collections import defaultdict
from typing import Dict, List

class RateLimiter:
    def __init__(self, requests_limit: int, time_window: int):
        self.requests_limit = requests_limit
        self.time_window = time_window  # in seconds
        self.ip_requests: Dict[str, List[float]] = defaultdict(list)
        self.cleanup_interval = 600  # Cleanup every 10 minutes
        self.last_cleanup = time.time()

    def _get_client_ip(self, request: Request) -> str:
        """
        Get the client IP, respecting X-Forwarded-For if behind a proxy.
        """
        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for:
            # X-Forwarded-For: <client>, <proxy1>, <proxy2>
            return forwarded_for.split(",")[0].strip()

        return request.client.host if request.client else "127.0.0.1"

    async def __call__(self, request: Request):
        client_ip = self._get_client_ip(request)
        current_time = time.time()

        if current_time - self.last_cleanup > self.cleanup_interval:
            self._cleanup(current_time)
            self.last_cleanup = current_time

        # Sliding window: only keep requests inside the time window
        request_times = [t for t in self.ip_requests[client_ip] if current_time - t < self.time_window]
        self.ip_requests[client_ip] = request_times

        if len(request_times) >= self.requests_limit:
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail="Too many requests. Please try again later."
            )

        self.ip_requests[client_ip].append(current_time)
        return True

    def reset(self):
        self.ip_requests.clear()

    def _cleanup(self, current_time: float):
        """Remove IP entries that haven't made requests recently"""
        ips_to_remove = [
            ip for ip, timestamps in self.ip_requests.items()
            if not timestamps or (current_time - timestamps[-1] > self.time_window)
        ]
        for ip in ips_to_remove:
            del self.ip_requests[ip]

# In-memory limiters, one process only.
# 5 requests per minute for login and registration
auth_rate_limiter = RateLimiter(requests_limit=5, time_window=60)

# 10 access requests per hour per client
access_request_rate_limiter = RateLimiter(requests_limit=10, time_window=3600)
