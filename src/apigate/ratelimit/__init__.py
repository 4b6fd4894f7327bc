"""
apigate.ratelimit

Sliding-window rate limiting.

Holds the window stores (in-memory and Redis) and the limiter that turns store decisions
into admissions or `RateLimited` faults.
"""
