"""
apigate.cache

Short-TTL response caching for idempotent requests.

Holds the cache stores (in-memory and Redis), request fingerprinting, and the
`ResponseCache` that applies expiry and degrades store failures to misses.
"""
