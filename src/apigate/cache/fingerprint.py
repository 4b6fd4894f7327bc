"""
apigate.cache.fingerprint

Deterministic cache keys for requests.

Responsibilities:
- Derive a key from method, path and an explicit allow-list of query params and headers.
- Optionally scope the key to a principal for per-user caching.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Iterable, Mapping


def compute_fingerprint(
    method: str,
    path: str,
    *,
    query: Iterable[tuple[str, str]] = (),
    headers: Mapping[str, str] | None = None,
    vary_query: Iterable[str] = (),
    vary_headers: Iterable[str] = (),
    principal_subject: str | None = None,
) -> str:
    """
    Only allow-listed attributes participate. Anything else (cookies, Authorization, tracing
    headers) is ignored so identical resources share an entry, and so a shared entry can never
    be keyed on caller-specific data that was not declared.
    """

    query_names = frozenset(vary_query)
    header_names = frozenset(h.lower() for h in vary_headers)
    lowered = {k.lower(): v for k, v in (headers or {}).items()}

    canonical = [
        method.upper(),
        path,
        sorted((k, v) for k, v in query if k in query_names),
        sorted((name, lowered[name]) for name in header_names if name in lowered),
        principal_subject,
    ]
    digest = hashlib.sha256(json.dumps(canonical, separators=(",", ":")).encode("utf-8"))
    return digest.hexdigest()
