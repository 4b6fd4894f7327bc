"""
apigate.pipeline.types

Transport-neutral request/response types and the per-request context.

Responsibilities:
- Model the inbound request and outbound response independently of any web framework.
- Carry per-request state (config snapshot, trace, principal, policy) through the stages.
- Define the `Stage` protocol and continuation signature.
"""

from __future__ import annotations

import json
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol

from apigate.errors import Internal

if TYPE_CHECKING:
    from apigate.auth.models import Principal, RoutePolicy
    from apigate.config import PipelineConfig
    from apigate.tracing import TraceContext

READ_METHODS = frozenset({"GET", "HEAD"})


@dataclass(frozen=True, slots=True)
class PipelineRequest:
    method: str
    path: str
    # Header names are stored lower-cased; use `header()` for lookups.
    headers: Mapping[str, str] = field(default_factory=dict)
    query: tuple[tuple[str, str], ...] = ()
    body: bytes = b""
    client_host: str | None = None

    @classmethod
    def build(
        cls,
        method: str,
        path: str,
        *,
        headers: Mapping[str, str] | Iterable[tuple[str, str]] | None = None,
        query: Mapping[str, str] | Iterable[tuple[str, str]] | None = None,
        body: bytes = b"",
        client_host: str | None = None,
    ) -> PipelineRequest:
        header_items = headers.items() if isinstance(headers, Mapping) else (headers or ())
        query_items = query.items() if isinstance(query, Mapping) else (query or ())
        return cls(
            method=method.upper(),
            path=path,
            headers={k.lower(): v for k, v in header_items},
            query=tuple((str(k), str(v)) for k, v in query_items),
            body=body,
            client_host=client_host,
        )

    def header(self, name: str, default: str | None = None) -> str | None:
        return self.headers.get(name.lower(), default)

    @property
    def is_read(self) -> bool:
        return self.method in READ_METHODS


@dataclass(slots=True)
class PipelineResponse:
    status_code: int = 200
    body: bytes = b""
    content_type: str = "application/json"
    headers: dict[str, str] = field(default_factory=dict)
    # Headers sent more than once (e.g. several Set-Cookie lines), kept in order.
    header_list: list[tuple[str, str]] = field(default_factory=list)

    @classmethod
    def json(
        cls,
        payload: Any,
        *,
        status_code: int = 200,
        content_type: str = "application/json",
        headers: dict[str, str] | None = None,
    ) -> PipelineResponse:
        return cls(
            status_code=status_code,
            body=json.dumps(payload, separators=(",", ":")).encode("utf-8"),
            content_type=content_type,
            headers=dict(headers or {}),
        )

    def header(self, name: str) -> str | None:
        lowered = name.lower()
        for key, value in (*self.headers.items(), *self.header_list):
            if key.lower() == lowered:
                return value
        return None


@dataclass(slots=True)
class RequestContext:
    request: PipelineRequest
    config: PipelineConfig
    trace: TraceContext | None = None
    principal: Principal | None = None
    policy: RoutePolicy | None = None
    client_key: str | None = None
    reached_handler: bool = False
    cache_status: str | None = None
    # Integration-specific values (e.g. the ASGI `call_next`) for the terminal handler.
    extensions: dict[str, Any] = field(default_factory=dict)

    def attach_principal(self, principal: Principal) -> None:
        if self.principal is not None:
            raise Internal("a principal is already attached to this request", stage="authentication")
        self.principal = principal


Continuation = Callable[[RequestContext], Awaitable[PipelineResponse]]
Handler = Callable[[RequestContext], Awaitable[PipelineResponse]]


class Stage(Protocol):
    name: str

    async def process(self, ctx: RequestContext, call_next: Continuation) -> PipelineResponse: ...


# --- Module Notes -----------------------------------------------------------
# The context is created once per request by `MiddlewareChain.handle` and dropped when the
# response is returned; nothing in it outlives the request.
