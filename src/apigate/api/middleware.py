"""
apigate.api.middleware

ASGI adapter that runs every HTTP request through the pipeline.

Responsibilities:
- Convert a Starlette request into a `PipelineRequest` and back.
- Provide the terminal handler that forwards admitted requests to the FastAPI router.
- Expose the authenticated principal and trace id on `request.state` for route handlers.
"""

from __future__ import annotations

from collections import Counter

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from apigate.pipeline.chain import MiddlewareChain
from apigate.pipeline.types import PipelineRequest, PipelineResponse, RequestContext

# Recomputed by Starlette from the body/media type on the way out.
_HOP_HEADERS = frozenset({"content-length", "content-type", "transfer-encoding"})


async def forward_to_app(ctx: RequestContext) -> PipelineResponse:
    """
    Terminal handler: hand the request to the wrapped ASGI app and buffer its response so the
    cache stage can store it.
    """

    request: Request = ctx.extensions["request"]
    call_next: RequestResponseEndpoint = ctx.extensions["call_next"]

    request.state.principal = ctx.principal
    request.state.trace_id = ctx.trace.trace_id if ctx.trace else None
    request.state.route_policy = ctx.policy

    response = await call_next(request)
    body = b"".join([chunk async for chunk in response.body_iterator])  # type: ignore[attr-defined]
    pairs = [(k, v) for k, v in response.headers.items() if k.lower() not in _HOP_HEADERS]
    counts = Counter(k.lower() for k, _ in pairs)
    # A name sent more than once (Set-Cookie, Link) would collapse in a dict.
    headers = {k: v for k, v in pairs if counts[k.lower()] == 1}
    repeated = [(k, v) for k, v in pairs if counts[k.lower()] > 1]
    return PipelineResponse(
        status_code=response.status_code,
        body=body,
        content_type=response.headers.get("content-type", "application/octet-stream"),
        headers=headers,
        header_list=repeated,
    )


class PipelineMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, chain: MiddlewareChain) -> None:
        super().__init__(app)
        self._chain = chain

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        pipeline_request = PipelineRequest.build(
            request.method,
            request.url.path,
            headers=request.headers.items(),
            query=request.query_params.multi_items(),
            body=await request.body(),
            client_host=request.client.host if request.client else None,
        )
        result = await self._chain.handle(
            pipeline_request,
            extensions={"request": request, "call_next": call_next},
        )
        response = Response(
            content=result.body,
            status_code=result.status_code,
            headers=result.headers,
            media_type=result.content_type,
        )
        for name, value in result.header_list:
            response.headers.append(name, value)
        return response


# --- Module Notes -----------------------------------------------------------
# Responses are buffered in full; streaming endpoints would need a separate, uncached path.
