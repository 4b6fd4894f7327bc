"""
apigate.pipeline

Request pipeline: stage types, stages, error boundary and chain composition.
"""

from apigate.pipeline.chain import MiddlewareChain, build_chain
from apigate.pipeline.types import PipelineRequest, PipelineResponse, RequestContext, Stage

__all__ = [
    "MiddlewareChain",
    "PipelineRequest",
    "PipelineResponse",
    "RequestContext",
    "Stage",
    "build_chain",
]
