"""
apigate.api

HTTP surface for the pipeline.

Responsibilities:
- FastAPI app factory and ASGI adapter.
- Health, dev-auth and sample resource routers behind the pipeline.
"""

# Package marker.
