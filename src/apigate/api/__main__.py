"""
apigate.api.__main__

Process entrypoint behind the `apigate` console script (also `python -m apigate.api`).

Responsibilities:
- Read `APIGATE_*` settings once and build the pipeline-fronted app from them.
- Serve it with uvicorn, leaving log rendering to the app's structlog setup.
"""

from __future__ import annotations

import uvicorn

from apigate.api.app import create_app
from apigate.observability.logging import get_logger
from apigate.settings import get_settings

log = get_logger(__name__)


def main() -> None:
    settings = get_settings()
    app = create_app(settings=settings)
    log.info(
        "apigate_serving",
        host=settings.api_host,
        port=settings.api_port,
        backing_store=settings.backing_store,
    )

    # uvicorn must not install its own logging config over structlog's.
    uvicorn.run(app, host=settings.api_host, port=settings.api_port, log_config=None)


if __name__ == "__main__":
    main()


# --- Module Notes -----------------------------------------------------------
# Rate-limit windows and cached responses are per process unless the Redis backend is
# configured; run one worker per process or point every worker at the same Redis.
