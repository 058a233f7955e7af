from __future__ import annotations

import logging
import time
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from supaudit.apps.api.errors import (
    configuration_exception_handler,
    http_exception_handler,
    suggestion_config_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from supaudit.apps.api.response import API_VERSION
from supaudit.apps.api.routes.audit import router as audit_router
from supaudit.apps.api.routes.health import router as health_router
from supaudit.core.config import get_settings
from supaudit.core.errors import ConfigurationError, SuggestionConfigError
from supaudit.core.logging import configure_logging
from supaudit.services.evidence import EvidenceLog


logger = logging.getLogger(__name__)


def create_app(evidence: EvidenceLog | None = None) -> FastAPI:
    configure_logging()
    settings = get_settings()
    app = FastAPI(title="supaudit API", version=API_VERSION)
    app.state.evidence = evidence if evidence is not None else EvidenceLog()

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):  # type: ignore[override]
        # Preserve incoming request IDs or assign a new one for traceability.
        request_id = request.headers.get("X-Request-Id") or str(uuid4())
        request.state.request_id = request_id
        start = time.monotonic()
        response = await call_next(request)
        latency_ms = (time.monotonic() - start) * 1000.0
        logger.info(
            "request_complete path=%s status=%s latency_ms=%.1f",
            request.url.path,
            response.status_code,
            latency_ms,
        )
        response.headers.setdefault("X-Request-Id", request_id)
        return response

    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(ConfigurationError, configuration_exception_handler)
    app.add_exception_handler(SuggestionConfigError, suggestion_config_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.include_router(health_router, prefix=f"/{API_VERSION}")
    app.include_router(audit_router, prefix=f"/{API_VERSION}")

    logger.info("app_created name=%s", settings.app_name)
    return app


app = create_app()
