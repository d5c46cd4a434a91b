"""
Casedesk - FastAPI Application
Derived case facts: deadlines, litigation guidance, priority and risk.

The HTTP layer is a thin JSON boundary over the engines in
casedesk.services. No persistence, no authentication.
"""

import logging
import uuid
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from casedesk import __version__
from casedesk.core.config import get_settings
from casedesk.core.errors import setup_exception_handlers
from casedesk.core.rule_tables import (
    cached_business_calendar,
    cached_deadline_rules,
    cached_scoring_weights,
)
from casedesk.core.utc import iso_datetime, utc_now
from casedesk.routers.case_analysis import router as case_analysis_router


# =============================================================================
# Logging Setup
# =============================================================================

def setup_logging():
    """Configure logging based on settings."""
    from casedesk.core.logging_config import setup_logging as configure_logging
    settings = get_settings()
    configure_logging(
        level=settings.log_level.upper(),
        json_format=settings.log_json_format,
        log_file=Path(settings.log_file) if settings.log_file else None,
    )


# =============================================================================
# Lifespan (Startup/Shutdown)
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Load and validate the rule tables once at startup; requests reuse them.

    A broken holiday table, rule override or weights file fails startup
    with ComputationError.
    """
    settings = get_settings()
    logger = logging.getLogger(__name__)
    logger.info("Starting %s v%s", settings.app_name, settings.app_version)

    calendar = cached_business_calendar(settings.jurisdiction, settings.holidays_path)
    rule_set = cached_deadline_rules(settings.deadline_rules_path)
    cached_scoring_weights(settings.scoring_weights_path)
    logger.info(
        "Rule tables ready: jurisdiction=%s, %d deadline rules",
        calendar.jurisdiction,
        len(rule_set),
    )

    yield

    logger.info("Shutting down %s", settings.app_name)


# =============================================================================
# Application Factory
# =============================================================================

def create_app() -> FastAPI:
    """
    Application factory.
    Creates and configures the FastAPI application.
    """
    settings = get_settings()
    setup_logging()

    tags_metadata = [
        {
            "name": "Health",
            "description": "Liveness check.",
        },
        {
            "name": "Case Analysis",
            "description": "Deadlines, guidance, priority scoring and risk flags for a case snapshot.",
        },
    ]

    app = FastAPI(
        title=settings.app_name,
        description=f"""{settings.app_description}

## Error Responses
All errors return JSON with `error`, `message` and `details` fields.
- 422: invalid input (unknown practice area, missing case_id)
- 409: a required anchor event is missing
- 500: rule table or configuration defect
""",
        version=settings.app_version,
        lifespan=lifespan,
        docs_url="/api/docs" if settings.enable_docs else None,
        redoc_url="/api/redoc" if settings.enable_docs else None,
        openapi_url="/api/openapi.json" if settings.enable_docs else None,
        openapi_tags=tags_metadata,
    )

    # =========================================================================
    # Middleware
    # =========================================================================
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def add_request_id(request: Request, call_next):
        request_id = request.headers.get("X-Request-Id", str(uuid.uuid4()))
        response = await call_next(request)
        response.headers["X-Request-Id"] = request_id
        return response

    # =========================================================================
    # Exception Handlers
    # =========================================================================
    setup_exception_handlers(app)

    # =========================================================================
    # Register Routers
    # =========================================================================
    app.include_router(case_analysis_router)

    @app.get("/health", tags=["Health"])
    async def health():
        return {
            "status": "ok",
            "service": settings.app_name,
            "version": __version__,
            "timestamp": iso_datetime(utc_now()),
        }

    return app


app = create_app()
