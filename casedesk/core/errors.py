"""
Casedesk Error Taxonomy

- InvalidInput: malformed or out-of-range parameters. Fails immediately.
- IncompleteFacts: a required anchor or sub-fact is absent. Engines
  degrade instead of raising it; callers that insist on an anchor do.
- ComputationError: a configuration or programming defect (unknown
  citation key, unknown jurisdiction). Never swallowed.

setup_exception_handlers() maps these onto HTTP responses for the
adapter layer.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class CasedeskError(Exception):
    """Base class for all Casedesk errors."""

    code = "casedesk_error"

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


class InvalidInput(CasedeskError, ValueError):
    """Raised for malformed or out-of-range parameters, e.g. negative day counts."""

    code = "invalid_input"


class IncompleteFacts(CasedeskError, LookupError):
    """Raised when a caller requires an anchor event the snapshot does not hold."""

    code = "incomplete_facts"


class ComputationError(CasedeskError, RuntimeError):
    """
    Raised when an internal invariant is violated.

    This is a defect in configuration or code, not a runtime condition
    to recover from.
    """

    code = "computation_error"


# =============================================================================
# HTTP mapping
# =============================================================================

async def _invalid_input_handler(request: Request, exc: InvalidInput) -> JSONResponse:
    return JSONResponse(status_code=422, content=exc.to_dict())


async def _incomplete_facts_handler(request: Request, exc: IncompleteFacts) -> JSONResponse:
    return JSONResponse(status_code=409, content=exc.to_dict())


async def _computation_error_handler(request: Request, exc: ComputationError) -> JSONResponse:
    logger.error("Computation error on %s: %s %s", request.url.path, exc.message, exc.details)
    return JSONResponse(status_code=500, content=exc.to_dict())


def setup_exception_handlers(app: FastAPI) -> None:
    """Register Casedesk exception handlers on the application."""
    app.add_exception_handler(InvalidInput, _invalid_input_handler)
    app.add_exception_handler(IncompleteFacts, _incomplete_facts_handler)
    app.add_exception_handler(ComputationError, _computation_error_handler)
