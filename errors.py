from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class OnboardingError(Exception):
    """
    Base for every failure the onboarding core reports back to a caller.
    Each failure is scoped to one submission.
    """

    code = "onboarding_error"
    status_code = 400

    def __init__(self, message: str, *, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.field = field

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.field:
            payload["field"] = self.field
        return payload


class InvalidInput(OnboardingError):
    code = "invalid_input"


class AttestationValidationError(OnboardingError):
    code = "validation_error"

    def __init__(self, field: str, reason: str) -> None:
        super().__init__(reason, field=field)
        self.reason = reason


class AttestationNotAccepted(OnboardingError):
    code = "attestation_not_accepted"
    status_code = 422

    def __init__(self, message: str = "Parental attestation must be accepted.") -> None:
        super().__init__(message, field="attestationAccepted")


class AgeGateRequired(OnboardingError):
    code = "age_gate_required"
    status_code = 409


class ConsentNotRequired(OnboardingError):
    code = "consent_not_required"
    status_code = 409


class AccessNotGranted(OnboardingError):
    code = "access_not_granted"
    status_code = 403


class TransportFailure(OnboardingError):
    """Storage collaborator unreachable or answered with a non-success status."""

    code = "transport_failure"
    status_code = 503

    def __init__(self, message: str = "Storage is temporarily unavailable. Please try again.") -> None:
        super().__init__(message)


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(OnboardingError)
    async def onboarding_error(request: Request, exc: OnboardingError):
        if isinstance(exc, TransportFailure):
            logger.error("path=%s code=%s msg=%s", request.url.path, exc.code, exc.message)
        else:
            logger.warning("path=%s code=%s field=%s", request.url.path, exc.code, exc.field)
        return JSONResponse(status_code=exc.status_code, content=exc.to_payload())

    @app.exception_handler(RequestValidationError)
    async def request_validation_error(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        field = None
        if errors:
            loc = [str(p) for p in errors[0].get("loc", ()) if p != "body"]
            field = ".".join(loc) or None
        payload = InvalidInput("Invalid request payload.", field=field).to_payload()
        logger.warning("path=%s code=%s field=%s", request.url.path, payload["code"], field)
        return JSONResponse(status_code=400, content=payload)
