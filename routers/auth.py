from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from config import Settings
from errors import AccessNotGranted
from middleware import SESSION_MARKER_VALUE, session_cookie_kwargs
from routers.onboarding import get_onboarding_service, get_settings
from schemas import SessionIn
from services.onboarding import OnboardingService

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/session")
def issue_session(
    req: SessionIn,
    svc: OnboardingService = Depends(get_onboarding_service),
    cfg: Settings = Depends(get_settings),
) -> JSONResponse:
    """
    Stand-in session issuer: sets the session cookie the access guard looks
    for, but only once the age gate (and consent, when required) is satisfied.
    Replace with real auth later if needed.
    """
    status = svc.get_status(req.user_id)
    if not status.access_allowed:
        raise AccessNotGranted(f"Onboarding is not complete (state={status.state.value}).")

    resp = JSONResponse({"ok": True, "user_id": req.user_id, "state": status.state.value})
    resp.set_cookie(
        cfg.session_cookie_name,
        SESSION_MARKER_VALUE,
        **session_cookie_kwargs(cfg.session_cookie_max_age_seconds),
    )
    return resp


@router.post("/logout")
def logout(cfg: Settings = Depends(get_settings)) -> JSONResponse:
    resp = JSONResponse({"ok": True})
    resp.delete_cookie(cfg.session_cookie_name, path="/")
    return resp


@router.get("")
def entry() -> Dict[str, Any]:
    return {"ok": True, "surface": "auth"}
