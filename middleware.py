from __future__ import annotations

import logging
from enum import Enum
from typing import Callable, Iterable, Mapping, Optional, Sequence

from fastapi import Request
from fastapi.responses import RedirectResponse
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

SESSION_MARKER_VALUE = "1"


class GuardDecision(str, Enum):
    PASS = "pass"
    REDIRECT = "redirect"


def is_protected_path(path: str, prefixes: Iterable[str]) -> bool:
    for prefix in prefixes:
        prefix = prefix.rstrip("/")
        if not prefix:
            continue
        if path == prefix or path.startswith(prefix + "/"):
            return True
    return False


def has_session_marker(
    cookies: Mapping[str, str], cookie_name: str, marker_value: str = SESSION_MARKER_VALUE
) -> bool:
    return cookies.get(cookie_name) == marker_value


def guard_decision(path: str, session_present: bool, prefixes: Iterable[str]) -> GuardDecision:
    if session_present or not is_protected_path(path, prefixes):
        return GuardDecision.PASS
    return GuardDecision.REDIRECT


class AccessGuardMiddleware(BaseHTTPMiddleware):
    """
    Redirects requests for protected paths to the login surface unless the
    session cookie is present. Knows nothing about age or consent; only
    whoever issues the cookie decides that onboarding is complete.
    """

    def __init__(
        self,
        app,
        protected_prefixes: Sequence[str],
        login_path: str = "/auth",
        cookie_name: str = "learner_auth_session",
        marker_value: str = SESSION_MARKER_VALUE,
    ) -> None:
        super().__init__(app)
        self.protected_prefixes = tuple(protected_prefixes)
        self.login_path = login_path
        self.cookie_name = cookie_name
        self.marker_value = marker_value

    async def dispatch(self, request: Request, call_next: Callable):
        present = has_session_marker(request.cookies, self.cookie_name, self.marker_value)
        decision = guard_decision(request.url.path, present, self.protected_prefixes)
        if decision is GuardDecision.PASS:
            return await call_next(request)

        logger.info("guard redirect path=%s -> %s", request.url.path, self.login_path)
        # query string is not carried over
        return RedirectResponse(url=self.login_path, status_code=307)


def session_cookie_kwargs(max_age: Optional[int]) -> dict:
    return {"path": "/", "max_age": max_age, "samesite": "lax", "httponly": False}
