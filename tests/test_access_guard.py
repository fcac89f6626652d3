import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from middleware import (
    AccessGuardMiddleware,
    GuardDecision,
    guard_decision,
    has_session_marker,
    is_protected_path,
)

PREFIXES = ["/content", "/feed", "/settings"]
COOKIE = "learner_auth_session"


def _guarded_app() -> FastAPI:
    app = FastAPI()
    app.add_middleware(
        AccessGuardMiddleware, protected_prefixes=PREFIXES, login_path="/auth", cookie_name=COOKIE
    )

    @app.get("/content/{rest:path}")
    def content(rest: str):
        return {"area": "content", "rest": rest}

    @app.get("/feed")
    def feed():
        return {"area": "feed"}

    @app.get("/about")
    def about():
        return {"area": "about"}

    @app.get("/contents")
    def contents():
        return {"area": "contents"}

    return app


@pytest.mark.parametrize(
    "path,expected",
    [
        ("/content", True),
        ("/content/abc", True),
        ("/feed/", True),
        ("/settings/profile", True),
        ("/contents", False),
        ("/", False),
        ("/auth", False),
        ("/v1/onboarding/age-gate", False),
    ],
)
def test_is_protected_path(path, expected):
    assert is_protected_path(path, PREFIXES) is expected


def test_session_marker_must_match_value():
    assert has_session_marker({COOKIE: "1"}, COOKIE)
    assert not has_session_marker({COOKIE: "0"}, COOKIE)
    assert not has_session_marker({}, COOKIE)


def test_guard_decision_table():
    assert guard_decision("/feed", False, PREFIXES) is GuardDecision.REDIRECT
    assert guard_decision("/feed", True, PREFIXES) is GuardDecision.PASS
    assert guard_decision("/about", False, PREFIXES) is GuardDecision.PASS


def test_protected_without_session_redirects_and_drops_query():
    client = TestClient(_guarded_app())
    r = client.get("/content/videos?topic=math&page=2", follow_redirects=False)
    assert r.status_code == 307
    assert r.headers["location"] == "/auth"


def test_protected_with_session_passes_unchanged():
    client = TestClient(_guarded_app())
    client.cookies.set(COOKIE, "1")
    r = client.get("/content/videos", follow_redirects=False)
    assert r.status_code == 200
    assert r.json() == {"area": "content", "rest": "videos"}


def test_wrong_marker_value_redirects():
    client = TestClient(_guarded_app())
    client.cookies.set(COOKIE, "yes")
    r = client.get("/feed", follow_redirects=False)
    assert r.status_code == 307


def test_unprotected_paths_never_intercepted():
    client = TestClient(_guarded_app())
    assert client.get("/about", follow_redirects=False).json() == {"area": "about"}
    assert client.get("/contents", follow_redirects=False).json() == {"area": "contents"}
