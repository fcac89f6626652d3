from __future__ import annotations

from typing import Any, Mapping, MutableMapping, Optional
import json
import logging
import os

import requests
from requests import Response, Session
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry


logger = logging.getLogger(__name__)


def _build_retry(total: int = 4, backoff_factor: float = 0.6) -> Retry:
    """
    Exponential backoff via urllib3 Retry.
    Only idempotent methods are retried; a POST that reached the server
    must not be replayed.
    """
    return Retry(
        total=total,
        read=total,
        connect=total,
        status=total,
        backoff_factor=backoff_factor,
        status_forcelist=(429, 500, 502, 503, 504),
        allowed_methods=frozenset({"HEAD", "GET", "PUT", "OPTIONS"}),
        raise_on_status=False,
        respect_retry_after_header=True,
    )


class HttpClient:
    """
    Small wrapper around requests.Session with sane defaults:
    - Retries + backoff
    - Per-request timeout
    - JSON helpers that raise requests errors for callers to translate
    """

    def __init__(
        self,
        base_url: str = "",
        timeout: float = 8.0,
        max_retries: int = 4,
        user_agent: Optional[str] = None,
        api_key: Optional[str] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._session = Session()

        adapter = HTTPAdapter(max_retries=_build_retry(total=max_retries))
        self._session.mount("http://", adapter)
        self._session.mount("https://", adapter)

        ua = user_agent or os.getenv("HTTP_USER_AGENT", "LearnerOnboarding/1.0")
        self._default_headers: dict[str, str] = {
            "User-Agent": ua,
            "Accept": "application/json",
        }
        if api_key:
            self._default_headers["Authorization"] = f"Bearer {api_key}"

    @property
    def session(self) -> Session:
        return self._session

    def _url(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        return f"{self._base_url}/{path.lstrip('/')}"

    def request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Mapping[str, Any]] = None,
        json_body: Optional[Any] = None,
        headers: Optional[Mapping[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> Response:
        merged: MutableMapping[str, str] = dict(self._default_headers)
        if headers:
            merged.update(headers)
        t = timeout or self._timeout
        return self._session.request(
            method, self._url(path), params=params, json=json_body, headers=merged, timeout=t
        )

    def get_json(
        self,
        path: str,
        *,
        params: Optional[Mapping[str, Any]] = None,
        default: Any = None,
    ) -> Any:
        resp = self.request("GET", path, params=params)

        # 404 means "nothing stored yet"
        if resp.status_code == 404:
            logger.info("GET %s -> 404 Not Found (returning default)", resp.url)
            return default

        return self._decode(resp, default)

    def send_json(self, method: str, path: str, payload: Any) -> Any:
        resp = self.request(method, path, json_body=payload)
        return self._decode(resp, None)

    def _decode(self, resp: Response, default: Any) -> Any:
        try:
            resp.raise_for_status()
        except requests.HTTPError as e:
            logger.warning("HTTP error %s for %s", e, resp.url)
            raise

        if not resp.content:
            return default

        try:
            return resp.json()
        except json.JSONDecodeError:
            logger.warning("Non-JSON response from %s", resp.url)
            raise
