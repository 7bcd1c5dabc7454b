"""
HTTP helpers.

Both outbound integrations (the availability feed and the Telegram bot API) go
through these two functions so timeouts and headers stay consistent:
- every call carries an explicit timeout,
- non-2xx responses raise, leaving the failure policy to the caller.
"""

from __future__ import annotations

from typing import Any

import httpx


DEFAULT_USER_AGENT = "impfrust/0.1.0 (+https://local)"


def _request_headers(headers: dict[str, str] | None) -> dict[str, str]:
    merged = {"User-Agent": DEFAULT_USER_AGENT, "Accept": "application/json"}
    if headers:
        merged.update(headers)
    return merged


def get_json(
    url: str,
    *,
    params: dict[str, Any] | None = None,
    headers: dict[str, str] | None = None,
    timeout_seconds: float = 15,
) -> Any:
    """GET `url` and return the decoded JSON response.

    Raises:
        httpx.TimeoutException: If connecting or reading exceeds `timeout_seconds`.
        httpx.HTTPError: On other transport errors or non-2xx status codes.
        ValueError: If the response body is not valid JSON.
    """
    with httpx.Client(timeout=timeout_seconds, follow_redirects=True) as client:
        resp = client.get(url, params=params, headers=_request_headers(headers))
        resp.raise_for_status()
        return resp.json()


def post_form(
    url: str,
    *,
    data: dict[str, Any],
    headers: dict[str, str] | None = None,
    timeout_seconds: float = 15,
) -> int:
    """POST `data` as a form-encoded body and return the response status code.

    Raises:
        httpx.HTTPError: On transport errors or non-2xx status codes.
    """
    with httpx.Client(timeout=timeout_seconds) as client:
        resp = client.post(url, data=data, headers=_request_headers(headers))
        resp.raise_for_status()
        return resp.status_code
