"""Map server clients (WMS imagery + REST metadata)."""
from __future__ import annotations

import logging
import time
from typing import Dict, Optional

import requests

log = logging.getLogger(__name__)

_DEFAULT_TIMEOUT = 30  # seconds


class FetchError(Exception):
    """Network failure, timeout, or non-2xx response from the server.

    For HTTP errors ``status`` holds the status code and ``body`` the
    response text, and the message reads ``"<label> error (<status>): <body>"``.
    """

    def __init__(self, message: str, status: Optional[int] = None, body: str = ""):
        super().__init__(message)
        self.status = status
        self.body = body

    @classmethod
    def from_response(cls, resp: requests.Response, label: str = "WMS") -> "FetchError":
        body = resp.text.strip()
        return cls(f"{label} error ({resp.status_code}): {body}",
                   status=resp.status_code, body=body)


def create_session(username: str = "", password: str = "") -> requests.Session:
    """Return a session that sends HTTP basic auth when credentials are set."""
    session = requests.Session()
    if username or password:
        session.auth = (username, password)
    return session


def fetch_with_retry(
    session: requests.Session,
    url: str,
    *,
    params: Optional[dict] = None,
    headers: Optional[Dict[str, str]] = None,
    timeout: float = _DEFAULT_TIMEOUT,
    retries: int = 0,
    backoff: float = 1.0,
    label: str = "WMS",
) -> requests.Response:
    """GET *url*, retrying on connection errors and timeouts.

    Any non-2xx response raises :class:`FetchError` immediately with the
    response body as part of the message.
    """
    last_exc: Optional[Exception] = None
    for attempt in range(1, retries + 2):  # 1 initial + retries
        try:
            resp = session.get(url, params=params, headers=headers, timeout=timeout)
        except (requests.ConnectionError, requests.Timeout) as exc:
            last_exc = exc
            log.warning("Network error on %s (attempt %d/%d): %s",
                        url[:80], attempt, retries + 1, exc)
            if attempt <= retries:
                time.sleep(backoff * attempt)
            continue
        except requests.RequestException as exc:
            raise FetchError(str(exc)) from exc

        if not 200 <= resp.status_code < 300:
            log.warning("HTTP %d from %s", resp.status_code, url[:80])
            raise FetchError.from_response(resp, label=label)
        return resp

    raise FetchError(str(last_exc) if last_exc else
                     f"Failed after {retries + 1} attempts") from last_exc
