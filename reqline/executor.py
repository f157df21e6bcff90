"""reqline executor - HTTP request execution and cookie persistence."""

import logging
import time
from http.cookiejar import LoadError, LWPCookieJar
from pathlib import Path
from typing import Any, BinaryIO

import requests

from reqline.request import OutboundRequest, canonical_header_key

logger = logging.getLogger(__name__)

USER_AGENT = "reqline/0.1"

_HTTP_VERSIONS = {9: "HTTP/0.9", 10: "HTTP/1.0", 11: "HTTP/1.1", 20: "HTTP/2"}


class RequestResult:
    """Result of an HTTP request. The body is left unread in `stream`."""

    def __init__(self):
        self.status_code: int = 0
        self.reason: str = ""
        self.http_version: str = "HTTP/1.1"
        self.headers: list[tuple[str, str]] = []
        self.stream: BinaryIO | None = None
        self.elapsed_ms: float = 0
        self.error: str | None = None
        self._response: Any = None

    @property
    def status(self) -> str:
        return f"{self.status_code} {self.reason}".rstrip()

    def close(self) -> None:
        if self._response is not None:
            self._response.close()


def load_cookie_jar(path: str | Path) -> LWPCookieJar:
    """Open the persistent cookie jar, creating an empty one if missing.

    Raises OSError or http.cookiejar.LoadError if the file is unreadable.
    """
    path = Path(path).expanduser()
    jar = LWPCookieJar(str(path))
    if path.exists():
        jar.load(ignore_discard=True)
    return jar


def save_cookie_jar(jar: LWPCookieJar) -> None:
    Path(jar.filename).parent.mkdir(parents=True, exist_ok=True)
    jar.save(ignore_discard=True)


def build_session(
    cookie_jar: LWPCookieJar | None = None,
    insecure: bool = False,
) -> requests.Session:
    session = requests.Session()
    session.headers["User-Agent"] = USER_AGENT
    session.verify = not insecure
    if cookie_jar is not None:
        session.cookies = cookie_jar
    return session


def _header_pairs(resp) -> list[tuple[str, str]]:
    """Response headers as (name, value) pairs, repeated names kept apart."""
    raw_headers = getattr(resp.raw, "headers", None)
    if raw_headers is not None and hasattr(raw_headers, "getlist"):
        return [(name, value) for name in raw_headers for value in raw_headers.getlist(name)]
    return list(resp.headers.items())


def _log_request(req: OutboundRequest) -> None:
    logger.debug("> %s %s", req.method, req.url)
    for name in sorted(req.headers):
        for value in req.headers[name]:
            logger.debug("> %s: %s", name, value)
    if req.body:
        logger.debug("> body %r", req.body)
    logger.debug(">")


def _log_response(result: RequestResult) -> None:
    logger.debug("< %s", result.status)
    for name, value in sorted(result.headers, key=lambda h: canonical_header_key(h[0])):
        logger.debug("< %s: %s", name, value)
    logger.debug("<")


def execute_request(
    request: OutboundRequest,
    session: requests.Session | None = None,
    timeout: int = 30,
) -> RequestResult:
    """Send one OutboundRequest and return a structured result.

    - Follows redirects
    - Leaves the response body unread for streaming
    - Never raises for transport failures; sets `error` instead

    Repeated request headers are folded into a single comma-separated
    value.
    """
    result = RequestResult()
    session = session or build_session()
    headers = {name: ", ".join(values) for name, values in request.headers.items()}

    _log_request(request)
    try:
        start = time.monotonic()
        resp = session.request(
            method=request.method,
            url=request.url,
            headers=headers,
            data=request.body or None,
            timeout=timeout,
            allow_redirects=True,
            stream=True,
        )
        result.elapsed_ms = (time.monotonic() - start) * 1000
    except requests.exceptions.Timeout:
        result.error = f"Request timed out after {timeout}s"
        logger.debug("< error %s", result.error)
        return result
    except requests.exceptions.ConnectionError as e:
        result.error = f"Connection error: {e}"
        logger.debug("< error %s", result.error)
        return result
    except requests.exceptions.RequestException as e:
        result.error = f"Request failed: {e}"
        logger.debug("< error %s", result.error)
        return result

    result._response = resp
    result.status_code = resp.status_code
    result.reason = resp.reason or ""
    result.http_version = _HTTP_VERSIONS.get(getattr(resp.raw, "version", 11), "HTTP/1.1")
    result.headers = _header_pairs(resp)
    resp.raw.decode_content = True
    result.stream = resp.raw
    _log_response(result)
    return result
