"""Upstream request definition and single-shot JSON fetching.

Upstreams are fetched exactly once per refresh cycle. There are no retries:
a failed or slow upstream simply yields no payload for that cycle and the
fields that depend on it fall through their candidate chains.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

import requests

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 12
USER_AGENT = "DossierBot/1.0"


class FetchError(Exception):
    """Exception raised when an upstream cannot deliver a usable payload."""
    def __init__(self, source_id: str, message: str, original_error: Optional[Exception] = None):
        self.source_id = source_id
        self.message = message
        self.original_error = original_error
        super().__init__(f"{source_id}: {message}")


class UpstreamRateLimited(FetchError):
    """Upstream answered but its payload is a throttle or quota notice."""
    pass


@dataclass(frozen=True)
class UpstreamRequest:
    """One upstream endpoint queried per refresh cycle.

    ``notice_probe`` inspects a decoded payload and returns a non-empty string
    when the upstream replied with a throttle/error notice instead of data.
    """
    source_id: str
    url: str
    method: str = "GET"
    params: Dict[str, Any] = field(default_factory=dict)
    json_body: Optional[Dict[str, Any]] = None
    headers: Dict[str, str] = field(default_factory=dict)
    notice_probe: Optional[Callable[[Any], Optional[str]]] = None


def fetch_json(
    request: UpstreamRequest,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
    session: Optional[requests.Session] = None,
) -> Any:
    """
    Fetch one upstream and decode its JSON body.

    Args:
        request: Upstream definition
        timeout: Per-request timeout in seconds (connect and read)
        session: Optional shared requests session

    Returns:
        Decoded JSON payload

    Raises:
        UpstreamRateLimited: If the payload is a throttle notice
        FetchError: On transport failure, timeout, non-2xx, or invalid JSON
    """
    http = session or requests
    headers = {"User-Agent": USER_AGENT, **request.headers}

    try:
        if request.method.upper() == "POST":
            resp = http.post(
                request.url,
                params=request.params or None,
                json=request.json_body,
                headers=headers,
                timeout=timeout,
            )
        else:
            resp = http.get(
                request.url,
                params=request.params or None,
                headers=headers,
                timeout=timeout,
            )
        resp.raise_for_status()
    except requests.Timeout as e:
        raise FetchError(request.source_id, f"timed out after {timeout}s", e)
    except requests.RequestException as e:
        raise FetchError(request.source_id, str(e), e)

    try:
        payload = resp.json()
    except ValueError as e:
        raise FetchError(request.source_id, "response is not valid JSON", e)

    if request.notice_probe is not None:
        notice = request.notice_probe(payload)
        if notice:
            raise UpstreamRateLimited(request.source_id, notice)

    logger.debug(f"Fetched {request.source_id} (HTTP {resp.status_code})")
    return payload
