"""HTTP client the refresh engine uses to read the daily brief."""

import logging
from typing import Optional

import requests

from .models import Digest

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:8787"
DEFAULT_TIMEOUT_SECONDS = 60


class DigestUnavailable(Exception):
    """The digest service could not deliver a brief."""
    pass


class DigestRateLimited(DigestUnavailable):
    """The digest service answered with an explicit rate-limit signal."""
    pass


class DigestClient:
    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session

    def get_digest(self, force: bool = False) -> Digest:
        """
        GET /digest?force=0|1.

        Raises:
            DigestRateLimited: On HTTP 429
            DigestUnavailable: On transport failure, other non-2xx, or a
                response without ``ok`` and a ``data`` object
        """
        http = self.session or requests
        url = f"{self.base_url}/digest"
        try:
            resp = http.get(url, params={"force": "1" if force else "0"}, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise DigestUnavailable(f"Request to {url} failed: {e}") from e

        if resp.status_code == 429:
            raise DigestRateLimited(f"{url} returned HTTP 429")
        if not resp.ok:
            raise DigestUnavailable(f"{url} returned HTTP {resp.status_code}")

        try:
            body = resp.json()
        except ValueError as e:
            raise DigestUnavailable(f"{url} returned invalid JSON: {e}") from e

        if not isinstance(body, dict) or not body.get("ok") or not isinstance(body.get("data"), dict):
            raise DigestUnavailable(f"{url} returned no digest data")

        digest = Digest.from_wire(body["data"])
        logger.debug(f"Digest received (cacheHit={digest.cache_hit}, reason={digest.brief.reason})")
        return digest
