"""Mesh byte retrieval from the host's asset surface.

``GET <base>/<relative-uri>`` through requests on a worker thread.
Responses are cached by content address (sha256) for the process
lifetime; failures come back as ``FetchError`` values.
"""

import asyncio
import hashlib
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import requests

from . import config

logger = logging.getLogger(__name__)


class FetchErrorKind(str, Enum):
    network = "network"
    timeout = "timeout"
    status = "status"
    config = "config"


@dataclass(frozen=True)
class FetchError:
    kind: FetchErrorKind
    message: str
    status_code: Optional[int] = None

    def __str__(self) -> str:
        return self.message


class MeshFetcher:
    def __init__(self, base_url: Optional[str] = None, timeout: Optional[float] = None,
                 session: Optional[requests.Session] = None):
        self.base_url = (config.ASSET_BASE_URL if base_url is None else base_url).rstrip("/")
        self.timeout = config.FETCH_TIMEOUT if timeout is None else timeout
        self.session = session or requests.Session()
        self._cache: dict[str, bytes] = {}
        self.request_count = 0

    def url_for(self, uri: str) -> Optional[str]:
        if uri.startswith(("http://", "https://")):
            return uri
        if not self.base_url:
            return None
        return f"{self.base_url}/{uri.lstrip('/')}"

    def cached(self, sha256: Optional[str]) -> Optional[bytes]:
        if not sha256:
            return None
        return self._cache.get(sha256.lower())

    async def fetch(self, uri: str, sha256: Optional[str] = None):
        """Return the bytes behind *uri*, or a ``FetchError``.

        A known *sha256* is served from the cache without a request. A
        digest mismatch is logged but the bytes are still returned.
        """
        hit = self.cached(sha256)
        if hit is not None:
            logger.debug(f"Mesh cache hit: {sha256[:12]}")
            return hit

        if not uri:
            return FetchError(FetchErrorKind.config, "Mesh reference has no uri.")
        url = self.url_for(uri)
        if url is None:
            return FetchError(FetchErrorKind.config, f"No asset base url configured for {uri}")

        self.request_count += 1
        logger.info(f"Fetching mesh: {url}")
        try:
            resp = await asyncio.to_thread(self.session.get, url, timeout=self.timeout)
        except requests.Timeout:
            logger.warning(f"Mesh fetch timed out after {self.timeout}s: {url}")
            return FetchError(FetchErrorKind.timeout, f"Timed out fetching {uri}")
        except requests.RequestException as e:
            logger.warning(f"Mesh fetch failed: {url}: {e}")
            return FetchError(FetchErrorKind.network, f"Network error fetching {uri}: {e}")

        if resp.status_code != 200:
            logger.warning(f"Mesh fetch returned HTTP {resp.status_code}: {url}")
            return FetchError(FetchErrorKind.status, f"HTTP {resp.status_code} for {uri}",
                              status_code=resp.status_code)

        data = resp.content
        digest = hashlib.sha256(data).hexdigest()
        if sha256 and digest != sha256.lower():
            logger.warning(f"sha256 mismatch for {uri}: expected {sha256[:12]}, "
                           f"got {digest[:12]}")
        self._cache[digest] = data
        if sha256:
            self._cache[sha256.lower()] = data
        return data
