# ============================================================================
# src/notarial_intake/cache/cache_check.py
# ============================================================================
"""
Server-side "already processed" check.

Asks the backend which page content hashes it has seen before, globally or
within the current session. The answer is a hint only: explicit uploads are
always processed, and a failing check degrades to "nothing known".
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Optional, Set

import aiohttp

from ..config import service_settings

logger = logging.getLogger(__name__)


@dataclass
class CacheCheckResult:
    known_global: Set[str] = field(default_factory=set)
    known_in_session: Set[str] = field(default_factory=set)

    def is_known(self, content_hash: str) -> bool:
        return content_hash in self.known_global or content_hash in self.known_in_session


class CacheCheckClient:
    """aiohttp client for the cache-check route."""

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.config = config or {}
        self.base_url = self.config.get('service_url', service_settings.EXTRACTION_SERVICE_URL).rstrip('/')
        self.path = self.config.get('cache_check_path', service_settings.CACHE_CHECK_PATH)
        self.token = self.config.get('api_token', service_settings.API_TOKEN)
        self.timeout = self.config.get('request_timeout', service_settings.REQUEST_TIMEOUT)
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.timeout)
            self._session = aiohttp.ClientSession(timeout=timeout)
        return self._session

    async def close(self):
        if self._session and not self._session.closed:
            await self._session.close()

    async def check(self, hashes: Iterable[str], session_id: Optional[str] = None) -> CacheCheckResult:
        """
        Look up page content hashes.

        Args:
            hashes: sha256 hex digests of page contents
            session_id: Current session, for the in-session answer

        Returns:
            CacheCheckResult; empty when the route is unreachable
        """
        hashes = sorted(set(hashes))
        if not hashes:
            return CacheCheckResult()

        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
        payload = {"hashes": hashes, "session_id": session_id}

        try:
            session = await self._get_session()
            async with session.post(f"{self.base_url}{self.path}", json=payload, headers=headers) as response:
                if response.status != 200:
                    logger.warning(f"Cache check answered HTTP {response.status}, assuming nothing known")
                    return CacheCheckResult()
                data = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.warning(f"Cache check failed, assuming nothing known: {e}")
            return CacheCheckResult()

        if not isinstance(data, dict):
            return CacheCheckResult()

        requested = set(hashes)
        result = CacheCheckResult(
            known_global=set(data.get("known_global") or []) & requested,
            known_in_session=set(data.get("known_in_session") or []) & requested,
        )
        if result.known_global or result.known_in_session:
            logger.info(
                f"Cache check: {len(result.known_global)} known globally, "
                f"{len(result.known_in_session)} known in session"
            )
        return result
