# ============================================================================
# src/notarial_intake/adapters/upload_adapter.py
# ============================================================================
"""
Upload / Persistence Adapter

Stores original uploads and per-page raw text with the backend. Both are
side channels: a failure here is logged and never fails the batch.

Page text usually arrives before the upload that owns it has returned a
document id, so PageTextBuffer holds it per processed document and flushes once
the id is known.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Any, Dict, List, Optional, Tuple

import aiohttp

from ..config import service_settings
from ..extractors.page_splitter import SourceFile

logger = logging.getLogger(__name__)

# Backend rejects longer page texts
MAX_PAGE_TEXT_CHARS = 20000


class UploadAdapter(ABC):
    """Storage side channel for originals and page text."""

    @abstractmethod
    async def upload(
        self,
        source: SourceFile,
        session_id: str,
        case_id: Optional[str],
        subtype: str,
    ) -> Optional[str]:
        """Store an original file. Returns the backend document id, or None."""
        pass

    @abstractmethod
    async def submit_page_text(self, document_id: str, page_number: int, text: str) -> bool:
        """Store the raw text of one page. Returns True when accepted."""
        pass

    async def close(self):
        pass


class HttpUploadAdapter(UploadAdapter):
    """
    aiohttp implementation against the backend document routes.

    Example:
        adapter = HttpUploadAdapter()
        doc_id = await adapter.upload(source, "session-1", "case-9", "deed")
        await adapter.submit_page_text(doc_id, 1, "ESCRITURA NUMERO ...")
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.config = config or {}
        self.base_url = self.config.get('service_url', service_settings.EXTRACTION_SERVICE_URL).rstrip('/')
        self.upload_path = self.config.get('upload_path', service_settings.UPLOAD_PATH)
        self.page_text_path = self.config.get('page_text_path', service_settings.PAGE_TEXT_PATH)
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

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"} if self.token else {}

    async def upload(
        self,
        source: SourceFile,
        session_id: str,
        case_id: Optional[str],
        subtype: str,
    ) -> Optional[str]:
        form = aiohttp.FormData()
        form.add_field('file', source.content, filename=source.name, content_type=source.mime_type)
        form.add_field('tipo', subtype)
        form.add_field('session_id', session_id)
        if case_id:
            form.add_field('tramiteId', case_id)

        try:
            session = await self._get_session()
            async with session.post(
                f"{self.base_url}{self.upload_path}", data=form, headers=self._headers()
            ) as response:
                if response.status >= 300:
                    logger.warning(f"Upload of {source.name} answered HTTP {response.status}")
                    return None
                data = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.warning(f"Upload of {source.name} failed: {e}")
            return None

        document_id = None
        if isinstance(data, dict):
            document_id = data.get("id") or (data.get("documento") or {}).get("id")
        if document_id:
            logger.info(f"Uploaded {source.name} as document {document_id}")
            return str(document_id)
        logger.warning(f"Upload of {source.name} returned no document id")
        return None

    async def submit_page_text(self, document_id: str, page_number: int, text: str) -> bool:
        text = (text or "").strip()
        if not text:
            return False
        payload = {
            "documentoId": document_id,
            "pageNumber": page_number,
            "text": text[:MAX_PAGE_TEXT_CHARS],
        }
        try:
            session = await self._get_session()
            async with session.post(
                f"{self.base_url}{self.page_text_path}", json=payload, headers=self._headers()
            ) as response:
                if response.status >= 300:
                    logger.warning(
                        f"Page text {document_id}#{page_number} answered HTTP {response.status}"
                    )
                    return False
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning(f"Page text {document_id}#{page_number} failed: {e}")
            return False
        return True


class PageTextBuffer:
    """
    Holds page text per processed document until its backend id is known.

    Keys are local document ids (``ProcessedDocument.id``), never file names:
    two uploads of ``scan.png`` are different documents. Text added after
    ``attach`` is sent straight away; ``release`` forgets a settled document.
    """

    def __init__(self, adapter: UploadAdapter):
        self.adapter = adapter
        self._pending: Dict[str, List[Tuple[int, str]]] = defaultdict(list)
        # None marks a document whose upload produced no id
        self._document_ids: Dict[str, Optional[str]] = {}
        self.sent = 0
        self.failed = 0

    def document_id(self, key: str) -> Optional[str]:
        return self._document_ids.get(key)

    def pending_count(self, key: Optional[str] = None) -> int:
        if key is not None:
            return len(self._pending.get(key, []))
        return sum(len(v) for v in self._pending.values())

    def tracked(self) -> int:
        return len(set(self._pending) | set(self._document_ids))

    async def add(self, key: str, page_number: int, text: Optional[str]) -> None:
        if not text or not text.strip():
            return
        if key not in self._document_ids:
            self._pending[key].append((page_number, text))
            return
        document_id = self._document_ids[key]
        if document_id is None:
            logger.debug(f"Dropping page text {page_number} of {key}: upload has no document id")
            return
        await self._send(document_id, page_number, text)

    async def attach(self, key: str, document_id: Optional[str]) -> None:
        """Bind a document to its backend id and flush what was buffered."""
        self._document_ids[key] = document_id or None
        buffered = sorted(self._pending.pop(key, []))
        if not document_id:
            if buffered:
                logger.info(f"Dropping {len(buffered)} buffered page text(s) of {key}: no document id")
            return
        for page_number, text in buffered:
            await self._send(document_id, page_number, text)

    def release(self, key: str) -> None:
        dropped = len(self._pending.pop(key, []))
        self._document_ids.pop(key, None)
        if dropped:
            logger.info(f"Dropping {dropped} page text(s) of {key}: document settled without upload")

    async def _send(self, document_id: str, page_number: int, text: str) -> None:
        ok = await self.adapter.submit_page_text(document_id, page_number, text)
        if ok:
            self.sent += 1
        else:
            self.failed += 1
