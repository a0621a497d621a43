# ============================================================================
# src/notarial_intake/extractors/extraction_client.py
# ============================================================================
"""
Extraction Service Client

Sends one page image, its subtype and a snapshot of the current case record
to the extraction service and returns the partial record it extracted.

The service is opaque; this client only owns the wire format and the error
mapping:
- HTTP 401/403        -> SessionExpired (aborts the batch)
- other non-2xx       -> ExtractionServerError (page fails, batch goes on)
- deadline exceeded   -> ExtractionTimeout
- malformed JSON body -> repaired with json_repair before giving up
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

import aiohttp
from json_repair import repair_json

from ..config import service_settings
from ..constants.document_types import DocumentSubtype
from ..utils.exceptions import ExtractionServerError, ExtractionTimeout, SessionExpired
from .page_splitter import PageImage

logger = logging.getLogger(__name__)


@dataclass
class ExtractionRequest:
    """Everything the service needs to extract one page."""
    page: PageImage
    subtype: DocumentSubtype
    snapshot: Dict[str, Any]
    include_raw_text: bool = True
    session_id: Optional[str] = None
    case_id: Optional[str] = None
    user_text: Optional[str] = None


@dataclass
class ExtractionResult:
    """
    What came back for one page.

    Attributes:
        payload: Partial case record
        raw_text: Page text, when requested
        wizard_state: Service-side wizard snapshot (informational)
        known_prior_case: Service recognised a case this document belonged to
        from_cache: Served from the local fingerprint store
        elapsed: Seconds spent on the call
    """
    payload: Dict[str, Any] = field(default_factory=dict)
    raw_text: Optional[str] = None
    wizard_state: Optional[Dict[str, Any]] = None
    known_prior_case: Optional[bool] = None
    from_cache: bool = False
    elapsed: float = 0.0
    repaired: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "payload": self.payload,
            "raw_text": self.raw_text,
            "wizard_state": self.wizard_state,
            "known_prior_case": self.known_prior_case,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], from_cache: bool = False) -> "ExtractionResult":
        return cls(
            payload=dict(data.get("payload") or {}),
            raw_text=data.get("raw_text"),
            wizard_state=data.get("wizard_state"),
            known_prior_case=data.get("known_prior_case"),
            from_cache=from_cache,
        )


class ExtractionClient:
    """
    aiohttp client for the extraction route.

    Example:
        client = ExtractionClient()
        result = await client.extract(ExtractionRequest(page, subtype, snapshot))
        await client.close()
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.config = config or {}
        self.base_url = self.config.get('service_url', service_settings.EXTRACTION_SERVICE_URL).rstrip('/')
        self.path = self.config.get('extraction_path', service_settings.EXTRACTION_PATH)
        self.token = self.config.get('api_token', service_settings.API_TOKEN)
        self.timeout = self.config.get('extraction_timeout', 120.0)
        self._session: Optional[aiohttp.ClientSession] = None

        logger.info(f"Extraction client initialized: {self.base_url}{self.path}")

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.timeout)
            self._session = aiohttp.ClientSession(timeout=timeout)
        return self._session

    async def close(self):
        """Close the session."""
        if self._session and not self._session.closed:
            await self._session.close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    def _build_form(self, request: ExtractionRequest) -> aiohttp.FormData:
        form = aiohttp.FormData()
        form.add_field(
            'file',
            request.page.content,
            filename=request.page.name,
            content_type=request.page.mime_type,
        )
        form.add_field('document_type', request.subtype.value)
        form.add_field('context', json.dumps(request.snapshot, ensure_ascii=False))
        form.add_field('include_raw_text', 'true' if request.include_raw_text else 'false')
        if request.session_id:
            form.add_field('session_id', request.session_id)
        if request.case_id:
            form.add_field('case_id', request.case_id)
        if request.user_text:
            form.add_field('user_text', request.user_text)
        return form

    async def extract(self, request: ExtractionRequest) -> ExtractionResult:
        """
        Extract a partial record from one page.

        Args:
            request: Page, subtype and record snapshot

        Returns:
            ExtractionResult

        Raises:
            SessionExpired: Authentication rejected
            ExtractionTimeout: No answer within the time budget
            ExtractionServerError: Any other failure
        """
        page_name = request.page.name
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
        start = time.monotonic()

        try:
            session = await self._get_session()
            async with session.post(
                f"{self.base_url}{self.path}",
                data=self._build_form(request),
                headers=headers,
            ) as response:
                body = await response.text()
                status = response.status
        except asyncio.TimeoutError:
            raise ExtractionTimeout(
                f"Extraction of {page_name} timed out after {self.timeout}s",
                page_name=page_name,
                timeout_seconds=self.timeout,
            )
        except aiohttp.ClientError as e:
            raise ExtractionServerError(f"Extraction request for {page_name} failed: {e}", page_name=page_name)

        if status in (401, 403):
            raise SessionExpired(f"Extraction service rejected credentials (HTTP {status})")
        if status >= 300:
            raise ExtractionServerError(
                f"Extraction service answered HTTP {status} for {page_name}: {body[:200]}",
                page_name=page_name,
                status=status,
            )

        data, repaired = self._parse_json_response(body)
        if not isinstance(data, dict) or not data:
            raise ExtractionServerError(f"Unusable extraction response for {page_name}", page_name=page_name, status=status)
        if data.get("error"):
            raise ExtractionServerError(f"Extraction failed for {page_name}: {data['error']}", page_name=page_name, status=status)

        result = self._to_result(data)
        result.elapsed = time.monotonic() - start
        result.repaired = repaired
        logger.debug(f"Extracted {page_name} ({request.subtype.value}) in {result.elapsed:.2f}s")
        return result

    @staticmethod
    def _to_result(data: Dict[str, Any]) -> ExtractionResult:
        payload = data.get("extracted_data")
        if payload is None:
            payload = data.get("data")
        wizard_state = data.get("wizard_state")
        known = data.get("known_prior_case")
        return ExtractionResult(
            payload=payload if isinstance(payload, dict) else {},
            raw_text=data.get("raw_text") if isinstance(data.get("raw_text"), str) else None,
            wizard_state=wizard_state if isinstance(wizard_state, dict) else None,
            known_prior_case=known if isinstance(known, bool) else None,
        )

    def _parse_json_response(self, text: str) -> Tuple[Any, bool]:
        """
        Parse a response body with repair fallback.

        Returns:
            Tuple of (parsed_value, json_was_repaired)
        """
        try:
            return json.loads(text), False
        except json.JSONDecodeError:
            pass

        start = text.find('{')
        if start == -1:
            return {}, False

        repaired = repair_json(text[start:], return_objects=True)
        if isinstance(repaired, dict):
            logger.warning(
                f"json_repair fixed extraction response - potential data loss. "
                f"Original (first 200 chars): {text[:200]}"
            )
            return repaired, True
        return {}, False
