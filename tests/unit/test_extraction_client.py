# ============================================================================
# tests/unit/test_extraction_client.py
# ============================================================================
"""
Tests for the extraction service client.

The aiohttp session is replaced with a stub so no request leaves the process.
"""

import asyncio
import json
from unittest.mock import AsyncMock, patch

import aiohttp
import pytest

from notarial_intake.constants import DocumentSubtype
from notarial_intake.extractors.extraction_client import (
    ExtractionClient,
    ExtractionRequest,
    ExtractionResult,
)
from notarial_intake.extractors.page_splitter import PageImage
from notarial_intake.utils.exceptions import (
    ExtractionServerError,
    ExtractionTimeout,
    SessionExpired,
)


class StubResponse:
    def __init__(self, status, body):
        self.status = status
        self._body = body

    async def text(self):
        return self._body

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class StubSession:
    """Records every post and answers with a fixed status/body, or raises."""

    def __init__(self, status=200, body="{}", error=None):
        self.status = status
        self.body = body
        self.error = error
        self.calls = []
        self.closed = False

    def post(self, url, data=None, headers=None):
        self.calls.append({"url": url, "data": data, "headers": headers})
        if self.error is not None:
            raise self.error
        return StubResponse(self.status, self.body)


def _request(subtype=DocumentSubtype.DEED, **kwargs):
    page = PageImage(
        name="escritura-p1.png",
        content=b"\x89PNG fake",
        mime_type="image/png",
        page_number=1,
        total_pages=1,
        source_name="escritura.pdf",
        file_identity="abc",
    )
    return ExtractionRequest(page=page, subtype=subtype, snapshot={"sellers": []}, **kwargs)


def _client(session, **config):
    client = ExtractionClient({"service_url": "http://extract.local/", "extraction_path": "/extract",
                               "api_token": "secret", **config})
    return client, patch.object(client, "_get_session", AsyncMock(return_value=session))


@pytest.mark.asyncio
async def test_successful_extraction():
    body = json.dumps({
        "extracted_data": {"property": {"folio_real": "1234567"}},
        "raw_text": "FOLIO REAL 1234567",
        "known_prior_case": True,
    })
    session = StubSession(body=body)
    client, patcher = _client(session)

    with patcher:
        result = await client.extract(_request())

    assert isinstance(result, ExtractionResult)
    assert result.payload == {"property": {"folio_real": "1234567"}}
    assert result.raw_text == "FOLIO REAL 1234567"
    assert result.known_prior_case is True
    assert not result.repaired
    assert session.calls[0]["url"] == "http://extract.local/extract"
    assert session.calls[0]["headers"] == {"Authorization": "Bearer secret"}


@pytest.mark.asyncio
async def test_form_carries_subtype_and_snapshot():
    session = StubSession(body=json.dumps({"data": {"credits": []}}))
    client, patcher = _client(session)

    with patcher:
        result = await client.extract(_request(subtype=DocumentSubtype.IDENTIFICATION, session_id="s-1"))

    assert result.payload == {"credits": []}
    form = session.calls[0]["data"]
    fields = {options["name"]: value for options, _, value in form._fields}
    assert fields["document_type"] == "identification"
    assert json.loads(fields["context"]) == {"sellers": []}
    assert fields["session_id"] == "s-1"
    assert "case_id" not in fields


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [401, 403])
async def test_auth_rejection_is_session_expired(status):
    client, patcher = _client(StubSession(status=status, body="unauthorized"))
    with patcher, pytest.raises(SessionExpired):
        await client.extract(_request())


@pytest.mark.asyncio
async def test_server_error_keeps_status():
    client, patcher = _client(StubSession(status=502, body="bad gateway"))
    with patcher, pytest.raises(ExtractionServerError) as exc_info:
        await client.extract(_request())
    assert exc_info.value.status == 502
    assert exc_info.value.page_name == "escritura-p1.png"


@pytest.mark.asyncio
async def test_timeout_maps_to_extraction_timeout():
    client, patcher = _client(StubSession(error=asyncio.TimeoutError()), extraction_timeout=3.0)
    with patcher, pytest.raises(ExtractionTimeout) as exc_info:
        await client.extract(_request())
    assert exc_info.value.timeout_seconds == 3.0


@pytest.mark.asyncio
async def test_connection_error_is_server_error():
    client, patcher = _client(StubSession(error=aiohttp.ClientConnectionError("refused")))
    with patcher, pytest.raises(ExtractionServerError):
        await client.extract(_request())


@pytest.mark.asyncio
async def test_service_error_field_fails_page():
    client, patcher = _client(StubSession(body=json.dumps({"error": "unreadable page"})))
    with patcher, pytest.raises(ExtractionServerError):
        await client.extract(_request())


@pytest.mark.asyncio
async def test_malformed_json_is_repaired():
    body = 'Result: {"extracted_data": {"buyers": [{"name": "Juan Pérez"}]}'
    client, patcher = _client(StubSession(body=body))

    with patcher:
        result = await client.extract(_request())

    assert result.repaired
    assert result.payload["buyers"][0]["name"] == "Juan Pérez"


@pytest.mark.asyncio
async def test_body_without_json_is_unusable():
    client, patcher = _client(StubSession(body="<html>maintenance</html>"))
    with patcher, pytest.raises(ExtractionServerError):
        await client.extract(_request())


def test_result_from_cached_dict():
    result = ExtractionResult.from_dict({"payload": {"a": 1}, "raw_text": "x"}, from_cache=True)
    assert result.from_cache
    assert result.payload == {"a": 1}
    assert result.to_dict()["raw_text"] == "x"
