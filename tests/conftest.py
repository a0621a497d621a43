# ============================================================================
# FILE: tests/conftest.py
# ============================================================================
"""
Pytest configuration and shared fixtures for testing.
"""

import asyncio
import io
from typing import Any, Dict, List, Optional

import pytest
import pypdfium2
from PIL import Image

from notarial_intake.core.record import (
    CaseRecord,
    PartyRecord,
    PropertyRecord,
    AddressRecord,
    PersonType,
)
from notarial_intake.extractors.extraction_client import ExtractionRequest, ExtractionResult
from notarial_intake.extractors.page_splitter import SourceFile


def make_pdf(pages: int = 3) -> bytes:
    """Blank letter-size PDF with the given number of pages."""
    pdf = pypdfium2.PdfDocument.new()
    for _ in range(pages):
        pdf.new_page(612, 792)
    buffer = io.BytesIO()
    pdf.save(buffer)
    pdf.close()
    return buffer.getvalue()


def make_png(size=(40, 25), color=(200, 200, 200)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format="PNG")
    return buffer.getvalue()


class FakeExtractionClient:
    """
    Stands in for the extraction service.

    Responses are keyed by page name. A value may be a payload dict, an
    exception instance to raise, or a callable taking the request.
    """

    def __init__(
        self,
        responses: Optional[Dict[str, Any]] = None,
        delays: Optional[Dict[str, float]] = None,
        raw_text: Optional[str] = None,
    ):
        self.responses = responses or {}
        self.delays = delays or {}
        self.raw_text = raw_text
        self.requests: List[ExtractionRequest] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def extract(self, request: ExtractionRequest) -> ExtractionResult:
        self.requests.append(request)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delays.get(request.page.name, 0))
            response = self.responses.get(request.page.name, {})
            if callable(response):
                response = response(request)
            if isinstance(response, BaseException):
                raise response
            return ExtractionResult(payload=response, raw_text=self.raw_text)
        finally:
            self.in_flight -= 1

    def snapshot_for(self, page_name: str) -> Dict[str, Any]:
        for request in self.requests:
            if request.page.name == page_name:
                return request.snapshot
        raise KeyError(page_name)


@pytest.fixture
def pdf_bytes():
    """Three-page PDF"""
    return make_pdf(3)


@pytest.fixture
def png_bytes():
    return make_png()


@pytest.fixture
def registry_pdf(pdf_bytes):
    return SourceFile(name="folio_real_inscripcion.pdf", content=pdf_bytes)


@pytest.fixture
def id_image(png_bytes):
    return SourceFile(name="ine_comprador.png", content=png_bytes)


@pytest.fixture
def pipeline_config(tmp_path):
    """Pipeline settings that keep tests off the network and the real cache dir"""
    return {
        "use_cache_check": False,
        "cache_persist": False,
        "extraction_timeout": 5.0,
        "persist_debounce": 0.01,
        "render_dpi": 36,
    }


@pytest.fixture
def complete_record():
    """Record where every wizard step is done"""
    record = CaseRecord()
    record.credits = []
    record.sellers = [PartyRecord(party_id="s1", person_type=PersonType.NATURAL,
                                  name="María López Hernández", tax_id="LOHM800101AB1")]
    record.buyers = [PartyRecord(party_id="b1", person_type=PersonType.NATURAL,
                                 name="Juan Pérez García", tax_id="PEGJ850505XY2",
                                 marital_status="single")]
    record.property = PropertyRecord(
        folio_real="1234567",
        parcels=["LOTE 5"],
        address=AddressRecord(street="Av. Reforma", exterior_number="100"),
        has_mortgage=False,
    )
    return record


@pytest.fixture
def pdf_factory():
    return make_pdf


@pytest.fixture
def png_factory():
    return make_png


@pytest.fixture
def extraction_client_factory():
    return FakeExtractionClient
