# ============================================================================
# src/notarial_intake/config/service_config.py
# ============================================================================
"""
External Service Settings
- Extraction service
- Upload / page-text persistence
- Cache-check endpoint
"""

from pydantic import Field
from pydantic_settings import BaseSettings

class ServiceSettings(BaseSettings):
    EXTRACTION_SERVICE_URL: str = Field(
        default="http://localhost:3000",
        description="Base URL of the document extraction service"
    )
    EXTRACTION_PATH: str = Field(
        default="/api/expedientes/preaviso/process-document",
        description="Route that extracts a partial record from one page image"
    )
    UPLOAD_PATH: str = Field(
        default="/api/expedientes/documentos/upload",
        description="Route that stores an original upload and returns its id"
    )
    PAGE_TEXT_PATH: str = Field(
        default="/api/expedientes/documentos/ocr",
        description="Route that stores the raw text of one page"
    )
    CACHE_CHECK_PATH: str = Field(
        default="/api/expedientes/documentos/check-processed",
        description="Route answering which page hashes were already processed"
    )
    API_TOKEN: str = Field(
        default="",
        description="Bearer token sent to every service route"
    )
    REQUEST_TIMEOUT: int = Field(
        default=30,
        description="Timeout in seconds for upload and cache-check calls"
    )

service_settings = ServiceSettings()
