"""
Storage side channels for uploads and page text.
"""

from .upload_adapter import (
    MAX_PAGE_TEXT_CHARS,
    UploadAdapter,
    HttpUploadAdapter,
    PageTextBuffer,
)
