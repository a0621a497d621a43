# ============================================================================
# src/notarial_intake/extractors/page_splitter.py
# ============================================================================
"""
Page Splitter

Turns one uploaded file into the page units the extraction service works on:
- PDFs are rendered page by page to PNG with pypdfium2
- Flat images (and anything else that is not paged) pass through unchanged
  as a single page

Rendering is blocking work, so each page is rendered in a worker thread and
progress is reported back on the event loop after every page. A file that
cannot be paged fails as a whole with ConversionError; pages are never
dropped silently.
"""

import asyncio
import hashlib
import io
import logging
import mimetypes
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import pypdfium2
from PIL import Image

from ..utils.exceptions import ConversionError

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = {'.png', '.jpg', '.jpeg', '.tiff', '.tif', '.bmp', '.webp', '.gif', '.heic', '.heif'}

# (converted_pages, total_pages, percent)
ProgressCallback = Callable[[int, int, int], None]


def detect_file_kind(content: bytes) -> Optional[str]:
    """
    Detect file type by its magic bytes.

    Returns:
        'pdf', 'png', 'jpeg', 'gif', 'tiff', 'bmp', 'webp', 'heic' or None
    """
    header = content[:32]
    if header.startswith(b'%PDF'):
        return 'pdf'
    if header.startswith(b'\x89PNG'):
        return 'png'
    if header.startswith(b'\xff\xd8\xff'):
        return 'jpeg'
    if header.startswith(b'GIF87a') or header.startswith(b'GIF89a'):
        return 'gif'
    if header.startswith(b'II*\x00') or header.startswith(b'MM\x00*'):
        return 'tiff'
    if header.startswith(b'BM'):
        return 'bmp'
    if header.startswith(b'RIFF') and header[8:12] == b'WEBP':
        return 'webp'
    if len(header) >= 12 and header[4:8] == b'ftyp':
        if header[8:12] in (b'heic', b'heix', b'mif1', b'hevc'):
            return 'heic'
    return None


@dataclass
class SourceFile:
    """One file as uploaded by the user."""
    name: str
    content: bytes
    mime_type: Optional[str] = None
    _identity: Optional[str] = field(default=None, init=False, repr=False)

    def __post_init__(self):
        if not self.mime_type:
            guessed, _ = mimetypes.guess_type(self.name)
            self.mime_type = guessed or 'application/octet-stream'

    @classmethod
    def from_path(cls, path: Path, mime_type: Optional[str] = None) -> "SourceFile":
        path = Path(path)
        return cls(name=path.name, content=path.read_bytes(), mime_type=mime_type)

    @property
    def size(self) -> int:
        return len(self.content)

    @property
    def file_identity(self) -> str:
        """Content hash of the original upload; stable across re-uploads."""
        if self._identity is None:
            self._identity = hashlib.sha256(self.content).hexdigest()
        return self._identity

    @property
    def is_pdf(self) -> bool:
        return (
            detect_file_kind(self.content) == 'pdf'
            or self.mime_type == 'application/pdf'
            or Path(self.name).suffix.lower() == '.pdf'
        )


@dataclass
class PageImage:
    """A single page unit ready for classification and extraction."""
    name: str
    content: bytes
    mime_type: str
    page_number: int
    total_pages: int
    source_name: str
    file_identity: str
    _hash: Optional[str] = field(default=None, init=False, repr=False)

    @property
    def content_hash(self) -> str:
        if self._hash is None:
            self._hash = hashlib.sha256(self.content).hexdigest()
        return self._hash

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "mime_type": self.mime_type,
            "page_number": self.page_number,
            "total_pages": self.total_pages,
            "source_name": self.source_name,
            "size": len(self.content),
        }


class PageSplitter:
    """
    Splits uploads into page images.

    Example:
        splitter = PageSplitter({"render_dpi": 150})
        pages = await splitter.split(SourceFile.from_path(Path("escritura.pdf")))
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.config = config or {}
        self.dpi = self.config.get('render_dpi', 150)
        self.max_pages = self.config.get('max_pages_per_file', 60)
        self.logger = logging.getLogger(__name__)

    async def split(
        self,
        source: SourceFile,
        on_progress: Optional[ProgressCallback] = None,
    ) -> List[PageImage]:
        """
        Split one file into page images.

        Args:
            source: The uploaded file
            on_progress: Called after every rendered page with
                (converted, total, percent); percent never decreases

        Returns:
            Ordered list of pages (page_number starts at 1)

        Raises:
            ConversionError: The file is a PDF that could not be rendered
        """
        if not source.is_pdf:
            page = PageImage(
                name=source.name,
                content=source.content,
                mime_type=source.mime_type,
                page_number=1,
                total_pages=1,
                source_name=source.name,
                file_identity=source.file_identity,
            )
            if on_progress:
                on_progress(1, 1, 100)
            return [page]

        return await self._split_pdf(source, on_progress)

    async def _split_pdf(
        self,
        source: SourceFile,
        on_progress: Optional[ProgressCallback],
    ) -> List[PageImage]:
        try:
            pdf = await asyncio.to_thread(pypdfium2.PdfDocument, source.content)
        except pypdfium2.PdfiumError as e:
            raise ConversionError(f"Could not open PDF {source.name}: {e}", source.name)

        try:
            total = len(pdf)
            if total == 0:
                raise ConversionError(f"PDF {source.name} has no pages", source.name)
            if total > self.max_pages:
                raise ConversionError(
                    f"PDF {source.name} has {total} pages, limit is {self.max_pages}",
                    source.name,
                )

            stem = Path(source.name).stem
            pages: List[PageImage] = []
            last_percent = -1

            for index in range(total):
                try:
                    content = await asyncio.to_thread(self._render_page, pdf, index)
                except (pypdfium2.PdfiumError, OSError, ValueError) as e:
                    raise ConversionError(
                        f"Failed to render page {index + 1} of {source.name}: {e}",
                        source.name,
                        page_number=index + 1,
                    )

                pages.append(PageImage(
                    name=f"{stem}-p{index + 1}.png",
                    content=content,
                    mime_type='image/png',
                    page_number=index + 1,
                    total_pages=total,
                    source_name=source.name,
                    file_identity=source.file_identity,
                ))

                percent = int((index + 1) * 100 / total)
                if on_progress and percent > last_percent:
                    last_percent = percent
                    on_progress(index + 1, total, percent)

            self.logger.info(f"Split {source.name} into {total} page(s)")
            return pages
        finally:
            pdf.close()

    def _render_page(self, pdf: "pypdfium2.PdfDocument", index: int) -> bytes:
        """Render one page to PNG bytes (runs in a worker thread)."""
        scale = self.dpi / 72.0  # PDF points to pixels
        page = pdf[index]
        try:
            bitmap = page.render(scale=scale)
            pil_image: Image.Image = bitmap.to_pil()
            if pil_image.mode not in ('RGB', 'L'):
                pil_image = pil_image.convert('RGB')
            buffer = io.BytesIO()
            pil_image.save(buffer, format='PNG')
            return buffer.getvalue()
        finally:
            page.close()
