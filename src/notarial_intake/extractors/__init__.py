from .page_splitter import PageSplitter, PageImage, SourceFile, detect_file_kind
from .extraction_client import ExtractionClient, ExtractionRequest, ExtractionResult
