# ============================================================================
# src/notarial_intake/core/intake_pipeline.py
# ============================================================================
"""
Intake Pipeline

Runs one upload batch end to end:

    files -> classify -> split into pages -> (fingerprint store | extraction)
          -> reorder buffer -> merge engine -> wizard snapshot

One pipeline instance serves one session and keeps its canonical record
across batches. Per-page failures are counted and reported; a batch only
fails when no page could be extracted. Cancelling marks every unfinished
document as cancelled and discards results that arrive afterwards, while
everything already merged stays in the record.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from ..adapters.upload_adapter import PageTextBuffer, UploadAdapter
from ..cache.cache_check import CacheCheckClient
from ..cache.fingerprint_store import FingerprintKey, FingerprintStore
from ..classifiers.document_classifier import DocumentTypeClassifier
from ..config import base_settings
from ..constants.document_types import DocumentSubtype
from ..extractors.extraction_client import ExtractionRequest, ExtractionResult
from ..extractors.page_splitter import PageImage, PageSplitter, SourceFile
from ..utils.exceptions import CacheError, ConversionError, ExtractionTimeout, NotarialIntakeError
from ..utils.logging import LogAdapter, LogContext, log_performance
from .config import get_config
from .merge import MergeEngine
from .record import BatchStatus, CaseRecord, ProcessedDocument
from .reorder_buffer import PageOutcome, ReorderBuffer
from .scheduler import CancellationToken, ConcurrencyScheduler, ExtractionJob
from .session_store import RecordPersister, SessionStore

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, int], None]

SESSION_EXPIRED_REASON = "session_expired"

# Keys of an extraction payload that are workflow state, not document data
_NON_DOCUMENT_KEYS = {"pending_document_intent", "pending_people", "processed_documents", "folio_selection"}


@dataclass
class BatchResult:
    """Outcome of one upload batch."""
    batch_id: str
    status: BatchStatus = BatchStatus.COMPLETED
    total_pages: int = 0
    succeeded: int = 0
    failed: int = 0
    timed_out: int = 0
    cached: int = 0
    conversion_failures: int = 0
    errors: List[str] = field(default_factory=list)
    message: str = ""
    retry_available: bool = False
    reauthenticate_required: bool = False
    wizard: Dict[str, Any] = field(default_factory=dict)
    documents: List[ProcessedDocument] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "batch_id": self.batch_id,
            "status": self.status.value,
            "total_pages": self.total_pages,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "timed_out": self.timed_out,
            "cached": self.cached,
            "conversion_failures": self.conversion_failures,
            "errors": list(self.errors),
            "message": self.message,
            "retry_available": self.retry_available,
            "reauthenticate_required": self.reauthenticate_required,
            "wizard": self.wizard,
            "documents": [d.to_dict() for d in self.documents],
        }


@dataclass
class _ActiveBatch:
    """Cancellation state of a batch that is running or waiting its turn."""
    token: CancellationToken = field(default_factory=CancellationToken)
    documents: List[ProcessedDocument] = field(default_factory=list)
    buffer: Optional[ReorderBuffer] = None


class IntakePipeline:
    """
    Batch orchestration for one intake session.

    Example:
        pipeline = IntakePipeline("session-1", ExtractionClient(), case_id="case-9")
        result = await pipeline.process_batch(
            [SourceFile.from_path(Path("escritura.pdf"))],
            last_question="Sube la escritura del inmueble",
        )
        pipeline.wizard_snapshot.current_step
    """

    def __init__(
        self,
        session_id: str,
        extraction_client: Any,
        case_id: Optional[str] = None,
        config: Optional[Dict[str, Any]] = None,
        splitter: Optional[PageSplitter] = None,
        classifier: Optional[DocumentTypeClassifier] = None,
        store: Optional[FingerprintStore] = None,
        cache_check: Optional[CacheCheckClient] = None,
        uploader: Optional[UploadAdapter] = None,
        session_store: Optional[SessionStore] = None,
        record: Optional[CaseRecord] = None,
    ):
        """
        Args:
            session_id: Session the batches belong to
            extraction_client: ExtractionClient, or any object with an async
                ``extract(request)``, or an async callable taking the request
            case_id: Case being worked on, forwarded to the services
            config: Overrides for ``core.config.get_config()``
            store: Local fingerprint store; built from config when omitted
            cache_check: Server-side "already processed" client (optional)
            uploader: Storage side channel for originals and page text (optional)
            session_store: Where the record is persisted (optional)
            record: Record to resume from
        """
        self.session_id = session_id
        self.case_id = case_id
        self.config = {**get_config(), **(config or {})}

        self._extract = getattr(extraction_client, "extract", extraction_client)
        self.engine = MergeEngine(record)
        self.splitter = splitter or PageSplitter(self.config)
        self.classifier = classifier or DocumentTypeClassifier(self.config)
        self.scheduler = ConcurrencyScheduler(self.config)

        if store is None and self.config.get('use_cache', True):
            store = FingerprintStore(
                max_size=self.config.get('cache_max_size', 500),
                default_ttl=self.config.get('cache_ttl', 7200),
                cache_dir=base_settings.CACHE_DIR if self.config.get('cache_persist') else None,
            )
        self.store = store
        self.cache_check = cache_check if self.config.get('use_cache_check', True) else None
        self.uploader = uploader
        self.text_buffer = PageTextBuffer(uploader) if uploader else None

        self.persister: Optional[RecordPersister] = None
        if session_store is not None:
            self.persister = RecordPersister(
                session_store,
                session_id,
                debounce=self.config.get('persist_debounce', 1.5),
                case_id=case_id,
            )
            self.engine.add_listener(self._on_record_changed)

        self.documents: List[ProcessedDocument] = []
        self.progress: Dict[str, int] = {}
        # Batches of one session run one at a time; later ones wait their turn
        self._batch_lock = asyncio.Lock()
        self._active: Dict[str, _ActiveBatch] = {}
        self.logger = LogAdapter(logger, {"session_id": session_id})

    @classmethod
    def resume(
        cls,
        session_id: str,
        extraction_client: Any,
        session_store: SessionStore,
        **kwargs,
    ) -> "IntakePipeline":
        """Build a pipeline seeded with the last persisted record of a session."""
        data = session_store.load(session_id)
        record = CaseRecord.from_dict(data) if data else None
        if record is not None:
            logger.info(f"Resuming session {session_id} from stored record")
        return cls(session_id, extraction_client, session_store=session_store, record=record, **kwargs)

    @property
    def record(self) -> CaseRecord:
        return self.engine.record

    @property
    def wizard_snapshot(self):
        return self.engine.wizard_snapshot

    def cancel(self, reason: str = "cancelled") -> bool:
        """
        Cancel the running batch and any batch queued behind it.

        Returns:
            False when no batch is running or all were already cancelled
        """
        cancelled = False
        for active in list(self._active.values()):
            if not active.token.cancel(reason):
                continue
            cancelled = True
            if active.buffer is not None:
                active.buffer.discard()
            for document in active.documents:
                document.cancel()
        return cancelled

    @property
    def running(self) -> bool:
        return bool(self._active)

    async def process_batch(
        self,
        files: List[SourceFile],
        user_text: str = "",
        last_question: Optional[str] = None,
        force_reprocess: bool = False,
        on_progress: Optional[ProgressCallback] = None,
    ) -> BatchResult:
        """
        Process one upload batch.

        Args:
            files: Uploaded files, in the order the user gave them
            user_text: Free text sent along with the upload
            last_question: Last question the assistant asked; biases classification
            force_reprocess: Ignore cached page results
            on_progress: Receives (file name, percent) while files are split

        Returns:
            BatchResult
        """
        batch_id = uuid.uuid4().hex[:12]
        active = _ActiveBatch()
        self._active[batch_id] = active
        try:
            with LogContext(session_id=self.session_id, batch_id=batch_id):
                async with self._batch_lock:
                    return await self._run_batch(
                        batch_id, active, files, user_text, last_question, force_reprocess, on_progress
                    )
        finally:
            self._active.pop(batch_id, None)

    @log_performance(logger, "Intake batch")
    async def _run_batch(
        self,
        batch_id: str,
        active: _ActiveBatch,
        files: List[SourceFile],
        user_text: str,
        last_question: Optional[str],
        force_reprocess: bool,
        on_progress: Optional[ProgressCallback],
    ) -> BatchResult:
        token = active.token
        result = BatchResult(batch_id=batch_id)
        self.logger.info(f"Batch {batch_id}: {len(files)} file(s)")

        # 1. Accept and classify every file
        accepted = []
        for source in files:
            classification = self.classifier.classify(
                source.name, source.content, source.mime_type, last_question
            )
            document = ProcessedDocument(
                name=source.name,
                type=source.mime_type,
                size=source.size,
                original_file=source.name,
                subtype=classification.subtype.value,
            )
            self.documents.append(document)
            active.documents.append(document)
            accepted.append((source, document, classification.subtype))

        documents_by_id = {document.id: document for _, document, _ in accepted}
        result.documents = list(documents_by_id.values())
        upload_tasks = [
            asyncio.create_task(self._upload(source, document, subtype))
            for source, document, subtype in accepted
            if self.uploader is not None and not token.cancelled
        ]

        # 2. Split into pages and assign submission indices
        jobs: List[ExtractionJob] = []
        for source, document, subtype in accepted:
            if token.cancelled:
                break
            try:
                pages = await self.splitter.split(
                    source,
                    on_progress=lambda done, total, percent, name=source.name: self._report_progress(
                        name, percent, on_progress
                    ),
                )
            except ConversionError as e:
                self.logger.error(f"Conversion failed for {source.name}: {e}")
                document.fail(str(e))
                result.conversion_failures += 1
                result.errors.append(str(e))
                continue

            document.pages_total = len(pages)
            if force_reprocess and self.store is not None:
                self.store.invalidate_file(source.file_identity)
            for page in pages:
                jobs.append(ExtractionJob(index=len(jobs), page=page, subtype=subtype, document_id=document.id))

        result.total_pages = len(jobs)
        text_tasks: List[asyncio.Task] = []
        buffer = ReorderBuffer(
            apply=lambda outcome: self._apply_outcome(outcome, result, documents_by_id, text_tasks)
        )
        active.buffer = buffer

        if jobs and not token.cancelled:
            await self._mark_known_pages(jobs, documents_by_id)

            # 3. Serve what the fingerprint store already has
            to_dispatch: List[ExtractionJob] = []
            cached_outcomes: List[PageOutcome] = []
            for job in jobs:
                cached = None if force_reprocess else self._cached_result(job)
                if cached is not None:
                    cached_outcomes.append(PageOutcome(index=job.index, job=job, result=cached))
                else:
                    to_dispatch.append(job)
            for outcome in cached_outcomes:
                buffer.submit(outcome.index, outcome)
            if cached_outcomes:
                self.logger.info(f"{len(cached_outcomes)} page(s) served from cache")

            # 4. Extract the rest
            async def dispatch(job: ExtractionJob, snapshot: Dict[str, Any]) -> ExtractionResult:
                request = ExtractionRequest(
                    page=job.page,
                    subtype=job.subtype,
                    snapshot=snapshot,
                    include_raw_text=self.config.get('include_raw_text', True),
                    session_id=self.session_id,
                    case_id=self.case_id,
                    user_text=user_text or None,
                )
                return await self._extract(request)

            await self.scheduler.run(
                to_dispatch,
                dispatch,
                self.engine.snapshot,
                lambda outcome: buffer.submit(outcome.index, outcome),
                token,
                wait_applied=buffer.wait_applied,
            )

        # 5. Settle documents and side channels
        if token.cancelled:
            buffer.discard()
            for document in documents_by_id.values():
                document.cancel(token.reason if token.reason == SESSION_EXPIRED_REASON else None)
            for task in upload_tasks:
                task.cancel()
        else:
            for document in documents_by_id.values():
                document.finish()

        await asyncio.gather(*upload_tasks, return_exceptions=True)
        if text_tasks:
            await asyncio.gather(*text_tasks, return_exceptions=True)
        if self.text_buffer is not None:
            for document_id in documents_by_id:
                self.text_buffer.release(document_id)
        if self.persister is not None:
            await self.persister.flush()

        self._finalize(result, token)
        self.logger.info(f"Batch {batch_id} {result.status.value}: {result.message}")
        return result

    def _report_progress(self, name: str, percent: int, on_progress: Optional[ProgressCallback]) -> None:
        self.progress[name] = percent
        if on_progress:
            on_progress(name, percent)

    async def _upload(self, source: SourceFile, document: ProcessedDocument, subtype: DocumentSubtype) -> None:
        try:
            document_id = await self.uploader.upload(source, self.session_id, self.case_id, subtype.value)
        except NotarialIntakeError as e:
            self.logger.warning(f"Upload of {source.name} failed: {e}")
            document_id = None
        document.document_id = document_id
        await self.text_buffer.attach(document.id, document_id)

    async def _mark_known_pages(self, jobs: List[ExtractionJob], documents_by_id: Dict[str, ProcessedDocument]) -> None:
        if self.cache_check is None:
            return
        known = await self.cache_check.check([job.page.content_hash for job in jobs], self.session_id)
        for job in jobs:
            if known.is_known(job.page.content_hash):
                documents_by_id[job.document_id].known_prior = True

    def _cache_key(self, page: PageImage, subtype: DocumentSubtype) -> FingerprintKey:
        return FingerprintKey(page.file_identity, page.name, subtype.value)

    def _cached_result(self, job: ExtractionJob) -> Optional[ExtractionResult]:
        if self.store is None:
            return None
        data = self.store.get(self._cache_key(job.page, job.subtype))
        if data is None:
            return None
        return ExtractionResult.from_dict(data, from_cache=True)

    def _apply_outcome(
        self,
        outcome: PageOutcome,
        result: BatchResult,
        documents_by_id: Dict[str, ProcessedDocument],
        text_tasks: List[asyncio.Task],
    ) -> None:
        job: ExtractionJob = outcome.job
        page: PageImage = job.page
        document = documents_by_id[job.document_id]

        if not outcome.ok:
            error = outcome.error or ValueError("empty extraction result")
            if isinstance(error, ExtractionTimeout):
                result.timed_out += 1
            result.failed += 1
            result.errors.append(f"{page.name}: {error}")
            document.record_page(error=str(error))
        else:
            extraction: ExtractionResult = outcome.result
            self.engine.merge(extraction.payload, source=page.name, source_type=job.subtype.value)
            fields = {k: v for k, v in extraction.payload.items() if k not in _NON_DOCUMENT_KEYS}
            self.engine.record_document(document.name, job.subtype.value, fields)
            document.record_page(fields=fields)
            if extraction.known_prior_case:
                document.known_prior = True
            result.succeeded += 1

            if extraction.from_cache:
                result.cached += 1
            elif self.store is not None:
                try:
                    self.store.put(self._cache_key(page, job.subtype), extraction.to_dict())
                except CacheError as e:
                    self.logger.warning(f"Not caching {page.name}: {e}")

            if extraction.raw_text and self.text_buffer is not None:
                text_tasks.append(asyncio.create_task(
                    self.text_buffer.add(job.document_id, page.page_number, extraction.raw_text)
                ))

        if document.pages_done + document.pages_failed >= document.pages_total:
            document.finish()

    def _on_record_changed(self, record: CaseRecord, snapshot, report) -> None:
        self.persister.schedule(record.to_dict(), snapshot.to_dict())

    def _finalize(self, result: BatchResult, token: CancellationToken) -> None:
        total = result.total_pages
        if token.cancelled and token.reason == SESSION_EXPIRED_REASON:
            result.status = BatchStatus.SESSION_EXPIRED
            result.reauthenticate_required = True
            result.message = (
                f"Session expired after {result.succeeded} of {total} pages; "
                f"sign in again and retry the batch"
            )
        elif token.cancelled:
            result.status = BatchStatus.CANCELLED
            result.message = f"Cancelled after {result.succeeded} of {total} pages; merged data was kept"
        elif result.succeeded == 0 and (result.failed or result.conversion_failures):
            result.status = BatchStatus.FAILED
            result.message = self._failure_message(result)
        elif result.failed or result.conversion_failures:
            result.status = BatchStatus.PARTIAL
            result.message = self._failure_message(result)
        else:
            result.status = BatchStatus.COMPLETED
            result.message = f"Processed {total} page(s)"

        result.retry_available = result.status in (
            BatchStatus.FAILED,
            BatchStatus.PARTIAL,
            BatchStatus.SESSION_EXPIRED,
        )
        result.wizard = self.engine.wizard_snapshot.to_dict()

    @staticmethod
    def _failure_message(result: BatchResult) -> str:
        parts = []
        if result.total_pages:
            message = f"{result.failed} of {result.total_pages} pages failed"
            if result.timed_out:
                message += f" ({result.timed_out} timed out)"
            parts.append(message)
        if result.conversion_failures:
            parts.append(f"{result.conversion_failures} file(s) could not be converted")
        return "; ".join(parts)
