"""
Pipeline orchestrator: one matching run at a time, cooperatively cancellable.

Stages run strictly in order on a single worker:
    1. extract (and index) the source corpus
    2. segment the target corpus through its manifest
    3. lexical candidate search + semantic verification per article
    4. citations for matches that lack one

The stop flag is checked before every file, article and citation. A stop lets
the current item finish (its results stay persisted) and skips the rest of
the run. Per-item errors are logged and skipped; anything else fails the run.
"""
from __future__ import annotations

import functools
import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from translationmatcher.db import (
    DocumentRow,
    clear_candidates,
    clear_matches,
    init_db,
    insert_candidate,
    insert_match,
    list_documents,
    list_matches_without_citation,
    lookup_document,
)
from translationmatcher.errors import ExternalCallError, ExtractionError, OracleResponseError
from translationmatcher.oracle.client import Oracle, build_oracle
from translationmatcher.pipeline.cache import ExtractionCache
from translationmatcher.pipeline.citations import generate_citation
from translationmatcher.pipeline.events import LogStream, PipelineLog
from translationmatcher.pipeline.extract import extract_document
from translationmatcher.pipeline.indexing import index_document
from translationmatcher.pipeline.manifest import (
    Article,
    ManifestSegmenter,
    index_files,
    read_manifest,
    scan_corpus_files,
)
from translationmatcher.pipeline.matcher import SourceCorpus, find_candidates, rank_candidates, request_snippets
from translationmatcher.pipeline.verify import verify_candidate
from translationmatcher.schemas import AIConfig, PipelineConfig
from translationmatcher.settings import Settings

logger = logging.getLogger(__name__)

# Errors that skip one item and let the stage continue
ITEM_ERRORS = (OracleResponseError, ExternalCallError)

OracleFactory = Callable[[AIConfig, Settings], Oracle]


class RunState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    STOPPED = "stopped"
    FAILED = "failed"


@dataclass(frozen=True)
class PipelineStatus:
    is_running: bool
    stop_requested: bool
    state: RunState
    last_error: str | None = None


def format_cause_chain(exc: BaseException, *, max_depth: int = 3, max_chars: int = 200) -> str:
    """``Type: message`` for exc and up to ``max_depth - 1`` causes, each truncated."""
    parts: list[str] = []
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and len(parts) < max_depth and id(current) not in seen:
        seen.add(id(current))
        text = f"{type(current).__name__}: {current}"
        if len(text) > max_chars:
            text = text[: max_chars - 3] + "..."
        parts.append(text)
        current = current.__cause__ or current.__context__
    return " <- ".join(parts)


class PipelineOrchestrator:
    """Owns the run state; exposes start, stop and status."""

    def __init__(
        self,
        settings: Settings,
        *,
        db_path: Path | None = None,
        oracle_factory: OracleFactory = build_oracle,
        log_stream: LogStream | None = None,
    ) -> None:
        self._settings = settings
        self._db_path = db_path or settings.db_path
        self._oracle_factory = oracle_factory
        self.log_stream = log_stream or LogStream(maxsize=settings.log_queue_maxsize)
        self._log = PipelineLog(self.log_stream, logger_=logger)
        self._cache = ExtractionCache(
            self._db_path,
            extractor=functools.partial(extract_document, min_text_chars=settings.min_text_chars),
        )

        self._lock = threading.Lock()
        self._state = RunState.IDLE
        self._stop_requested = False
        self._last_error: str | None = None
        self._thread: threading.Thread | None = None

    # --- Control surface ---

    @property
    def db_path(self) -> Path:
        return self._db_path

    @property
    def state(self) -> RunState:
        with self._lock:
            return self._state

    @property
    def last_error(self) -> str | None:
        with self._lock:
            return self._last_error

    @property
    def stop_requested(self) -> bool:
        with self._lock:
            return self._stop_requested

    def status(self) -> PipelineStatus:
        with self._lock:
            return PipelineStatus(
                is_running=self._state == RunState.RUNNING,
                stop_requested=self._stop_requested,
                state=self._state,
                last_error=self._last_error,
            )

    def start(self, config: PipelineConfig) -> RunState:
        """Run the pipeline in the calling thread and return the final state.

        If a run is already in progress this logs a warning and returns
        ``RunState.RUNNING`` without doing anything.
        """
        if not self._begin():
            return RunState.RUNNING
        self._run(config)
        return self.state

    def start_background(self, config: PipelineConfig) -> bool:
        """Start a run on a worker thread. False if one is already running."""
        if not self._begin():
            return False
        self._thread = threading.Thread(
            target=self._run,
            args=(config,),
            name="translationmatcher-pipeline",
            daemon=True,
        )
        self._thread.start()
        return True

    def join(self, timeout: float | None = None) -> None:
        thread = self._thread
        if thread is not None:
            thread.join(timeout)

    def stop(self) -> bool:
        """Request a cooperative stop. False when nothing is running."""
        with self._lock:
            if self._state != RunState.RUNNING:
                return False
            self._stop_requested = True
        self._log.warning("Stop requested; finishing the current item", stage="pipeline")
        return True

    # --- Run ---

    def _begin(self) -> bool:
        with self._lock:
            if self._state == RunState.RUNNING:
                rejected = True
            else:
                rejected = False
                self._state = RunState.RUNNING
                self._stop_requested = False
                self._last_error = None
        if rejected:
            self._log.warning("Pipeline is already running; start ignored", stage="pipeline")
            return False
        self._log.info("Pipeline state: running", stage="pipeline", state=RunState.RUNNING.value)
        return True

    def _should_stop(self) -> bool:
        return self.stop_requested

    def _finish(self, final: RunState, error: str | None = None) -> None:
        with self._lock:
            self._state = final
            self._last_error = error
        level = "error" if final == RunState.FAILED else "info"
        self._log.emit(f"Pipeline state: {final.value}", level=level, stage="pipeline", state=final.value)

    def _run(self, config: PipelineConfig) -> None:
        final = RunState.FAILED
        error: str | None = None
        try:
            init_db(self._db_path)
            oracle = self._oracle_factory(config.ai, self._settings)

            self.extract_source_corpus(config, oracle)
            articles: list[Article] = []
            if not self._should_stop():
                articles = self.segment_target_corpus(config, oracle)
            if not self._should_stop():
                self.match_articles(config, oracle, articles)
            if not self._should_stop() and self._settings.enable_citations:
                self.generate_citations(oracle)

            final = RunState.STOPPED if self._should_stop() else RunState.COMPLETED
        except Exception as e:  # noqa: BLE001
            error = format_cause_chain(e)
            logger.exception("Pipeline failed")
            self._log.error(f"Pipeline failed: {error}", stage="pipeline")
        finally:
            self._finish(final, error)

    def _index(self, oracle: Oracle, document: DocumentRow, stage: str) -> None:
        if not self._settings.enable_document_indexing:
            return
        try:
            index_document(oracle, document, db_path=self._db_path, settings=self._settings)
        except ITEM_ERRORS as e:
            self._log.warning(f"Indexing failed for {document.display_name}: {e}", stage=stage)

    # --- Stage 1 ---

    def extract_source_corpus(self, config: PipelineConfig, oracle: Oracle) -> int:
        """Extract every source-corpus file; returns how many are available."""
        stage = "source"
        folder = Path(config.source_corpus.pdf_folder)
        files = scan_corpus_files(folder, suffixes=self._settings.corpus_suffixes)
        self._log.info(f"Extracting source corpus: {len(files)} file(s) in {folder}", stage=stage)

        available = 0
        for path in files:
            if self._should_stop():
                self._log.warning("Source extraction stopped", stage=stage)
                break
            try:
                cached = self._cache.get_or_extract(path, "source")
            except ExtractionError as e:
                self._log.warning(f"Skipping {path.name}: {e.reason}", stage=stage)
                continue

            available += 1
            doc = cached.document
            if cached.from_cache:
                self._log.info(f"Cached: {path.name}", stage=stage)
                continue
            self._log.info(f"Extracted {path.name} ({len(doc.extracted_text or '')} chars)", stage=stage)
            if doc.low_text_warning:
                self._log.warning(f"{path.name} has very little text (scanned without OCR?)", stage=stage)
            self._index(oracle, doc, stage)
        return available

    # --- Stage 2 ---

    def segment_target_corpus(self, config: PipelineConfig, oracle: Oracle) -> list[Article]:
        stage = "target"
        target = config.target_corpus
        manifest = read_manifest(Path(target.manifest_path))
        sheet_columns = target.selected_sheets()
        if not sheet_columns:
            self._log.warning("No manifest sheets selected", stage=stage)
            return []

        file_index = index_files(Path(target.pdf_folder), suffixes=self._settings.corpus_suffixes)
        self._log.info(
            f"Segmenting target corpus: {len(sheet_columns)} sheet(s), {len(file_index)} file(s)",
            stage=stage,
        )

        def resolve(path: Path) -> DocumentRow:
            cached = self._cache.get_or_extract(path, "target")
            if cached.from_cache:
                self._log.info(f"Cached: {path.name}", stage=stage)
            else:
                self._log.info(f"Extracted {path.name}", stage=stage)
                if cached.document.low_text_warning:
                    self._log.warning(f"{path.name} has very little text (scanned without OCR?)", stage=stage)
                self._index(oracle, cached.document, stage)
            return cached.document

        segmenter = ManifestSegmenter(file_index, resolve, should_stop=self._should_stop)
        report = segmenter.segment(manifest, sheet_columns)

        for missing in report.unmatched:
            self._log.warning(str(missing), stage=stage)
        for failed in report.failed_files:
            self._log.warning(f"Skipping {failed.path.name}: {failed.reason}", stage=stage)
        if report.stopped:
            self._log.warning("Target segmentation stopped", stage=stage)
        self._log.info(
            f"{len(report.articles)} article(s); {len(report.unmatched)} unmatched row(s)",
            stage=stage,
            articles=len(report.articles),
            unmatched=len(report.unmatched),
        )
        return report.articles

    # --- Stage 3 ---

    def match_articles(self, config: PipelineConfig, oracle: Oracle, articles: list[Article]) -> int:
        """Candidate search and verification; returns the number of new matches."""
        stage = "matching"
        cleared = clear_candidates(self._db_path)
        self._log.info(f"Cleared {cleared} candidate(s) from the previous run", stage=stage)
        if config.clear_previous_matches:
            removed = clear_matches(self._db_path)
            self._log.info(f"Cleared {removed} previous match(es)", stage=stage)

        corpus = SourceCorpus(list_documents(self._db_path, corpus_side="source"))
        if not len(corpus):
            self._log.warning("No extracted source documents; nothing to match", stage=stage)
            return 0

        new_matches = 0
        for n, article in enumerate(articles, start=1):
            if self._should_stop():
                self._log.warning("Matching stopped", stage=stage)
                break
            self._log.info(f"[{n}/{len(articles)}] {article.title} ({article.ref})", stage=stage)
            new_matches += self._match_article(oracle, article, corpus)

        self._log.info(f"Matching finished: {new_matches} new match(es)", stage=stage, matches=new_matches)
        return new_matches

    def _match_article(self, oracle: Oracle, article: Article, corpus: SourceCorpus) -> int:
        stage = "matching"
        settings = self._settings
        try:
            snippets = request_snippets(oracle, article, settings)
        except ITEM_ERRORS as e:
            self._log.warning(f"Snippet extraction failed for {article.ref}: {e}", stage=stage)
            return 0
        if not snippets:
            self._log.info(f"No usable snippets for {article.ref}", stage=stage)
            return 0

        candidates = find_candidates(
            article.ref,
            snippets,
            corpus,
            threshold=settings.partial_match_threshold,
            min_term_length=settings.min_term_length,
        )
        top = rank_candidates(candidates, limit=settings.top_candidates)
        self._log.info(
            f"{len(snippets)} snippet(s), {len(candidates)} candidate(s), verifying {len(top)}",
            stage=stage,
        )

        for candidate in top:
            insert_candidate(
                self._db_path,
                article_ref=article.ref,
                document_ref=candidate.document.fingerprint,
                reason=f"{candidate.match_count} snippet(s) matched",
                confidence=candidate.best_ratio,
                raw_response=candidate.to_dict(),
            )

        found = 0
        for candidate in top:
            try:
                match = verify_candidate(oracle, article, candidate, settings)
            except ITEM_ERRORS as e:
                self._log.warning(
                    f"Verification failed for {article.ref} vs {candidate.document.display_name}: {e}",
                    stage=stage,
                )
                continue
            if match is None:
                continue
            match_id = insert_match(
                self._db_path,
                article_ref=match.article_ref,
                document_ref=match.document_ref,
                match_type=match.match_type.value,
                confidence=match.confidence,
                evidence=match.evidence,
            )
            if match_id is None:
                self._log.info(f"Already matched: {article.ref} -> {candidate.document.display_name}", stage=stage)
                continue
            found += 1
            self._log.info(
                f"MATCH {article.ref} -> {candidate.document.display_name} "
                f"({match.match_type.value}, {match.confidence:.2f})",
                stage=stage,
                match_id=match_id,
            )
        return found

    # --- Stage 4 ---

    def generate_citations(self, oracle: Oracle) -> int:
        stage = "citations"
        pending = list_matches_without_citation(self._db_path)
        self._log.info(f"Generating citations for {len(pending)} match(es)", stage=stage)
        done = 0
        for match in pending:
            if self._should_stop():
                self._log.warning("Citation generation stopped", stage=stage)
                break
            document = lookup_document(self._db_path, fingerprint=match.document_ref, corpus_side="source")
            try:
                generate_citation(oracle, match, document, db_path=self._db_path)
            except ITEM_ERRORS as e:
                self._log.warning(f"Citation failed for match {match.id}: {e}", stage=stage)
                continue
            done += 1
            self._log.info(f"Citation generated for match {match.id}", stage=stage)
        return done
