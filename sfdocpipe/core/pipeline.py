"""
Core pipeline orchestration module.

This module drives one ingestion run: every configured URL is fetched,
chunked, enriched, embedded in batches and upserted into the vector store.
A failing URL is recorded and the run moves on; only run-wide faults
(invalid configuration, rejected embedding credentials, an unreachable
store at start-up) stop the run.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Union

from ..components.chunkers import BaseChunker, SlidingWindowChunker
from ..components.embedders import BaseEmbedder
from ..components.enrichers import MetadataEnricher
from ..components.fetchers import BaseFetcher
from ..components.reporters import ErrorReporter
from ..components.stores import BaseVectorStore
from ..utils.config import load_config, parse_config
from ..utils.config_models import PipelineConfig, PipelineSettings
from ..utils.data_models import FailureRecord, RunStatus, RunSummary, utc_now
from ..utils.errors import (
    ConfigError,
    EmbeddingAuthError,
    EmbeddingError,
    FetchError,
    PipelineError,
    RunAbortedError,
    StorageError,
    RETRYABLE_EMBEDDING_ERRORS,
    RETRYABLE_FETCH_ERRORS,
    RETRYABLE_STORAGE_ERRORS,
)
from ..utils.retry import RetryPolicy
from ..utils.state_manager import StateManager
from .factory import (
    build_component,
    FETCHER_REGISTRY,
    EMBEDDER_REGISTRY,
    STORE_REGISTRY,
    NOTIFIER_REGISTRY,
    STATE_REGISTRY,
)

logger = logging.getLogger(__name__)


@dataclass
class UrlOutcome:
    """What happened to a single URL during a run."""

    source_url: str
    attempted: bool = True
    succeeded: bool = False
    skipped: bool = False
    documents_stored: int = 0
    content_hash: Optional[str] = None
    failure: Optional[FailureRecord] = None


@dataclass
class PipelineComponents:
    fetcher: BaseFetcher
    chunker: BaseChunker
    enricher: MetadataEnricher
    embedder: BaseEmbedder
    store: BaseVectorStore
    reporter: ErrorReporter
    state_manager: Optional[StateManager] = None


def build_components(config: PipelineConfig) -> PipelineComponents:
    """Builds all pipeline components based on the configuration."""
    logger.info("Building pipeline components...")
    settings = config.settings
    chunker = SlidingWindowChunker(
        max_chunk_size=settings.max_chunk_size,
        chunk_overlap=settings.chunk_overlap,
        boundary_tolerance=settings.boundary_tolerance,
    )
    fetcher = build_component(config.fetcher, FETCHER_REGISTRY)
    embedder = build_component(
        config.embedder,
        EMBEDDER_REGISTRY,
        dimensions=settings.embedding_dimensions,
        max_batch_size=settings.embedding_batch_size,
    )
    store = build_component(
        config.store, STORE_REGISTRY, dimensions=settings.embedding_dimensions
    )
    notifier = (
        build_component(config.notifier, NOTIFIER_REGISTRY) if config.notifier else None
    )
    state_manager = (
        StateManager(backend=build_component(config.state, STATE_REGISTRY))
        if config.state
        else None
    )
    logger.info("All components built successfully.")
    return PipelineComponents(
        fetcher=fetcher,
        chunker=chunker,
        enricher=MetadataEnricher(),
        embedder=embedder,
        store=store,
        reporter=ErrorReporter(notifier, notify_on_failure=settings.notify_on_failure),
        state_manager=state_manager,
    )


def _unique(urls: Sequence[str]) -> List[str]:
    seen = set()
    unique = []
    for url in urls:
        if url in seen:
            logger.warning(f"Ignoring duplicate URL in configuration: {url}")
            continue
        seen.add(url)
        unique.append(url)
    return unique


class Pipeline:
    """
    Runs the ingestion stages over a fixed list of URLs, once.

    State machine: IDLE -> RUNNING -> COMPLETED | FAILED. URLs are processed
    concurrently by up to `settings.parallelism` workers; each worker owns
    one URL at a time, so no two workers ever write the same document id.
    Chunks of a document are embedded and stored in sequence order.
    """

    def __init__(
        self,
        urls: Sequence[str],
        components: PipelineComponents,
        settings: PipelineSettings = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.urls = _unique(urls)
        self.components = components
        self.settings = settings or PipelineSettings()
        self.retry_policy = RetryPolicy(
            attempts=self.settings.retry_attempts,
            backoff=self.settings.retry_backoff,
            sleep=sleep,
        )
        self.status = RunStatus.IDLE
        self.summary: Optional[RunSummary] = None
        self._cancel_event = threading.Event()
        self._abort_event = threading.Event()

    @classmethod
    def from_config(cls, config: PipelineConfig, **kwargs) -> "Pipeline":
        return cls(config.urls, build_components(config), config.settings, **kwargs)

    def cancel(self):
        """Stops new URLs from starting. URLs already in flight finish."""
        logger.info("Cancellation requested; no new URLs will be started.")
        self._cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    # ------------------------------------------------------------------
    # Per-URL stages
    # ------------------------------------------------------------------

    def _fetch(self, url: str):
        result = self.components.fetcher.fetch(url)
        if not result.ok:
            raise FetchError(result.error, url=url, status_code=result.status_code)
        return result

    def _failed(self, url, stage, error, stored=0, context=None) -> UrlOutcome:
        cause = error.message if isinstance(error, PipelineError) else str(error)
        if context:
            cause = f"{context}: {cause}"
        return UrlOutcome(
            source_url=url,
            documents_stored=stored,
            failure=FailureRecord(
                source_url=url,
                stage=stage,
                cause=cause,
                attempts=getattr(error, "attempts", 1),
            ),
        )

    def _process_url(self, url: str) -> UrlOutcome:
        if self._cancel_event.is_set() or self._abort_event.is_set():
            return UrlOutcome(source_url=url, attempted=False)

        c = self.components
        try:
            result = self.retry_policy.call(
                self._fetch,
                url,
                retry_on=RETRYABLE_FETCH_ERRORS,
                description=f"Fetching '{url}'",
            )
        except FetchError as e:
            return self._failed(url, "fetch", e)

        content_hash = StateManager.content_hash(result.text)
        if (
            self.settings.skip_unchanged
            and c.state_manager is not None
            and not c.state_manager.has_changed(url, content_hash)
        ):
            logger.info(f"Content of '{url}' is unchanged since the last run. Skipping.")
            return UrlOutcome(source_url=url, succeeded=True, skipped=True)

        try:
            enriched = [
                c.enricher.enrich(chunk, scraped_at=result.fetched_at)
                for chunk in c.chunker.split(result.text, url)
            ]
        except Exception as e:
            logger.error(f"Error chunking document '{url}': {e}", exc_info=True)
            return self._failed(url, "chunk", e)

        batch_size = self.settings.embedding_batch_size
        total_batches = (len(enriched) + batch_size - 1) // batch_size
        logger.info(f"Split '{url}' into {len(enriched)} chunks ({total_batches} batches).")

        stored = 0
        for batch_number, start in enumerate(range(0, len(enriched), batch_size), 1):
            if self._abort_event.is_set():
                return self._failed(
                    url, "embed", EmbeddingError("Run aborted before batch was embedded"), stored
                )
            batch = enriched[start : start + batch_size]
            label = f"batch {batch_number}/{total_batches} of '{url}'"
            try:
                vectors = self.retry_policy.call(
                    c.embedder.embed,
                    batch,
                    retry_on=RETRYABLE_EMBEDDING_ERRORS,
                    description=f"Embedding {label}",
                )
            except EmbeddingAuthError:
                self._abort_event.set()
                raise
            except EmbeddingError as e:
                return self._failed(url, "embed", e, stored, context=label)

            try:
                stored += self.retry_policy.call(
                    c.store.upsert,
                    list(zip(batch, vectors)),
                    retry_on=RETRYABLE_STORAGE_ERRORS,
                    description=f"Storing {label}",
                )
            except (StorageError, ConfigError) as e:
                return self._failed(url, "store", e, stored, context=label)

        logger.info(f"Stored {stored} documents for '{url}'.")
        return UrlOutcome(
            source_url=url,
            succeeded=True,
            documents_stored=stored,
            content_hash=content_hash,
        )

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def _summarize(self, outcomes: List[UrlOutcome], started_at, status) -> RunSummary:
        attempted = [o for o in outcomes if o.attempted]
        return RunSummary(
            urls_attempted=len(attempted),
            urls_succeeded=sum(1 for o in attempted if o.succeeded),
            urls_failed=sum(1 for o in attempted if not o.succeeded),
            urls_skipped=sum(1 for o in attempted if o.skipped),
            documents_stored=sum(o.documents_stored for o in attempted),
            started_at=started_at,
            finished_at=utc_now(),
            status=status,
            cancelled=self.cancelled,
            failures=tuple(o.failure for o in attempted if o.failure is not None),
        )

    def _finish(self, outcomes: List[UrlOutcome], started_at, status) -> RunSummary:
        self.status = status
        self.summary = self._summarize(outcomes, started_at, status)
        state_manager = self.components.state_manager
        if state_manager is not None:
            for outcome in outcomes:
                if outcome.succeeded and outcome.content_hash:
                    state_manager.update_item_state(outcome.source_url, outcome.content_hash)
            state_manager.record_run(self.summary.to_dict())
            state_manager.save()
        self.components.reporter.report(list(self.summary.failures), self.summary)
        return self.summary

    def run(self) -> RunSummary:
        """
        Executes the run.

        Returns:
            RunSummary: Counters for the run, also on partial failure.

        Raises:
            RunAbortedError: On a run-wide fault. The partial summary is
                attached as `summary` and the original error is chained.
        """
        if self.status != RunStatus.IDLE:
            raise PipelineError("A pipeline instance can only be run once.", component="pipeline")

        started_at = utc_now()
        self.status = RunStatus.RUNNING
        logger.info(f"Pipeline run started for {len(self.urls)} URLs.")

        try:
            self.components.store.ensure_schema()
        except StorageError as e:
            summary = self._finish([], started_at, RunStatus.FAILED)
            raise RunAbortedError(f"Vector store unavailable: {e}", summary) from e

        outcomes: List[UrlOutcome] = []
        abort_error: Optional[EmbeddingAuthError] = None
        max_workers = min(self.settings.parallelism, max(len(self.urls), 1))
        logger.info(f"Using {max_workers} workers for parallel processing.")

        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            futures = {executor.submit(self._process_url, url): url for url in self.urls}
            for future in as_completed(futures):
                url = futures[future]
                try:
                    outcomes.append(future.result())
                except EmbeddingAuthError as e:
                    abort_error = abort_error or e
                    outcomes.append(self._failed(url, "embed", e))
                except Exception as e:
                    logger.error(f"Unexpected error processing '{url}': {e}", exc_info=True)
                    outcomes.append(self._failed(url, "pipeline", e))

        if abort_error is not None:
            summary = self._finish(outcomes, started_at, RunStatus.FAILED)
            raise RunAbortedError(
                f"Embedding service rejected the credentials: {abort_error}", summary
            ) from abort_error

        summary = self._finish(outcomes, started_at, RunStatus.COMPLETED)
        logger.info(
            f"Pipeline run finished: {summary.urls_succeeded}/{summary.urls_attempted} URLs "
            f"succeeded, {summary.documents_stored} documents stored."
        )
        return summary


def run_once(config: Union[PipelineConfig, dict], **kwargs) -> RunSummary:
    """
    Runs the pipeline once. This is the entry point for schedulers.

    Raises:
        ConfigError: If the configuration is invalid; nothing is processed.
        RunAbortedError: On a run-wide fault during the run.
    """
    if not isinstance(config, PipelineConfig):
        config = parse_config(config)
    return Pipeline.from_config(config, **kwargs).run()


def run_pipeline(config_path: str) -> RunSummary:
    """
    Runs the entire ingestion pipeline based on a configuration file.
    """
    logger.info(f"sfdocpipe pipeline starting with config: {config_path}")
    config = load_config(config_path)
    return run_once(config)
