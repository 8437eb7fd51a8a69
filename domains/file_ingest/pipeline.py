"""
Ingestion pipeline context.

``IngestionPipeline`` is built once by an entry point (CLI or API) and owns
every long-lived piece of the file ingestion domain: the fingerprint store
handle, the notification bus, the watch session manager and the queue.
"""

import threading
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional

from loguru import logger

from app.models.schemas import Insight, WatchSource
from app.utils.config import Settings, get_settings
from app.utils.errors import EmptyContentError, FileUnavailableError, UnsupportedFormatError, WatchSourceError
from app.utils.events import EventBus, Notification
from app.utils.fingerprint_store import FingerprintStore
from app.utils.helpers import is_relative_to, iter_files, normalise_path
from app.utils.llm import LLMBridge
from domains.file_ingest.collectors.watch_manager import WatchSessionManager
from domains.file_ingest.models import FileEvent, FileEventType
from domains.file_ingest.processors.analyzer import DEFAULT_LENS, InsightAnalyzer
from domains.file_ingest.processors.extractors import ExtractorPipeline
from domains.file_ingest.processors.privacy import Redactor
from domains.file_ingest.queue import IngestionQueue


def covers(source: WatchSource, path: Path) -> bool:
    """Whether ``source`` would watch ``path`` (root, recursion and extensions)."""
    root = normalise_path(source.path)
    if not is_relative_to(path, root):
        return False
    if not source.recursive and path.parent != root:
        return False
    return source.accepts(path)


class IngestionPipeline:
    """Explicit context object wiring watch sessions into the ingestion queue."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        store: Optional[FingerprintStore] = None,
        extractor: Optional[ExtractorPipeline] = None,
        redactor: Optional[Callable[[str], str]] = None,
        analyzer: Optional[InsightAnalyzer] = None,
        bus: Optional[EventBus] = None,
    ):
        self.settings = settings or get_settings()
        self.bus = bus or EventBus()
        self.store = store or FingerprintStore(self.settings.get_fingerprint_db_path())
        self.extractor = extractor or ExtractorPipeline()
        self.redactor = redactor or Redactor(self.settings)
        self.analyzer = analyzer

        self.watch = WatchSessionManager(
            self.bus,
            debounce_window=self.settings.debounce_window,
            ready_timeout=self.settings.ready_timeout,
        )
        self.queue = IngestionQueue(
            self.store,
            self.process_file,
            self.bus,
            concurrency=self.settings.queue_concurrency,
            max_retries=self.settings.queue_max_retries,
            retry_base_delay=self.settings.retry_base_delay,
            retry_max_delay=self.settings.retry_max_delay,
            skip_duplicate_content=self.settings.skip_duplicate_content,
            store_error_threshold=self.settings.store_error_threshold,
        )

        self._unsubscribe: List[Callable[[], None]] = []
        self._lock = threading.RLock()
        self._started = False
        self._stopped = False

    def __enter__(self) -> "IngestionPipeline":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.shutdown()

    @property
    def started(self) -> bool:
        return self._started and not self._stopped

    def start(self, sources: Optional[Iterable[WatchSource]] = None) -> Dict[str, Exception]:
        """
        Open the store, start workers and begin watching ``sources``.

        Args:
            sources: Sources to watch; defaults to the configured ones

        Returns:
            Per-source start failures keyed by source id
        """
        with self._lock:
            if self._started:
                return {}
            self._started = True

        self.store.connect()
        if self.analyzer is None:
            self.analyzer = InsightAnalyzer(LLMBridge(self.settings), self.settings.max_content_chars)

        self._unsubscribe.append(self.bus.on(Notification.FILE, self._on_file_event))
        self.queue.start()

        if sources is None:
            sources = self.settings.get_watch_sources()

        failures: Dict[str, Exception] = {}
        for source in sources:
            try:
                self.watch.add_source(source)
            except WatchSourceError as e:
                failures[source.id] = e

        active = self.watch.list_active()
        logger.info(f"Ingestion pipeline started: {len(active)} sources active, {len(failures)} failed")

        if self.settings.scan_on_start and active:
            self.rescan()
        return failures

    def _on_file_event(self, event: FileEvent):
        source = self.watch.get_source(event.source_id)
        lens = source.lens if source else DEFAULT_LENS
        self.queue.submit(event, lens)

    # ------------------------------------------------------------------
    # Source management
    # ------------------------------------------------------------------

    def add_source(self, source: WatchSource, scan: bool = False) -> int:
        """
        Start watching ``source``; optionally submit its existing files.

        Returns:
            Number of files submitted by the initial scan
        """
        self.watch.add_source(source)
        return self.rescan(source.id) if scan else 0

    def remove_source(self, source_id: str) -> bool:
        """Stop watching ``source_id`` and purge its fingerprints if configured."""
        source = self.watch.get_source(source_id)
        removed = self.watch.remove_source(source_id)
        if removed and source is not None and self.settings.purge_on_unwatch:
            self.purge(source)
        return removed

    def reload(self, sources: Iterable[WatchSource]):
        """
        Converge the active sources on ``sources``.

        Raises:
            ReloadError: if any new source failed to start
        """
        sources = list(sources)
        wanted = {source.id for source in sources}
        dropped = [
            source for source in (self.watch.get_source(sid) for sid in self.watch.list_ids())
            if source is not None and source.id not in wanted
        ]
        try:
            self.watch.reload(sources)
        finally:
            if self.settings.purge_on_unwatch:
                for source in dropped:
                    self.purge(source)

    def purge(self, source: WatchSource) -> int:
        """Delete fingerprints covered by ``source`` and by no other active source."""
        others = [
            other for other in (self.watch.get_source(sid) for sid in self.watch.list_ids())
            if other is not None and other.id != source.id
        ]
        purged = 0
        for stored in self.store.paths_under(str(normalise_path(source.path))):
            path = Path(stored)
            if not covers(source, path) or any(covers(other, path) for other in others):
                continue
            if self.store.remove(stored):
                purged += 1
        if purged:
            logger.info(f"Purged {purged} fingerprints for source {source.id}")
        return purged

    def rescan(self, source_id: Optional[str] = None) -> int:
        """
        Submit every file under the active sources as an ``add`` event.

        Unchanged files are dropped by admission, so only new or modified
        content becomes work.

        Returns:
            Number of files submitted
        """
        ids = [source_id] if source_id else self.watch.list_active()
        submitted = 0
        for sid in ids:
            source = self.watch.get_source(sid)
            if source is None:
                raise WatchSourceError(f"Source '{sid}' is not active", sid)
            root = normalise_path(source.path)
            count = 0
            for path in iter_files(root, recursive=source.recursive):
                if not source.accepts(path):
                    continue
                self.queue.submit(FileEvent(type=FileEventType.ADD, path=path, source_id=sid), source.lens)
                count += 1
            submitted += count
            logger.info(f"Rescanned {sid}: {count} files submitted")
        return submitted

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    def process_file(self, path: Path, lens: str = DEFAULT_LENS) -> List[Insight]:
        """
        Extract, redact and analyze one file.

        Raises:
            UnsupportedFormatError: nothing could be extracted and no extractor handles the type
            FileUnavailableError: the file could not be read
            EmptyContentError: extraction produced only whitespace
        """
        path = Path(path)
        text = self.extractor.extract(path)
        if not text.strip():
            if not path.is_file():
                raise FileUnavailableError(f"Cannot read {path}")
            if text == "" and not self.extractor.supports(path.suffix):
                raise UnsupportedFormatError(f"No extractor for {path.suffix or path.name}")
            raise EmptyContentError(f"No text extracted from {path}")

        if self.analyzer is None:
            raise RuntimeError("Pipeline not started: no analyzer configured")
        return self.analyzer.analyze(self.redactor(text), lens)

    # ------------------------------------------------------------------
    # Health and lifecycle
    # ------------------------------------------------------------------

    def health(self) -> dict:
        store_ok = self.store.is_connected and self.store.ping()
        healthy = store_ok and not self.queue.degraded
        return {
            "status": "healthy" if healthy else "degraded",
            "store": "connected" if store_ok else "unavailable",
            "active_sources": self.watch.list_active(),
            "queue": self.queue.stats(),
        }

    def shutdown(self) -> bool:
        """
        Stop watching, drain running tasks and close the store.

        Returns:
            True if running tasks finished within the grace period
        """
        with self._lock:
            if self._stopped or not self._started:
                self._stopped = True
                return True
            self._stopped = True

        logger.info("Shutting down ingestion pipeline...")
        self.watch.shutdown()
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._unsubscribe.clear()

        clean = self.queue.shutdown(self.settings.shutdown_grace_period)
        if self.analyzer is not None:
            self.analyzer.close()
        self.store.close()
        logger.success("Ingestion pipeline stopped")
        return clean
