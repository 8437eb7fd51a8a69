"""
Ingestion queue: admission, bounded worker pool and retry policy.

Admission runs on the caller's thread (the watch session's flush thread in
production) and decides whether an event becomes a Task. A fixed pool of
worker threads executes tasks in arrival order, never more than one per
path, and records the admission-time fingerprint when analysis succeeds.
"""

import threading
import time
from collections import deque
from pathlib import Path
from typing import Callable, Deque, Dict, List, Optional

from loguru import logger

from app.models.schemas import FileFingerprint, Insight
from app.utils.errors import PermanentError, StoreError, TransientError
from app.utils.events import EventBus, Notification
from app.utils.fingerprint_store import FingerprintStore
from domains.file_ingest.models import (
    FailureKind,
    FileEvent,
    FileEventType,
    Task,
    TaskCompleted,
    TaskFailed,
    TaskState,
)
from domains.file_ingest.processors.hasher import quick_signature

ProcessFn = Callable[[Path, str], List[Insight]]
SignerFn = Callable[[Path], FileFingerprint]


class IngestionQueue:
    """Bounded-concurrency task queue between the watch layer and the analyzer."""

    def __init__(
        self,
        store: FingerprintStore,
        process: ProcessFn,
        bus: EventBus,
        *,
        concurrency: int = 2,
        max_retries: int = 3,
        retry_base_delay: float = 1.0,
        retry_max_delay: float = 30.0,
        skip_duplicate_content: bool = False,
        store_error_threshold: int = 3,
        signer: SignerFn = quick_signature,
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        if max_retries < 0:
            raise ValueError("max_retries cannot be negative")

        self.store = store
        self.bus = bus
        self.concurrency = concurrency
        self.max_retries = max_retries
        self.retry_base_delay = retry_base_delay
        self.retry_max_delay = retry_max_delay
        self.skip_duplicate_content = skip_duplicate_content
        self.store_error_threshold = store_error_threshold
        self._process = process
        self._signer = signer

        self._admission = threading.Lock()
        self._cond = threading.Condition()
        self._pending: Deque[Task] = deque()
        self._latest: Dict[str, Task] = {}
        self._running: Dict[str, Task] = {}
        self._timers: Dict[str, threading.Timer] = {}
        self._workers: List[threading.Thread] = []
        self._closed = False
        self._store_failures = 0
        self._degraded = False
        self._counters = {
            "admitted": 0,
            "dropped": 0,
            "superseded": 0,
            "duplicates": 0,
            "retried": 0,
            "succeeded": 0,
            "failed": 0,
        }

    def start(self):
        """Spawn the worker pool. Tasks submitted earlier wait until now."""
        with self._cond:
            if self._workers or self._closed:
                return
            for index in range(self.concurrency):
                worker = threading.Thread(
                    target=self._worker_loop, name=f"ingest-worker-{index}", daemon=True
                )
                self._workers.append(worker)
                worker.start()
        logger.info(f"Ingestion queue started (concurrency={self.concurrency}, max_retries={self.max_retries})")

    @property
    def closed(self) -> bool:
        return self._closed

    @staticmethod
    def _key(path: Path) -> str:
        return str(path)

    # ------------------------------------------------------------------
    # Admission
    # ------------------------------------------------------------------

    def submit(self, event: FileEvent, lens: str = "general") -> Optional[Task]:
        """
        Run admission for one file event.

        ``remove`` events clear the fingerprint row and are never queued.

        Returns:
            The admitted task, or None if the event was dropped
        """
        if event.type is FileEventType.REMOVE:
            self._forget(event)
            return None

        key = self._key(event.path)
        with self._admission:
            if self._closed:
                logger.debug(f"Queue closed, ignoring {event.type.value} for {event.path}")
                return None

            try:
                signature = self._signer(event.path)
            except OSError as e:
                logger.debug(f"Dropping {event.type.value} for {event.path}: {e}")
                self._count("dropped")
                return None

            try:
                changed = self.store.has_changed(key, signature.hash)
            except StoreError as e:
                logger.error(f"Fingerprint lookup failed for {event.path}: {e}")
                self._record_store_failure(e)
                return None

            if not changed:
                with self._cond:
                    self._supersede_locked(key)
                    self._counters["dropped"] += 1
                logger.debug(f"Unchanged content at {event.path}, no task")
                return None

            with self._cond:
                latest = self._latest.get(key)
                if latest is not None and latest.signature.hash == signature.hash:
                    self._counters["dropped"] += 1
                    logger.debug(f"Task {latest.id} already covers this content of {event.path}")
                    return None

            if self.skip_duplicate_content and self._skip_duplicate(event, signature):
                return None

            task = Task(path=event.path, source_id=event.source_id, lens=lens, signature=signature)
            with self._cond:
                if self._closed:
                    return None
                self._supersede_locked(key)
                self._latest[key] = task
                self._pending.append(task)
                self._counters["admitted"] += 1
                self._cond.notify_all()

        logger.debug(f"Admitted task {task.id} for {event.path} [{event.source_id}]")
        return task

    def _forget(self, event: FileEvent):
        key = self._key(event.path)
        with self._admission:
            if self._closed:
                return
            with self._cond:
                self._supersede_locked(key)
            try:
                removed = self.store.remove(key)
            except StoreError as e:
                logger.error(f"Failed to remove fingerprint for {event.path}: {e}")
                self._record_store_failure(e)
                return
        self._record_store_success()
        if removed:
            logger.info(f"Removed fingerprint for {event.path}")

    def _skip_duplicate(self, event: FileEvent, signature: FileFingerprint) -> bool:
        key = self._key(event.path)
        try:
            if not self.store.is_duplicate_content(signature.hash, excluding_path=key):
                return False
            duplicates = [path for path in self.store.find_all_paths_with_hash(signature.hash) if path != key]
            self.store.upsert(signature)
        except StoreError as e:
            logger.error(f"Duplicate check failed for {event.path}: {e}")
            self._record_store_failure(e)
            return True

        self._record_store_success()
        with self._cond:
            self._supersede_locked(key)
            self._counters["duplicates"] += 1
        logger.info(f"Skipping analysis of {event.path}: same content as {', '.join(duplicates)}")
        self.bus.emit(Notification.DUPLICATE, {
            "path": key,
            "source_id": event.source_id,
            "hash": signature.hash,
            "duplicates": duplicates,
        })
        return True

    def _supersede_locked(self, key: str):
        """Discard the queued or backing-off task for ``key``. Caller holds ``_cond``."""
        previous = self._latest.pop(key, None)
        if previous is None:
            return
        if previous in self._pending:
            self._pending.remove(previous)
            self._counters["superseded"] += 1
            logger.debug(f"Task {previous.id} for {key} superseded")
        timer = self._timers.pop(previous.id, None)
        if timer is not None:
            timer.cancel()
            self._counters["superseded"] += 1
        self._cond.notify_all()

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def _next_task_locked(self) -> Optional[Task]:
        for task in self._pending:
            if self._key(task.path) not in self._running:
                self._pending.remove(task)
                return task
        return None

    def _worker_loop(self):
        while True:
            with self._cond:
                task = self._next_task_locked()
                while task is None:
                    if self._closed:
                        return
                    self._cond.wait()
                    task = self._next_task_locked()
                key = self._key(task.path)
                task.state = TaskState.RUNNING
                self._running[key] = task

            try:
                self._execute(task)
            finally:
                with self._cond:
                    self._running.pop(key, None)
                    self._cond.notify_all()

    def _execute(self, task: Task):
        logger.debug(f"Running task {task.id} for {task.path} (attempt {task.attempt + 1})")
        try:
            insights = self._process(task.path, task.lens)
        except (TransientError, OSError) as e:
            self._retry_or_fail(task, e)
            return
        except PermanentError as e:
            self._fail(task, FailureKind.PERMANENT, e, attempts=task.attempt + 1)
            return
        except Exception as e:
            logger.exception(f"Unexpected error processing {task.path}")
            self._fail(task, FailureKind.PERMANENT, e, attempts=task.attempt + 1)
            return

        # Admission lock: a remove or revert for this path cannot land between
        # the latest check and the write.
        with self._admission:
            with self._cond:
                latest = self._is_latest(task)
            store_error = None
            if latest:
                try:
                    self.store.upsert(task.signature)
                except StoreError as e:
                    store_error = e

        if store_error is not None:
            self._record_store_failure(store_error)
            self._fail(task, FailureKind.STORE, store_error, attempts=task.attempt + 1)
            return
        if latest:
            self._record_store_success()
        else:
            logger.info(f"{task.path} changed or was removed during analysis; not recording it")

        task.state = TaskState.SUCCEEDED
        with self._cond:
            if self._latest.get(self._key(task.path)) is task:
                del self._latest[self._key(task.path)]
            self._counters["succeeded"] += 1

        logger.success(f"Ingested {task.path}: {len(insights)} insights")
        self.bus.emit(Notification.TASK_COMPLETED, TaskCompleted(
            task_id=task.id,
            path=task.path,
            source_id=task.source_id,
            insights=insights,
            attempts=task.attempt + 1,
        ))

    def _retry_or_fail(self, task: Task, error: Exception):
        task.attempt += 1
        task.last_error = str(error)
        if task.attempt > self.max_retries:
            self._fail(task, FailureKind.RETRIES_EXHAUSTED, error, attempts=task.attempt)
            return

        delay = self.backoff_delay(task.attempt)
        with self._cond:
            closing = self._closed
            superseded = not closing and not self._is_latest(task)
            if not (closing or superseded):
                task.state = TaskState.FAILED_RETRYABLE
                timer = threading.Timer(delay, self._readmit, args=(task,))
                timer.daemon = True
                self._timers[task.id] = timer
                self._counters["retried"] += 1
                timer.start()

        if closing:
            logger.warning(f"Retry of {task.path} abandoned: queue is shutting down")
            self._fail(task, FailureKind.SHUTDOWN, error, attempts=task.attempt)
            return
        if superseded:
            task.state = TaskState.FAILED_TERMINAL
            logger.debug(f"Not retrying {task.path}: a newer task covers it")
            return

        logger.warning(
            f"Transient failure for {task.path} "
            f"(attempt {task.attempt}/{self.max_retries + 1}): {error}; retrying in {delay:.1f}s"
        )

    def backoff_delay(self, attempt: int) -> float:
        """Exponential delay before retry number ``attempt`` (1-based)."""
        return min(self.retry_base_delay * (2 ** (attempt - 1)), self.retry_max_delay)

    def _readmit(self, task: Task):
        with self._cond:
            self._timers.pop(task.id, None)
            if not self._closed and self._is_latest(task):
                task.state = TaskState.PENDING
                self._pending.append(task)
            self._cond.notify_all()

    def _fail(self, task: Task, kind: FailureKind, error: Exception, attempts: int):
        task.state = TaskState.FAILED_TERMINAL
        task.last_error = str(error)
        with self._cond:
            if self._latest.get(self._key(task.path)) is task:
                del self._latest[self._key(task.path)]
            self._counters["failed"] += 1

        logger.error(f"Task failed for {task.path} ({kind.value} after {attempts} attempts): {error}")
        self.bus.emit(Notification.TASK_FAILED, TaskFailed(
            task_id=task.id,
            path=task.path,
            source_id=task.source_id,
            kind=kind,
            error=str(error),
            attempts=attempts,
        ))

    def _is_latest(self, task: Task) -> bool:
        return self._latest.get(self._key(task.path)) is task

    # ------------------------------------------------------------------
    # Store health
    # ------------------------------------------------------------------

    def _record_store_failure(self, error: Exception):
        with self._cond:
            self._store_failures += 1
            tripped = not self._degraded and self._store_failures >= self.store_error_threshold
            if tripped:
                self._degraded = True
        if tripped:
            logger.critical(f"Fingerprint store failing persistently ({self._store_failures} errors)")
            self.bus.emit(Notification.HEALTH, {"status": "degraded", "reason": str(error)})

    def _record_store_success(self):
        with self._cond:
            recovered = self._degraded
            self._store_failures = 0
            self._degraded = False
        if recovered:
            logger.info("Fingerprint store recovered")
            self.bus.emit(Notification.HEALTH, {"status": "healthy", "reason": "store writes succeeding"})

    @property
    def degraded(self) -> bool:
        return self._degraded

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait until no task is pending, running or backing off."""
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while self._pending or self._running or self._timers:
                if deadline is None:
                    self._cond.wait()
                    continue
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                self._cond.wait(remaining)
        return True

    def shutdown(self, grace_timeout: Optional[float] = 30.0) -> bool:
        """
        Stop admitting work and let running tasks finish.

        Pending and backing-off tasks are discarded; their files keep their
        old fingerprints and are picked up again on the next change or rescan.

        Returns:
            True if every worker exited within ``grace_timeout``
        """
        with self._cond:
            self._closed = True
            discarded = len(self._pending) + len(self._timers)
            self._pending.clear()
            timers = list(self._timers.values())
            self._timers.clear()
            self._latest = {key: task for key, task in self._latest.items() if key in self._running}
            self._cond.notify_all()

        for timer in timers:
            timer.cancel()
        if discarded:
            logger.warning(f"Discarded {discarded} queued tasks on shutdown")

        deadline = None if grace_timeout is None else time.monotonic() + grace_timeout
        clean = True
        for worker in self._workers:
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            worker.join(remaining)
            if worker.is_alive():
                clean = False

        if clean:
            logger.info("Ingestion queue stopped")
        else:
            logger.warning(f"Ingestion queue still busy after {grace_timeout}s grace period")
        return clean

    def stats(self) -> dict:
        with self._cond:
            return {
                "concurrency": self.concurrency,
                "max_retries": self.max_retries,
                "pending": len(self._pending),
                "running": len(self._running),
                "backing_off": len(self._timers),
                "closed": self._closed,
                "store_degraded": self._degraded,
                **self._counters,
            }

    def _count(self, counter: str):
        with self._cond:
            self._counters[counter] += 1
