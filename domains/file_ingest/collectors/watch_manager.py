"""
Filesystem watch sessions for File Ingestion.

Runs one watchdog observer per configured source and turns raw watchdog
callbacks into the normalized ``file`` notification stream:
- directory events are dropped (a removed watch root fails the session)
- paths are filtered by the source's extension set
- bursts for one path are coalesced over a short window
- each path is classified as add, change or remove
"""

import os
import threading
import time
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional

from loguru import logger
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from app.models.schemas import WatchSource
from app.utils.errors import ReloadError, WatchSourceError
from app.utils.events import EventBus, Notification
from app.utils.helpers import normalise_path
from domains.file_ingest.models import FileEvent, FileEventType

_PRESENT = "present"
_GONE = "gone"


class SessionState(str, Enum):
    ABSENT = "absent"
    STARTING = "starting"
    READY = "ready"
    STOPPED = "stopped"


class SourceEventHandler(FileSystemEventHandler):
    """Watchdog handler that forwards file-level changes to one session."""

    def __init__(self, session: "WatchSession"):
        super().__init__()
        self.session = session

    def on_created(self, event: FileSystemEvent):
        if event.is_directory:
            return
        self.session.record(event.src_path, _PRESENT)

    def on_modified(self, event: FileSystemEvent):
        # Directory modifications only tell us a child changed; the child has its own event
        if event.is_directory:
            return
        self.session.record(event.src_path, _PRESENT)

    def on_deleted(self, event: FileSystemEvent):
        if event.is_directory:
            if self.session.is_root(event.src_path):
                self.session.fail(WatchSourceError("Watch root was removed", self.session.source.id))
            return
        self.session.record(event.src_path, _GONE)

    def on_moved(self, event: FileSystemEvent):
        if event.is_directory:
            if self.session.is_root(event.src_path):
                self.session.fail(WatchSourceError("Watch root was moved away", self.session.source.id))
            return
        self.session.record(event.src_path, _GONE)
        dest = getattr(event, "dest_path", None)
        if dest:
            self.session.record(dest, _PRESENT)


class WatchSession:
    """A single source's watch subscription and its event classification state."""

    def __init__(
        self,
        source: WatchSource,
        bus: EventBus,
        debounce_window: float = 0.1,
        ready_timeout: float = 5.0,
        on_failed: Optional[Callable[["WatchSession"], None]] = None,
    ):
        self.source = source
        self.root = normalise_path(source.path)
        self.state = SessionState.ABSENT
        self.debounce_window = debounce_window
        self.ready_timeout = ready_timeout
        self._bus = bus
        self._on_failed = on_failed
        self._observer: Optional[Observer] = None
        self._known: set = set()
        self._pending: Dict[Path, str] = {}
        self._timer: Optional[threading.Timer] = None
        self._lock = threading.RLock()

    def is_root(self, raw_path) -> bool:
        return Path(os.fsdecode(raw_path)) == self.root

    def start(self):
        """
        Subscribe to the source root and wait for the observer to be live.

        Raises:
            WatchSourceError: if the root is missing or the subscription fails
        """
        with self._lock:
            if self.state is not SessionState.ABSENT:
                raise WatchSourceError(f"Session already {self.state.value}", self.source.id)
            self.state = SessionState.STARTING

        if not self.root.is_dir():
            self.state = SessionState.STOPPED
            raise WatchSourceError(f"Watch root is not a directory: {self.root}", self.source.id)

        observer = Observer()
        observer.daemon = True
        self._observer = observer
        try:
            observer.schedule(SourceEventHandler(self), str(self.root), recursive=self.source.recursive)
            observer.start()
        except OSError as e:
            self.state = SessionState.STOPPED
            self._close_observer()
            raise WatchSourceError(f"Failed to watch {self.root}: {e}", self.source.id) from e

        if not self._wait_until_ready():
            self.state = SessionState.STOPPED
            self._close_observer()
            raise WatchSourceError(
                f"Watch on {self.root} not ready after {self.ready_timeout}s", self.source.id
            )

        with self._lock:
            if self.state is not SessionState.STARTING:
                return
            self.state = SessionState.READY

        logger.success(f"Started watching {self.source.id}: {self.root} (recursive={self.source.recursive})")
        self._bus.emit(Notification.READY, {"source_id": self.source.id, "path": str(self.root)})

    def _wait_until_ready(self) -> bool:
        deadline = time.monotonic() + self.ready_timeout
        while time.monotonic() < deadline:
            observer = self._observer
            if observer is None:
                return False
            emitters = observer.emitters
            if observer.is_alive() and emitters and all(emitter.is_alive() for emitter in emitters):
                return True
            time.sleep(0.01)
        return False

    def record(self, raw_path, kind: str):
        """Queue a raw notification for coalescing."""
        path = Path(os.fsdecode(raw_path))
        if not self.source.accepts(path):
            return

        flush_now = False
        with self._lock:
            if self.state is not SessionState.READY:
                return
            self._pending[path] = kind
            if self.debounce_window <= 0:
                flush_now = True
            elif self._timer is None:
                self._timer = threading.Timer(self.debounce_window, self._flush)
                self._timer.daemon = True
                self._timer.start()

        if flush_now:
            self._flush()

    def _flush(self):
        with self._lock:
            self._timer = None
            if self.state is not SessionState.READY:
                self._pending.clear()
                return
            pending, self._pending = self._pending, {}

            events: List[FileEvent] = []
            for path, kind in pending.items():
                if kind == _GONE:
                    self._known.discard(path)
                    event_type = FileEventType.REMOVE
                elif path in self._known:
                    event_type = FileEventType.CHANGE
                else:
                    self._known.add(path)
                    event_type = FileEventType.ADD
                events.append(FileEvent(type=event_type, path=path, source_id=self.source.id))

        for event in events:
            if self.state is not SessionState.READY:
                break
            logger.debug(f"{event.type.value}: {event.path} [{event.source_id}]")
            self._bus.emit(Notification.FILE, event)

    def stop(self):
        """Close the subscription; no further events are emitted."""
        with self._lock:
            if self.state is SessionState.STOPPED:
                return
            self.state = SessionState.STOPPED
            timer, self._timer = self._timer, None
            self._pending.clear()

        if timer:
            timer.cancel()
        self._close_observer()
        logger.info(f"Stopped watching {self.source.id}")

    def fail(self, error: Exception):
        """Session died after becoming ready: stop it and report once."""
        with self._lock:
            if self.state is not SessionState.READY:
                return
        logger.error(f"Watch session {self.source.id} failed: {error}")
        self.stop()
        self._bus.emit(Notification.ERROR, {"source_id": self.source.id, "error": error})
        if self._on_failed:
            self._on_failed(self)

    def _close_observer(self):
        observer, self._observer = self._observer, None
        if observer is None:
            return
        observer.stop()
        # Handler callbacks run on the observer thread itself
        if observer.is_alive() and threading.current_thread() is not observer:
            observer.join(timeout=5)


class WatchSessionManager:
    """Owns one watch session per active source id."""

    def __init__(self, bus: EventBus, debounce_window: float = 0.1, ready_timeout: float = 5.0):
        self.bus = bus
        self.debounce_window = debounce_window
        self.ready_timeout = ready_timeout
        self._sessions: Dict[str, WatchSession] = {}
        self._lock = threading.RLock()

    def add_source(self, source: WatchSource) -> WatchSession:
        """
        Start watching ``source``.

        Raises:
            WatchSourceError: if the id is already active or the watch cannot start
        """
        with self._lock:
            if source.id in self._sessions:
                raise WatchSourceError(f"Source '{source.id}' is already active", source.id)
            session = WatchSession(
                source,
                self.bus,
                debounce_window=self.debounce_window,
                ready_timeout=self.ready_timeout,
                on_failed=self._forget,
            )
            self._sessions[source.id] = session

        try:
            session.start()
        except Exception as e:
            self._forget(session)
            logger.error(f"Failed to start source {source.id}: {e}")
            raise
        return session

    def remove_source(self, source_id: str) -> bool:
        """Stop the session for ``source_id``; False if it was not active."""
        with self._lock:
            session = self._sessions.pop(source_id, None)
        if session is None:
            logger.warning(f"Source '{source_id}' is not active")
            return False
        session.stop()
        return True

    def reload(self, sources: Iterable[WatchSource]):
        """
        Converge on ``sources`` by id.

        Sources missing from ``sources`` are stopped, new ids are started and
        ids already active are left untouched even if their fields differ.

        Raises:
            ReloadError: after convergence, if any new source failed to start
        """
        sources = list(sources)
        wanted = {source.id for source in sources}

        for source_id in self.list_ids():
            if source_id not in wanted:
                self.remove_source(source_id)

        failures: Dict[str, Exception] = {}
        for source in sources:
            with self._lock:
                if source.id in self._sessions:
                    continue
            try:
                self.add_source(source)
            except WatchSourceError as e:
                failures[source.id] = e

        logger.info(f"Reload complete: {len(self.list_active())} active, {len(failures)} failed")
        if failures:
            raise ReloadError(failures)

    def list_active(self) -> List[str]:
        """Ids of sessions that are ready."""
        with self._lock:
            return [
                source_id for source_id, session in self._sessions.items()
                if session.state is SessionState.READY
            ]

    def list_ids(self) -> List[str]:
        """Ids of every tracked session, including ones still starting."""
        with self._lock:
            return list(self._sessions)

    def get_source(self, source_id: str) -> Optional[WatchSource]:
        with self._lock:
            session = self._sessions.get(source_id)
        return session.source if session else None

    def shutdown(self):
        """Stop every session. Safe to call when nothing is active."""
        with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            session.stop()
        if sessions:
            logger.info(f"Watch manager stopped {len(sessions)} sessions")

    def _forget(self, session: WatchSession):
        with self._lock:
            if self._sessions.get(session.source.id) is session:
                del self._sessions[session.source.id]
