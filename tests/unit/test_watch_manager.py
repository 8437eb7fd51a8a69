import pytest
from watchdog.events import (
    DirCreatedEvent,
    DirDeletedEvent,
    DirModifiedEvent,
    FileCreatedEvent,
    FileDeletedEvent,
    FileModifiedEvent,
    FileMovedEvent,
)

from app.models.schemas import WatchSource
from app.utils.errors import ReloadError, WatchSourceError
from app.utils.events import Notification
from domains.file_ingest.collectors.watch_manager import (
    SessionState,
    SourceEventHandler,
    WatchSession,
    WatchSessionManager,
)
from domains.file_ingest.models import FileEventType


def ready_session(bus, source, window=0.0):
    """Session marked ready without a live observer, for feeding synthetic events."""
    session = WatchSession(source, bus, debounce_window=window)
    session.state = SessionState.READY
    return session


def kinds(recorder):
    return [(event.type, event.path.name) for event in recorder.items]


def test_first_sight_is_add_then_change_then_remove(tmp_path, bus, record):
    files = record(Notification.FILE)
    session = ready_session(bus, WatchSource(id="notes", path=tmp_path))
    handler = SourceEventHandler(session)
    target = str(session.root / "a.md")

    handler.on_created(FileCreatedEvent(target))
    handler.on_modified(FileModifiedEvent(target))
    handler.on_deleted(FileDeletedEvent(target))
    handler.on_created(FileCreatedEvent(target))

    assert kinds(files) == [
        (FileEventType.ADD, "a.md"),
        (FileEventType.CHANGE, "a.md"),
        (FileEventType.REMOVE, "a.md"),
        (FileEventType.ADD, "a.md"),
    ]
    assert all(event.source_id == "notes" for event in files.items)


def test_modification_of_unknown_file_is_an_add(tmp_path, bus, record):
    files = record(Notification.FILE)
    session = ready_session(bus, WatchSource(id="notes", path=tmp_path))

    SourceEventHandler(session).on_modified(FileModifiedEvent(str(session.root / "old.md")))

    assert kinds(files) == [(FileEventType.ADD, "old.md")]


def test_extension_filter_is_case_insensitive(tmp_path, bus, record):
    files = record(Notification.FILE)
    session = ready_session(bus, WatchSource(id="notes", path=tmp_path, extensions=["MD"]))
    handler = SourceEventHandler(session)

    handler.on_created(FileCreatedEvent(str(session.root / "Upper.MD")))
    handler.on_created(FileCreatedEvent(str(session.root / "b.txt")))

    assert kinds(files) == [(FileEventType.ADD, "Upper.MD")]


def test_directory_events_are_discarded(tmp_path, bus, record):
    files = record(Notification.FILE)
    session = ready_session(bus, WatchSource(id="notes", path=tmp_path))
    handler = SourceEventHandler(session)

    handler.on_created(DirCreatedEvent(str(session.root / "sub")))
    handler.on_modified(DirModifiedEvent(str(session.root / "sub")))
    handler.on_deleted(DirDeletedEvent(str(session.root / "sub")))

    assert files.items == []
    assert session.state is SessionState.READY


def test_move_is_remove_plus_appearance(tmp_path, bus, record):
    files = record(Notification.FILE)
    session = ready_session(bus, WatchSource(id="notes", path=tmp_path))
    handler = SourceEventHandler(session)
    handler.on_created(FileCreatedEvent(str(session.root / "draft.md")))

    handler.on_moved(FileMovedEvent(str(session.root / "draft.md"), str(session.root / "final.md")))

    assert kinds(files) == [
        (FileEventType.ADD, "draft.md"),
        (FileEventType.REMOVE, "draft.md"),
        (FileEventType.ADD, "final.md"),
    ]


def test_events_before_ready_are_suppressed(tmp_path, bus, record):
    files = record(Notification.FILE)
    session = WatchSession(WatchSource(id="notes", path=tmp_path), bus, debounce_window=0)
    session.state = SessionState.STARTING

    SourceEventHandler(session).on_created(FileCreatedEvent(str(session.root / "a.md")))

    assert files.items == []


def test_burst_for_one_path_collapses_to_latest(tmp_path, bus, record, wait):
    files = record(Notification.FILE)
    session = ready_session(bus, WatchSource(id="notes", path=tmp_path), window=0.2)
    handler = SourceEventHandler(session)
    kept = str(session.root / "kept.md")
    gone = str(session.root / "gone.md")

    handler.on_created(FileCreatedEvent(kept))
    handler.on_modified(FileModifiedEvent(kept))
    handler.on_modified(FileModifiedEvent(kept))
    handler.on_created(FileCreatedEvent(gone))
    handler.on_deleted(FileDeletedEvent(gone))

    assert wait(lambda: len(files) >= 2)
    assert kinds(files) == [(FileEventType.ADD, "kept.md"), (FileEventType.REMOVE, "gone.md")]


def test_stopped_session_drops_pending_events(tmp_path, bus, record, wait):
    files = record(Notification.FILE)
    session = ready_session(bus, WatchSource(id="notes", path=tmp_path), window=0.2)
    SourceEventHandler(session).on_created(FileCreatedEvent(str(session.root / "a.md")))

    session.stop()

    assert not wait(lambda: len(files) > 0, timeout=0.5)


def test_root_removal_fails_session_once(tmp_path, bus, record):
    errors = record(Notification.ERROR)
    forgotten = []
    session = WatchSession(WatchSource(id="notes", path=tmp_path), bus, debounce_window=0,
                           on_failed=forgotten.append)
    session.state = SessionState.READY
    handler = SourceEventHandler(session)

    handler.on_deleted(DirDeletedEvent(str(session.root)))
    handler.on_deleted(DirDeletedEvent(str(session.root)))

    assert session.state is SessionState.STOPPED
    assert len(errors) == 1
    assert errors.items[0]["source_id"] == "notes"
    assert isinstance(errors.items[0]["error"], WatchSourceError)
    assert forgotten == [session]


# ----------------------------------------------------------------------
# Live watchdog sessions
# ----------------------------------------------------------------------

@pytest.fixture
def manager(bus):
    manager = WatchSessionManager(bus, debounce_window=0.05, ready_timeout=5.0)
    yield manager
    manager.shutdown()


def test_add_source_becomes_ready_and_reports_changes(tmp_path, manager, record, wait):
    ready = record(Notification.READY)
    files = record(Notification.FILE)

    manager.add_source(WatchSource(id="notes", path=tmp_path, extensions=[".md"]))

    assert manager.list_active() == ["notes"]
    assert [payload["source_id"] for payload in ready.items] == ["notes"]

    (tmp_path / "a.md").write_text("hello")
    (tmp_path / "skip.txt").write_text("ignored")

    assert wait(lambda: len(files) >= 1)
    first = files.items[0]
    assert first.type is FileEventType.ADD
    assert first.path.name == "a.md"
    assert all(event.path.suffix == ".md" for event in files.items)


def test_non_recursive_source_ignores_subdirectories(tmp_path, manager, record, wait):
    files = record(Notification.FILE)
    (tmp_path / "sub").mkdir()
    manager.add_source(WatchSource(id="flat", path=tmp_path, recursive=False))

    (tmp_path / "sub" / "deep.md").write_text("deep")
    (tmp_path / "top.md").write_text("top")

    assert wait(lambda: any(event.path.name == "top.md" for event in files.items))
    assert not any(event.path.name == "deep.md" for event in files.items)


def test_removed_source_emits_nothing_further(tmp_path, manager, record, wait):
    files = record(Notification.FILE)
    manager.add_source(WatchSource(id="notes", path=tmp_path))

    assert manager.remove_source("notes") is True
    (tmp_path / "late.md").write_text("late")

    assert manager.list_active() == []
    assert not wait(lambda: len(files) > 0, timeout=0.5)
    assert manager.remove_source("notes") is False


def test_missing_root_fails_only_that_source(tmp_path, manager):
    manager.add_source(WatchSource(id="good", path=tmp_path))

    with pytest.raises(WatchSourceError) as excinfo:
        manager.add_source(WatchSource(id="bad", path=tmp_path / "missing"))

    assert excinfo.value.source_id == "bad"
    assert manager.list_active() == ["good"]


def test_duplicate_id_is_rejected(tmp_path, manager):
    manager.add_source(WatchSource(id="notes", path=tmp_path))

    with pytest.raises(WatchSourceError):
        manager.add_source(WatchSource(id="notes", path=tmp_path))
    assert manager.list_active() == ["notes"]


def test_reload_converges_by_id(tmp_path, manager):
    for name in ["a", "b", "d"]:
        (tmp_path / name).mkdir()
    manager.add_source(WatchSource(id="a", path=tmp_path / "a"))
    manager.add_source(WatchSource(id="b", path=tmp_path / "b"))
    original_b = manager.get_source("b")

    with pytest.raises(ReloadError) as excinfo:
        manager.reload([
            WatchSource(id="b", path=tmp_path / "b", lens="architect"),
            WatchSource(id="c", path=tmp_path / "missing"),
            WatchSource(id="d", path=tmp_path / "d"),
        ])

    assert set(excinfo.value.failures) == {"c"}
    assert manager.list_active() == ["b", "d"]
    # Matching ids are left running untouched
    assert manager.get_source("b") is original_b
    assert manager.get_source("b").lens == "general"


def test_shutdown_is_safe_when_idle(bus):
    manager = WatchSessionManager(bus)
    manager.shutdown()
    manager.shutdown()
    assert manager.list_active() == []
