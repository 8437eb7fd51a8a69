from app.utils.events import EventBus, Notification


def test_emit_reaches_listeners_of_that_kind_only():
    bus = EventBus()
    ready, files = [], []
    bus.on(Notification.READY, ready.append)
    bus.on("file", files.append)

    assert bus.emit(Notification.READY, {"source_id": "notes"}) == 1

    assert ready == [{"source_id": "notes"}]
    assert files == []


def test_unsubscribe_and_once():
    bus = EventBus()
    seen = []
    unsubscribe = bus.on(Notification.FILE, seen.append)
    bus.once(Notification.FILE, lambda payload: seen.append(("once", payload)))

    bus.emit(Notification.FILE, 1)
    unsubscribe()
    bus.emit(Notification.FILE, 2)

    assert seen == [1, ("once", 1)]
    assert bus.listener_count(Notification.FILE) == 0


def test_failing_listener_does_not_stop_delivery():
    bus = EventBus()
    seen = []

    def broken(payload):
        raise RuntimeError("listener bug")

    bus.on(Notification.TASK_FAILED, broken)
    bus.on(Notification.TASK_FAILED, seen.append)

    assert bus.emit(Notification.TASK_FAILED, "payload") == 2
    assert seen == ["payload"]
