import threading
import time

from pymongo.errors import OperationFailure

import database
import projects
from live import ChangeFeed, ChangeStreamWatcher, Subscription, feed


def test_subscription_delivers_initial_and_changed_snapshots():
    snapshots = []
    sub = Subscription("meetings", lambda: database.get_documents("meetings"), snapshots.append).start()

    database.create_document("meetings", {"title": "Standup"})
    database.create_document("meetings", {"title": "Review"})
    sub.cancel()

    assert [[m["title"] for m in s] for s in snapshots] == [[], ["Standup"], ["Standup", "Review"]]


def test_changes_to_other_collections_are_ignored():
    snapshots = []
    with Subscription("meetings", lambda: [], snapshots.append).start():
        database.create_document("milestones", {"title": "Draft"})
    assert len(snapshots) == 1


def test_cancel_is_idempotent_and_unregisters():
    sub = Subscription("tasks", lambda: [], lambda s: None).start()
    assert feed.listener_count("tasks") == 1
    sub.cancel()
    sub.cancel()
    assert feed.listener_count("tasks") == 0


def test_context_manager_cancels_on_error():
    local = ChangeFeed()
    try:
        with Subscription("tasks", lambda: [], lambda s: None, change_feed=local).start():
            raise ValueError("view crashed")
    except ValueError:
        pass
    assert local.listener_count("tasks") == 0


def test_query_errors_go_to_on_error_and_subscription_survives():
    errors, snapshots = [], []
    calls = {"n": 0}

    def flaky():
        calls["n"] += 1
        if calls["n"] == 1:
            raise RuntimeError("index missing")
        return ["ok"]

    local = ChangeFeed()
    sub = Subscription("tasks", flaky, snapshots.append, on_error=errors.append, change_feed=local).start()
    local.publish("tasks")
    sub.cancel()

    assert [str(e) for e in errors] == ["index missing"]
    assert snapshots == [["ok"]]


def test_concurrent_refreshes_deliver_latest_snapshot_last():
    local = ChangeFeed()
    state = {"v": 0}
    slow_query_started = threading.Event()
    release = threading.Event()
    delivered = []

    def query():
        value = state["v"]
        if value == 1:
            slow_query_started.set()
            release.wait(5)
        return value

    sub = Subscription("tasks", query, delivered.append, change_feed=local).start()

    state["v"] = 1
    writer_a = threading.Thread(target=local.publish, args=("tasks",))
    writer_a.start()
    assert slow_query_started.wait(5)

    state["v"] = 2
    writer_b = threading.Thread(target=local.publish, args=("tasks",))
    writer_b.start()
    time.sleep(0.1)
    release.set()
    writer_a.join(5)
    writer_b.join(5)
    sub.cancel()

    assert delivered == [0, 1, 2]


def test_failing_subscriber_does_not_break_writes_or_other_subscribers(user_factory):
    calls, seen = [], []

    def gone(snapshot):
        calls.append(snapshot)
        if len(calls) > 1:
            raise RuntimeError("socket gone")

    query = lambda: database.get_documents("projects")
    with Subscription("projects", query, gone).start(), Subscription("projects", query, seen.append).start():
        created = projects.create_project(user_factory(), "CS101 Demo", "CS101", "2025-01-01")

    assert created is not None
    assert [len(s) for s in seen] == [0, 1]
    assert feed.listener_count("projects") == 0


class FakeStream:
    def __init__(self, events, change_feed):
        self.events = list(events)
        self.feed = change_feed
        self.alive = True
        self.streamed_while_open = None

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.alive = False
        return False

    def try_next(self):
        self.streamed_while_open = self.feed.is_streamed("tasks")
        if not self.events:
            self.alive = False
            return None
        return self.events.pop(0)


class FakeCollection:
    def __init__(self, stream=None, error=None):
        self.stream = stream
        self.error = error

    def watch(self, **kwargs):
        if self.error is not None:
            raise self.error
        return self.stream


def test_change_stream_events_refresh_subscribers():
    local = ChangeFeed()
    snapshots = []
    stream = FakeStream([{"operationType": "insert"}, {"operationType": "update"}], local)
    sub = Subscription("tasks", lambda: ["snapshot"], snapshots.append, change_feed=local).start()

    ChangeStreamWatcher(lambda name: FakeCollection(stream), ["tasks"], change_feed=local).run("tasks")
    sub.cancel()

    assert len(snapshots) == 3
    assert stream.streamed_while_open is True
    assert local.is_streamed("tasks") is False


def test_streamed_collections_skip_local_notifications():
    local = ChangeFeed()
    snapshots = []
    with Subscription("tasks", lambda: [], snapshots.append, change_feed=local).start():
        local.mark_streamed("tasks")
        local.publish_local("tasks")
        local.unmark_streamed("tasks")
        local.publish_local("tasks")
    assert len(snapshots) == 2


def test_standalone_server_falls_back_to_local_notifications():
    local = ChangeFeed()
    error = OperationFailure("The $changeStream stage is only supported on replica sets")
    ChangeStreamWatcher(lambda name: FakeCollection(error=error), ["tasks"], change_feed=local).run("tasks")
    assert local.is_streamed("tasks") is False
