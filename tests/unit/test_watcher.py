"""
Tests for the SessionWatcher watch loop.

Most tests drive the loop by hand (ingest + flush) against a fake
registration backend; the async tests run the real loop with a short
debounce window.
"""

import asyncio
import json
import shutil
import threading
import time
from contextlib import asynccontextmanager

import pytest
from watchdog.events import (
    DirCreatedEvent,
    DirDeletedEvent,
    DirModifiedEvent,
    FileDeletedEvent,
    FileModifiedEvent,
    FileMovedEvent,
)

from snek.debounce import ActionKind
from snek.session_edit import add_snippet
from snek.session_io import load_snapshot
from snek.snapshot import Snapshot, SnapshotStore
from snek.watcher import EventForwarder, SessionWatcher, WatcherError


class FakeBackend:
    def __init__(self, failing=()):
        self.watched = set()
        self.failing = set(failing)
        self.started = False
        self.stopped = False
        self.calls = []

    def watch(self, path):
        self.calls.append(("watch", path))
        if path in self.failing:
            raise OSError("cannot watch")
        self.watched.add(path)

    def unwatch(self, path):
        self.calls.append(("unwatch", path))
        self.watched.discard(path)

    def start(self):
        self.started = True

    def stop(self):
        self.stopped = True


class CountingStore(SnapshotStore):
    """SnapshotStore that counts publishes."""

    def __init__(self, initial):
        super().__init__(initial)
        self.stores = 0

    def store(self, snapshot):
        self.stores += 1
        super().store(snapshot)


class BlockingStore(CountingStore):
    """Holds the flush thread inside store() until released."""

    def __init__(self, initial):
        super().__init__(initial)
        self.entered = threading.Event()
        self.release = threading.Event()

    def store(self, snapshot):
        self.entered.set()
        self.release.wait(5)
        super().store(snapshot)


@pytest.fixture
def workspace(snek_root, make_session, source_file, make_snippet):
    path_a, uri_a = source_file("a.rs", "a1\na2\n")
    path_b, uri_b = source_file("b.rs", "b1\n")
    session_dir = make_session(
        "one",
        snippets=[make_snippet(uri_a, 0, 1), make_snippet(uri_b, 0, 1)],
        notes={"a.md": "note A"},
    )
    return {
        "root": snek_root,
        "session_dir": session_dir,
        "path_a": path_a,
        "uri_a": uri_a,
        "path_b": path_b,
        "uri_b": uri_b,
    }


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def watcher(workspace, backend):
    store = CountingStore(load_snapshot(workspace["session_dir"]))
    watcher = SessionWatcher(workspace["root"], store, backend=backend)
    watcher.register()
    return watcher


class TestRegistration:
    def test_registers_root_session_and_sources(self, watcher, workspace, backend):
        session_dir = workspace["session_dir"]
        assert backend.watched == {
            workspace["root"],
            session_dir,
            session_dir / "context",
            workspace["path_a"],
            workspace["path_b"],
        }
        assert workspace["path_a"] in watcher.watch_set

    def test_root_failure_is_fatal(self, workspace):
        store = SnapshotStore(load_snapshot(workspace["session_dir"]))
        watcher = SessionWatcher(
            workspace["root"], store, backend=FakeBackend(failing={workspace["root"]})
        )
        with pytest.raises(WatcherError):
            watcher.register()

    def test_source_failure_is_not_fatal(self, workspace):
        store = SnapshotStore(load_snapshot(workspace["session_dir"]))
        backend = FakeBackend(failing={workspace["path_a"]})
        watcher = SessionWatcher(workspace["root"], store, backend=backend)

        watcher.register()

        assert workspace["path_a"] not in backend.watched
        assert workspace["path_b"] in backend.watched


class TestFlush:
    def test_irrelevant_events_ignored(self, watcher, workspace, tmp_path):
        watcher.ingest(tmp_path / "unrelated.txt")
        watcher.ingest(workspace["session_dir"] / "session.json")

        assert watcher.pending.is_empty()
        assert watcher.flush() == []
        assert watcher.store.stores == 0

    def test_source_events_coalesce_into_one_update(self, watcher, workspace):
        workspace["path_a"].write_text("changed\n")
        for _ in range(10):
            watcher.ingest(workspace["path_a"])

        plan = watcher.flush()

        assert [a.kind for a in plan] == [ActionKind.UPDATE_SOURCES]
        assert watcher.store.stores == 1
        assert watcher.store.load().file_cache[workspace["uri_a"]] == "changed\n"

    def test_markdown_change(self, watcher, workspace):
        note = workspace["session_dir"] / "context" / "a.md"
        note.write_text("note A v2")
        watcher.ingest(str(note))

        watcher.flush()

        assert watcher.store.load().markdown_cache["a.md"] == "note A v2"

    def test_deleted_source_evicted(self, watcher, workspace):
        workspace["path_a"].unlink()
        watcher.ingest(workspace["path_a"])

        watcher.flush()

        snapshot = watcher.store.load()
        assert isinstance(snapshot, Snapshot)
        assert workspace["uri_a"] not in snapshot.file_cache
        assert snapshot.file_cache[workspace["uri_b"]] == "b1\n"

    def test_snippet_reload_updates_watch_set(self, watcher, workspace, backend, make_snippet):
        """Dropping a snippet unwatches and uncaches its file."""
        snippets_file = workspace["session_dir"] / "code_snippets.json"
        snippets_file.write_text(
            json.dumps({"schema": 1, "snippets": [make_snippet(workspace["uri_b"])]})
        )
        watcher.ingest(workspace["path_a"])
        watcher.ingest(snippets_file)

        plan = watcher.flush()

        assert [a.kind for a in plan] == [ActionKind.RELOAD_SNIPPETS]
        assert watcher.store.stores == 1
        snapshot = watcher.store.load()
        assert workspace["uri_a"] not in snapshot.file_cache
        assert workspace["path_a"] not in watcher.watch_set
        assert workspace["path_a"] not in backend.watched
        assert workspace["path_b"] in backend.watched

    def test_snippet_reload_watches_new_file(self, watcher, workspace, backend, source_file, make_snippet):
        path_c, uri_c = source_file("c.rs", "c1\n")
        snippets_file = workspace["session_dir"] / "code_snippets.json"
        snippets_file.write_text(json.dumps({"schema": 1, "snippets": [make_snippet(uri_c)]}))
        watcher.ingest(snippets_file)

        watcher.flush()

        assert path_c in backend.watched
        assert watcher.store.load().file_cache[uri_c] == "c1\n"

        # The new file is now classified as a source change
        path_c.write_text("c2\n")
        watcher.ingest(path_c)
        watcher.flush()
        assert watcher.store.load().file_cache[uri_c] == "c2\n"

    def test_session_switch_discards_old_pending(
        self, watcher, workspace, backend, make_session, source_file, make_snippet
    ):
        path_x, uri_x = source_file("x.rs", "x1\n")
        two = make_session("two", version=7, snippets=[make_snippet(uri_x)], notes={"z.md": "Z"})

        note = workspace["session_dir"] / "context" / "a.md"
        note.write_text("edited")
        watcher.ingest(note)
        watcher.ingest(workspace["path_a"])
        watcher.ingest(workspace["root"] / "active.json")

        plan = watcher.flush()

        assert [a.kind for a in plan] == [ActionKind.SWITCH_SESSION]
        assert watcher.store.stores == 1
        snapshot = watcher.store.load()
        assert snapshot.session_id == "two"
        assert snapshot.version == 7
        assert dict(snapshot.markdown_cache) == {"z.md": "Z"}
        assert watcher.session_dir == two

        old = workspace["session_dir"]
        assert old not in backend.watched
        assert old / "context" not in backend.watched
        assert workspace["path_a"] not in backend.watched
        assert {two, two / "context", path_x} <= backend.watched
        assert path_x in watcher.watch_set

    def test_old_session_events_irrelevant_after_switch(self, watcher, workspace, make_session):
        make_session("two")
        watcher.ingest(workspace["root"] / "active.json")
        watcher.flush()

        watcher.ingest(workspace["session_dir"] / "code_snippets.json")
        watcher.ingest(workspace["session_dir"] / "context" / "a.md")

        assert watcher.pending.is_empty()

    def test_failed_update_keeps_previous_snapshot(self, watcher, workspace):
        before = watcher.store.load()
        snippets_file = workspace["session_dir"] / "code_snippets.json"
        snippets_file.write_text("{not json")
        watcher.ingest(snippets_file)

        watcher.flush()

        assert watcher.store.load() is before
        assert watcher.store.stores == 0

        # The loop keeps working afterwards
        note = workspace["session_dir"] / "context" / "a.md"
        note.write_text("still alive")
        watcher.ingest(note)
        watcher.flush()
        assert watcher.store.load().markdown_cache["a.md"] == "still alive"

    def test_failed_session_switch_keeps_previous_snapshot(self, watcher, workspace):
        before = watcher.store.load()
        (workspace["root"] / "active.json").write_text("garbage")
        watcher.ingest(workspace["root"] / "active.json")

        watcher.flush()

        assert watcher.store.load() is before
        assert watcher.session_dir == workspace["session_dir"]

    def test_reader_keeps_frozen_view(self, watcher, workspace):
        held = watcher.store.load()
        workspace["path_a"].write_text("new\n")
        watcher.ingest(workspace["path_a"])

        watcher.flush()

        assert held.file_cache[workspace["uri_a"]] == "a1\na2\n"
        assert watcher.store.load().file_cache[workspace["uri_a"]] == "new\n"

    def test_missing_source_registered_once_created(
        self, watcher, workspace, backend, tmp_path, make_snippet
    ):
        path_c = (tmp_path / "src" / "c.rs").resolve()
        snippets_file = workspace["session_dir"] / "code_snippets.json"
        snippets_file.write_text(
            json.dumps({"schema": 1, "snippets": [make_snippet(path_c.as_uri())]})
        )
        watcher.ingest(snippets_file)
        watcher.flush()

        assert path_c in watcher.watch_set
        assert path_c not in backend.watched

        path_c.write_text("c1\n")
        watcher.ingest(path_c)
        watcher.flush()

        assert path_c in backend.watched
        assert watcher.store.load().file_cache[path_c.as_uri()] == "c1\n"


class TestRescan:
    def test_context_created_after_register(self, workspace, backend):
        context = workspace["session_dir"] / "context"
        shutil.rmtree(context)
        store = CountingStore(load_snapshot(workspace["session_dir"]))
        watcher = SessionWatcher(workspace["root"], store, backend=backend)
        watcher.register()
        assert context not in backend.watched

        context.mkdir()
        (context / "late.md").write_text("late")
        watcher.ingest(context)
        plan = watcher.flush()

        assert [a.kind for a in plan] == [ActionKind.RESCAN]
        assert context in backend.watched
        assert dict(store.load().markdown_cache) == {"late.md": "late"}
        assert store.stores == 1

    def test_context_recreated_is_watched_again(self, watcher, workspace, backend):
        """A recreated directory gets a fresh registration, not the stale one."""
        context = workspace["session_dir"] / "context"
        backend.calls.clear()

        shutil.rmtree(context)
        context.mkdir()
        (context / "b.md").write_text("B")
        watcher.ingest(context)
        watcher.flush()

        assert backend.calls == [("unwatch", context), ("watch", context)]
        assert dict(watcher.store.load().markdown_cache) == {"b.md": "B"}

    def test_context_deleted(self, watcher, workspace, backend):
        context = workspace["session_dir"] / "context"
        shutil.rmtree(context)
        watcher.ingest(context)

        watcher.flush()

        assert context not in backend.watched
        assert dict(watcher.store.load().markdown_cache) == {}

    def test_source_directory_recreated(self, watcher, workspace, backend, source_file):
        path_a = workspace["path_a"]
        shutil.rmtree(path_a.parent)
        source_file("a.rs", "a new\n")
        source_file("b.rs", "b new\n")
        backend.calls.clear()

        watcher.ingest(path_a.parent)
        plan = watcher.flush()

        assert [a.kind for a in plan] == [ActionKind.RESCAN]
        assert backend.calls.index(("unwatch", path_a)) < backend.calls.index(("watch", path_a))
        assert {path_a, workspace["path_b"]} <= backend.watched
        snapshot = watcher.store.load()
        assert snapshot.file_cache[workspace["uri_a"]] == "a new\n"
        assert snapshot.file_cache[workspace["uri_b"]] == "b new\n"

    def test_rescan_replaces_pending_updates(self, watcher, workspace):
        context = workspace["session_dir"] / "context"
        (context / "a.md").write_text("edited")
        workspace["path_a"].write_text("edited\n")
        watcher.ingest(context / "a.md")
        watcher.ingest(workspace["path_a"])
        watcher.ingest(context)

        plan = watcher.flush()

        assert [a.kind for a in plan] == [ActionKind.RESCAN]
        assert watcher.store.stores == 1
        snapshot = watcher.store.load()
        assert snapshot.markdown_cache["a.md"] == "edited"
        assert snapshot.file_cache[workspace["uri_a"]] == "edited\n"

    def test_unrelated_directory_ignored(self, watcher, tmp_path):
        other = tmp_path / "other"
        other.mkdir()
        watcher.ingest(other)
        assert watcher.pending.is_empty()


class TestWatchLoop:
    @pytest.mark.asyncio
    async def test_burst_flushed_once_after_quiet_period(self, workspace, backend):
        store = CountingStore(load_snapshot(workspace["session_dir"]))
        watcher = SessionWatcher(workspace["root"], store, debounce_ms=50, backend=backend)
        await watcher.start()
        try:
            assert backend.started
            workspace["path_a"].write_text("burst\n")
            for _ in range(5):
                watcher.submit(workspace["path_a"])

            for _ in range(100):
                if store.stores:
                    break
                await asyncio.sleep(0.02)
            await asyncio.sleep(0.2)

            assert store.stores == 1
            assert store.load().file_cache[workspace["uri_a"]] == "burst\n"
        finally:
            await watcher.stop()

        assert backend.stopped
        assert not watcher.running

    @pytest.mark.asyncio
    async def test_threadsafe_submit(self, workspace, backend):
        store = CountingStore(load_snapshot(workspace["session_dir"]))
        watcher = SessionWatcher(workspace["root"], store, debounce_ms=50, backend=backend)
        await watcher.start()
        try:
            workspace["path_b"].write_text("from thread\n")
            await asyncio.to_thread(watcher.submit_threadsafe, workspace["path_b"])

            for _ in range(100):
                if store.stores:
                    break
                await asyncio.sleep(0.02)

            assert store.load().file_cache[workspace["uri_b"]] == "from thread\n"
        finally:
            await watcher.stop()

    @pytest.mark.asyncio
    async def test_start_fails_when_root_unwatchable(self, workspace):
        store = SnapshotStore(load_snapshot(workspace["session_dir"]))
        watcher = SessionWatcher(
            workspace["root"], store, backend=FakeBackend(failing={workspace["root"]})
        )
        with pytest.raises(WatcherError):
            await watcher.start()
        assert not watcher.running

    def test_submit_before_start(self, watcher, workspace):
        with pytest.raises(RuntimeError):
            watcher.submit(workspace["path_a"])

    @pytest.mark.asyncio
    async def test_run_before_start(self, watcher):
        with pytest.raises(RuntimeError):
            await watcher.run()

    @pytest.mark.asyncio
    async def test_stop_waits_for_running_flush(self, workspace, backend):
        store = BlockingStore(load_snapshot(workspace["session_dir"]))
        watcher = SessionWatcher(workspace["root"], store, debounce_ms=20, backend=backend)
        await watcher.start()
        workspace["path_a"].write_text("slow\n")
        watcher.submit(workspace["path_a"])
        assert await asyncio.to_thread(store.entered.wait, 5)

        stopping = asyncio.create_task(watcher.stop())
        await asyncio.sleep(0.1)
        assert not stopping.done()
        assert not backend.stopped

        store.release.set()
        await stopping

        assert backend.stopped
        assert store.stores == 1
        assert store.load().file_cache[workspace["uri_a"]] == "slow\n"


class TestEventForwarder:
    def test_file_events_forwarded(self):
        seen = []
        forwarder = EventForwarder(seen.append)

        forwarder.dispatch(FileModifiedEvent("/w/a.rs"))
        forwarder.dispatch(FileDeletedEvent("/w/b.rs"))

        assert seen == ["/w/a.rs", "/w/b.rs"]

    def test_move_forwards_both_ends(self):
        """Atomic saves rename a temp file onto the real one."""
        seen = []
        EventForwarder(seen.append).dispatch(FileMovedEvent("/w/.a.rs.tmp", "/w/a.rs"))
        assert seen == ["/w/.a.rs.tmp", "/w/a.rs"]

    def test_directory_events_dropped(self):
        seen = []
        EventForwarder(seen.append).dispatch(DirModifiedEvent("/w"))
        assert seen == []

    def test_directory_creation_and_deletion_forwarded(self):
        seen = []
        forwarder = EventForwarder(seen.append)

        forwarder.dispatch(DirCreatedEvent("/w/context"))
        forwarder.dispatch(DirDeletedEvent("/w/src"))

        assert seen == ["/w/context", "/w/src"]


@asynccontextmanager
async def observed(workspace):
    """Run a watcher on the real watchdog observer."""
    store = SnapshotStore(load_snapshot(workspace["session_dir"]))
    watcher = SessionWatcher(workspace["root"], store, debounce_ms=50)
    await watcher.start()
    try:
        yield watcher
    finally:
        await watcher.stop()


async def wait_until(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        await asyncio.sleep(0.02)
    return predicate()


class TestObserved:
    @pytest.mark.asyncio
    async def test_source_edit(self, workspace):
        async with observed(workspace) as watcher:
            workspace["path_a"].write_text("edited\n")

            assert await wait_until(
                lambda: watcher.store.load().file_cache.get(workspace["uri_a"]) == "edited\n"
            )

    @pytest.mark.asyncio
    async def test_source_delete_evicts(self, workspace):
        async with observed(workspace) as watcher:
            workspace["path_a"].unlink()

            assert await wait_until(
                lambda: workspace["uri_a"] not in watcher.store.load().file_cache
            )
            assert watcher.store.load().file_cache[workspace["uri_b"]] == "b1\n"

    @pytest.mark.asyncio
    async def test_session_switch(self, workspace, make_session, source_file, make_snippet):
        path_x, uri_x = source_file("x.rs", "x1\n")
        async with observed(workspace) as watcher:
            two = make_session("two", version=7, snippets=[make_snippet(uri_x)], notes={"z.md": "Z"})

            assert await wait_until(lambda: watcher.store.load().session_id == "two")
            snapshot = watcher.store.load()
            assert dict(snapshot.markdown_cache) == {"z.md": "Z"}
            assert snapshot.file_cache[uri_x] == "x1\n"

            # The new session's notes and sources are live
            (two / "context" / "new.md").write_text("fresh")
            path_x.write_text("x2\n")
            assert await wait_until(
                lambda: watcher.store.load().markdown_cache.get("new.md") == "fresh"
            )
            assert await wait_until(lambda: watcher.store.load().file_cache[uri_x] == "x2\n")

    @pytest.mark.asyncio
    async def test_context_created_after_start(self, workspace):
        context = workspace["session_dir"] / "context"
        shutil.rmtree(context)
        async with observed(workspace) as watcher:
            assert dict(watcher.store.load().markdown_cache) == {}

            context.mkdir()
            (context / "late.md").write_text("late")
            assert await wait_until(
                lambda: watcher.store.load().markdown_cache.get("late.md") == "late"
            )

            (context / "late.md").write_text("later")
            assert await wait_until(
                lambda: watcher.store.load().markdown_cache.get("late.md") == "later"
            )

    @pytest.mark.asyncio
    async def test_context_recreated_after_start(self, workspace):
        context = workspace["session_dir"] / "context"
        async with observed(workspace) as watcher:
            shutil.rmtree(context)
            assert await wait_until(lambda: "a.md" not in watcher.store.load().markdown_cache)

            context.mkdir()
            (context / "b.md").write_text("B")
            assert await wait_until(
                lambda: dict(watcher.store.load().markdown_cache) == {"b.md": "B"}
            )

            (context / "b.md").write_text("B2")
            assert await wait_until(
                lambda: watcher.store.load().markdown_cache.get("b.md") == "B2"
            )

    @pytest.mark.asyncio
    async def test_added_snippet_is_watched(self, workspace, source_file):
        path_c, _ = source_file("c.rs", "c1\n")
        async with observed(workspace) as watcher:
            snippet = add_snippet(workspace["session_dir"], path_c)

            assert await wait_until(
                lambda: watcher.store.load().file_cache.get(snippet.uri) == "c1\n"
            )

            path_c.write_text("c2\n")
            assert await wait_until(
                lambda: watcher.store.load().file_cache.get(snippet.uri) == "c2\n"
            )
