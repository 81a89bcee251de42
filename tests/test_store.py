"""Tests for the TagStore facade."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import pytest

from tagstore import InvalidGroupId, StoreNotReady, TagStore, open_store
from tagstore import store as store_module
from tagstore.codec import read_group_file
from tagstore.lock import locked
from tagstore.watcher import WatchState

from .conftest import IMPATIENT_LOCK, make_config


class TestEndToEnd:
    """The team1 scenario on an empty directory."""

    def test_add_then_get(self, store: TagStore) -> None:
        """Test that duplicates in one batch are added once and reads are sorted."""
        result = store.add_tags("team1", ["ops", "dev", "OPS"])
        assert result.added_count == 2
        assert result.added_tags == ["ops", "dev"]
        assert result.durable
        assert store.get("team1") == ["dev", "ops"]
        assert read_group_file(store.file_path("team1")) == ["ops", "dev"]


class TestAddTags:
    """Tests for the write path."""

    def test_superset_after_add(self, static_store: TagStore) -> None:
        """Test that every distinct trimmed tag is readable after add."""
        static_store.add_tags("g", ["a"])
        static_store.add_tags("g", [" b ", "", "C", "c", "a"])
        assert static_store.get("g") == ["C", "a", "b"]

    def test_idempotent(self, static_store: TagStore) -> None:
        """Test that repeating an add adds nothing the second time."""
        first = static_store.add_tags("g", ["x", "y"])
        second = static_store.add_tags("g", ["x", "y"])
        assert first.added_count == 2
        assert second.added_count == 0
        assert second.added_tags == []
        assert static_store.file_path("g").read_text() == "x\ny"

    def test_case_insensitive_first_casing_kept(self, static_store: TagStore) -> None:
        """Test that Red then red stores only Red."""
        static_store.add_tags("g", ["Red"])
        result = static_store.add_tags("g", ["red"])
        assert result.added_count == 0
        assert static_store.get("g") == ["Red"]

    def test_empty_input_does_not_touch_storage(self, static_store: TagStore) -> None:
        """Test that blank candidates leave no group and no file behind."""
        result = static_store.add_tags("g", ["", "   ", None])
        assert result.added_count == 0
        assert static_store.find("g") is None
        assert not static_store.file_path("g").exists()

    def test_appends_to_existing_file(self, tags_dir: Path) -> None:
        """Test that writes append after content loaded at startup."""
        tags_dir.mkdir()
        (tags_dir / "tags_g.txt").write_text("old")
        with TagStore(make_config(tags_dir)).start(watch=False) as s:
            assert s.add_tags("g", ["OLD", "new"]).added_tags == ["new"]
        assert (tags_dir / "tags_g.txt").read_text() == "old\nnew"

    def test_concurrent_adds_to_one_group(self, store: TagStore) -> None:
        """Test that N concurrent writers all land exactly once, in memory and on disk."""
        n = 24
        with ThreadPoolExecutor(max_workers=n) as pool:
            results = list(pool.map(lambda i: store.add_tags("busy", [f"tag{i:02d}"]), range(n)))
        assert all(r.added_count == 1 and r.durable for r in results)
        expected = sorted(f"tag{i:02d}" for i in range(n))
        assert store.get("busy") == expected
        on_disk = read_group_file(store.file_path("busy"))
        assert on_disk is not None
        assert sorted(on_disk) == expected

    def test_lock_contention_is_a_durability_warning(self, tags_dir: Path) -> None:
        """Test that a busy lock keeps the tags in memory and reports the failure."""
        with TagStore(make_config(tags_dir, lock=IMPATIENT_LOCK)).start(watch=False) as s:
            with locked(s.file_path("g"), IMPATIENT_LOCK):
                result = s.add_tags("g", ["kept"])
            assert result.added_tags == ["kept"]
            assert result.warning is not None
            assert result.warning.contended
            assert s.get("g") == ["kept"]
            assert not s.file_path("g").exists()

    def test_io_error_is_a_durability_warning(self, static_store: TagStore) -> None:
        """Test that a failed append keeps the tags in memory and reports the OSError."""
        static_store.file_path("g").mkdir()
        result = static_store.add_tags("g", ["kept"])
        assert result.added_tags == ["kept"]
        assert not result.durable
        assert result.warning is not None
        assert isinstance(result.warning.cause, OSError)
        assert not result.warning.contended
        assert static_store.get("g") == ["kept"]

    def test_group_dropped_during_write(self, static_store: TagStore, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test that tags added while their group is dropped stay readable."""
        static_store.add_tags("g", ["old"])
        real_append = store_module.append_tags

        def drop_then_append(path: Path, tags: list[str]) -> int:
            static_store.cache.remove("g")
            return real_append(path, tags)

        monkeypatch.setattr(store_module, "append_tags", drop_then_append)
        result = static_store.add_tags("g", ["new"])
        assert result.added_tags == ["new"]
        assert result.durable
        assert static_store.get("g") == ["new"]

    def test_add_after_drop_uses_fresh_group(self, static_store: TagStore) -> None:
        """Test that a writer never lands in a group that was already dropped."""
        static_store.add_tags("g", ["old"])
        stale = static_store.cache.group("g")
        assert static_store.cache.remove("g")
        assert stale is not None and stale.detached
        assert static_store.add_tags("g", ["old"]).added_tags == ["old"]
        assert static_store.cache.group("g") is not stale


class TestReads:
    """Tests for get/find."""

    def test_unknown_group(self, static_store: TagStore) -> None:
        """Test that an unknown group is empty for get and None for find."""
        assert static_store.get("missing") == []
        assert static_store.find("missing") is None

    @pytest.mark.parametrize("group_id", ["a-b", "a/b", "", "../etc"])
    def test_invalid_group_rejected_before_filesystem(self, static_store: TagStore, group_id: str) -> None:
        """Test that invalid ids fail validation without creating files."""
        before = sorted(static_store.tags_dir.iterdir())
        with pytest.raises(InvalidGroupId):
            static_store.get(group_id)
        with pytest.raises(InvalidGroupId):
            static_store.add_tags(group_id, ["x"])
        assert sorted(static_store.tags_dir.iterdir()) == before

    def test_loads_existing_files_on_start(self, tags_dir: Path) -> None:
        """Test that the initial scan populates every group file."""
        tags_dir.mkdir()
        (tags_dir / "tags_a.txt").write_text("x\r\ny\n")
        (tags_dir / "tags_b.txt").write_text("")
        (tags_dir / "notes.txt").write_text("ignored")
        with TagStore(make_config(tags_dir)).start(watch=False) as s:
            assert s.group_ids() == ["a", "b"]
            assert s.get("a") == ["x", "y"]
            assert s.find("b") == []


class TestLifecycle:
    """Tests for startup and readiness."""

    def test_not_ready_before_start(self, tags_dir: Path) -> None:
        """Test that the store refuses requests until started."""
        s = TagStore(make_config(tags_dir))
        with pytest.raises(StoreNotReady):
            s.get("g")
        with pytest.raises(StoreNotReady):
            s.add_tags("g", ["x"])

    def test_creates_directory(self, tags_dir: Path) -> None:
        """Test that a missing tags directory is created at startup."""
        assert not tags_dir.exists()
        with TagStore(make_config(tags_dir)).start(watch=False):
            assert tags_dir.is_dir()

    def test_open_store_future(self, tags_dir: Path) -> None:
        """Test that the ready future resolves once the watcher is running."""
        store, ready = open_store(config=make_config(tags_dir))
        try:
            assert ready.result(timeout=10) is store
            assert store.ready
            assert store.state is WatchState.WATCHING
        finally:
            store.close()
        assert store.state is WatchState.CLOSED
        assert not store.ready

    def test_closed_before_startup_finishes(self, tags_dir: Path) -> None:
        """Test that a store closed during startup never becomes ready."""
        s = TagStore(make_config(tags_dir))
        s.close()
        with pytest.raises(StoreNotReady):
            s.start()
        assert s.state is WatchState.CLOSED
        assert not s.ready

    def test_open_store_by_path(self, tags_dir: Path) -> None:
        """Test that open_store accepts a bare directory."""
        store, ready = open_store(tags_dir, watch=False)
        with store:
            ready.result(timeout=10)
            assert store.tags_dir == tags_dir.resolve()

    def test_startup_failure_is_reported(self, tmp_path: Path) -> None:
        """Test that a directory that cannot be created fails the ready future."""
        blocker = tmp_path / "file"
        blocker.write_text("not a directory")
        store, ready = open_store(config=make_config(blocker / "tags"))
        with pytest.raises(OSError):
            ready.result(timeout=10)
        assert not store.ready
