"""Tests for address reconciliation."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from ipsync.action import UpdateAction
from ipsync.errors import ActionError, StorageError
from ipsync.reconciler import Reconciler
from ipsync.storage import AddressStore


class FakeAction:
    """Records calls and tracks how many run at once."""

    def __init__(self, delay: float = 0.0, fail: bool = False):
        self.delay = delay
        self.fail = fail
        self.calls: list[tuple[str, str]] = []
        self.active = 0
        self.max_active = 0

    async def run(self, old: str, new: str) -> None:
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            self.calls.append((old, new))
            await asyncio.sleep(self.delay)
            if self.fail:
                raise ActionError("failed to run script: exit status 1")
        finally:
            self.active -= 1


class RecordingStore(AddressStore):
    """AddressStore that remembers every persisted value."""

    def __init__(self, path):
        super().__init__(path)
        self.saved: list[str] = []

    def save(self, address: str) -> None:
        super().save(address)
        self.saved.append(address)


@pytest.fixture
def store(cache_file) -> RecordingStore:
    return RecordingStore(cache_file)


class TestReconcile:
    """Tests for single reconciliations."""

    @pytest.mark.asyncio
    async def test_address_change_runs_action_and_persists(self, store, cache_file):
        """Cached 203.0.113.5, observed 203.0.113.9:51012."""
        action = FakeAction()
        reconciler = Reconciler(store, action, "203.0.113.5")

        result = await reconciler.reconcile("203.0.113.9:51012")

        assert action.calls == [("203.0.113.5", "203.0.113.9")]
        assert cache_file.read_text() == "203.0.113.9:51012"
        assert reconciler.current_address == "203.0.113.9:51012"
        assert result.changed is True
        assert result.address == "203.0.113.9:51012"
        assert result.previous == "203.0.113.5"

    @pytest.mark.asyncio
    async def test_same_address_is_noop(self, store, cache_file):
        """Matching address: no action, file untouched."""
        action = FakeAction()
        reconciler = Reconciler(store, action, "203.0.113.5")
        mtime = cache_file.stat().st_mtime_ns

        result = await reconciler.reconcile("203.0.113.5")

        assert action.calls == []
        assert store.saved == []
        assert cache_file.stat().st_mtime_ns == mtime
        assert result.changed is False
        assert result.address == "203.0.113.5"

    @pytest.mark.asyncio
    async def test_port_change_counts_as_change(self, store):
        """Comparison uses the full address including the port."""
        action = FakeAction()
        reconciler = Reconciler(store, action, "203.0.113.9:1000")

        result = await reconciler.reconcile("203.0.113.9:2000")

        assert result.changed is True
        assert action.calls == [("203.0.113.9", "203.0.113.9")]

    @pytest.mark.asyncio
    async def test_action_failure_leaves_state_unchanged(self, store, cache_file):
        action = FakeAction(fail=True)
        reconciler = Reconciler(store, action, "203.0.113.5")

        with pytest.raises(ActionError):
            await reconciler.reconcile("203.0.113.9:51012")

        assert reconciler.current_address == "203.0.113.5"
        assert cache_file.read_text() == "203.0.113.5"
        assert store.saved == []

    @pytest.mark.asyncio
    async def test_retry_after_failure_reinvokes_action(self, store, cache_file):
        """A failed change is detected again on the next report."""
        action = FakeAction(fail=True)
        reconciler = Reconciler(store, action, "203.0.113.5")

        with pytest.raises(ActionError):
            await reconciler.reconcile("203.0.113.9:51012")

        action.fail = False
        result = await reconciler.reconcile("203.0.113.9:51012")

        assert result.changed is True
        assert action.calls == [("203.0.113.5", "203.0.113.9")] * 2
        assert cache_file.read_text() == "203.0.113.9:51012"

    @pytest.mark.asyncio
    async def test_persist_failure_leaves_memory_unchanged(self, tmp_path):
        store = AsyncMock(spec=AddressStore)
        store.asave.side_effect = StorageError("disk full")
        reconciler = Reconciler(store, FakeAction(), "203.0.113.5")

        with pytest.raises(StorageError):
            await reconciler.reconcile("203.0.113.9:51012")

        assert reconciler.current_address == "203.0.113.5"

    @pytest.mark.asyncio
    async def test_address_without_port(self, store):
        """Addresses without a colon are passed to the action whole."""
        action = FakeAction()
        reconciler = Reconciler(store, action, "old-host")

        await reconciler.reconcile("new-host")

        assert action.calls == [("old-host", "new-host")]

    @pytest.mark.asyncio
    async def test_from_store(self, store):
        reconciler = await Reconciler.from_store(store, FakeAction())
        assert reconciler.current_address == "203.0.113.5"


class TestConcurrency:
    """Tests for serialized reconciliation."""

    @pytest.mark.asyncio
    async def test_concurrent_changes_are_serialized(self, store, cache_file):
        """Two different new addresses apply one after the other."""
        action = FakeAction(delay=0.05)
        reconciler = Reconciler(store, action, "203.0.113.5")

        first, second = await asyncio.gather(
            reconciler.reconcile("198.51.100.1:1000"),
            reconciler.reconcile("198.51.100.2:2000"),
        )

        assert action.max_active == 1
        assert action.calls == [
            ("203.0.113.5", "198.51.100.1"),
            ("198.51.100.1", "198.51.100.2"),
        ]
        assert first.previous == "203.0.113.5"
        assert second.previous == "198.51.100.1:1000"
        assert store.saved == ["198.51.100.1:1000", "198.51.100.2:2000"]
        assert reconciler.current_address == "198.51.100.2:2000"
        assert cache_file.read_text() == "198.51.100.2:2000"

    @pytest.mark.asyncio
    async def test_concurrent_same_address_runs_action_once(self, store, cache_file):
        """Duplicate reports of one change trigger one transition."""
        action = FakeAction(delay=0.05)
        reconciler = Reconciler(store, action, "203.0.113.5")

        results = await asyncio.gather(
            *(reconciler.reconcile("198.51.100.1:1000") for _ in range(5))
        )

        assert action.calls == [("203.0.113.5", "198.51.100.1")]
        assert [r.changed for r in results].count(True) == 1
        assert store.saved == ["198.51.100.1:1000"]

    @pytest.mark.asyncio
    async def test_failure_does_not_block_next(self, store, cache_file):
        """A failed reconciliation releases the lock."""
        action = FakeAction(delay=0.01, fail=True)
        reconciler = Reconciler(store, action, "203.0.113.5")

        results = await asyncio.gather(
            reconciler.reconcile("198.51.100.1:1000"),
            reconciler.reconcile("198.51.100.2:2000"),
            return_exceptions=True,
        )

        assert all(isinstance(r, ActionError) for r in results)
        assert len(action.calls) == 2
        assert action.calls[1][0] == "203.0.113.5"
        assert cache_file.read_text() == "203.0.113.5"


@pytest.mark.integration
class TestWithRealAction:
    """End-to-end with a real script and file."""

    @pytest.mark.asyncio
    async def test_example_scenario(self, cache_file, recording_action):
        script, log = recording_action
        reconciler = await Reconciler.from_store(
            AddressStore(cache_file), UpdateAction(script)
        )

        result = await reconciler.reconcile("203.0.113.9:51012")

        assert result.address == "203.0.113.9:51012"
        assert log.read_text() == "--old=203.0.113.5 --new=203.0.113.9\n"
        assert cache_file.read_text() == "203.0.113.9:51012"

    @pytest.mark.asyncio
    async def test_failing_script_keeps_file(self, cache_file, failing_action):
        reconciler = Reconciler(
            AddressStore(cache_file), UpdateAction(failing_action), "203.0.113.5"
        )

        with pytest.raises(ActionError, match="dns update refused"):
            await reconciler.reconcile("203.0.113.9:51012")

        assert cache_file.read_text() == "203.0.113.5"
