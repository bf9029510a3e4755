"""Address reconciliation.

Keeps the listener's last-known peer address in step with what verified
requests report. A change runs the update action, then persists the new
address, then updates memory. Any failure leaves both the file and the
in-memory address as they were, so the peer's next report retries.

The full compare/invoke/persist sequence runs under one lock: two
concurrent reports are applied one after the other, each seeing the
address left by the previous one.
"""

import asyncio
import logging
from dataclasses import dataclass

from ipsync.action import UpdateAction, strip_port
from ipsync.storage import AddressStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReconcileResult:
    """Outcome of a reconciliation.

    Attributes:
        address: The observed (and now cached) address.
        previous: The cached address before the call.
        changed: True if the update action ran and the address was persisted.
    """

    address: str
    previous: str
    changed: bool


class Reconciler:
    """Owns the cached address and serializes changes to it."""

    def __init__(
        self,
        store: AddressStore,
        action: UpdateAction,
        current_address: str,
    ):
        """Initialize reconciler.

        Args:
            store: Persistent mirror of the cached address.
            action: Update action run on each change.
            current_address: Address loaded from the store at startup.
        """
        self._store = store
        self._action = action
        self._current = current_address
        self._lock = asyncio.Lock()

    @classmethod
    async def from_store(cls, store: AddressStore, action: UpdateAction) -> "Reconciler":
        """Create a reconciler seeded from the persisted address.

        Raises:
            StorageError: If the cached address cannot be read.
        """
        return cls(store, action, await store.aload())

    @property
    def current_address(self) -> str:
        """Last reconciled address."""
        return self._current

    async def reconcile(self, observed: str) -> ReconcileResult:
        """Bring the cached address in line with an observed one.

        Args:
            observed: Requester address as ``host:port``.

        Returns:
            ReconcileResult for the call.

        Raises:
            ActionError: If the update action fails. State is unchanged.
            StorageError: If persisting fails. State is unchanged.
        """
        async with self._lock:
            previous = self._current
            if observed == previous:
                return ReconcileResult(address=observed, previous=previous, changed=False)

            logger.info("Peer address changed, reconciling")
            logger.debug(f"Address changed: {previous} -> {observed}")

            await self._action.run(strip_port(previous), strip_port(observed))
            await self._store.asave(observed)
            self._current = observed

            logger.info("Reconciled peer address")
            return ReconcileResult(address=observed, previous=previous, changed=True)
