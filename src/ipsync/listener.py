"""Receiving peer orchestration - ties verifier, reconciler and server together."""

import asyncio
import logging
import os
import re
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Optional

from ipsync.action import UpdateAction
from ipsync.auth import Verifier
from ipsync.config import DEFAULT_LISTEN_ADDRESS, ListenerConfig
from ipsync.errors import KeyLoadError, StartupError, StorageError
from ipsync.reconciler import Reconciler
from ipsync.server import ListenerServer
from ipsync.storage import AddressStore

logger = logging.getLogger(__name__)

_LISTEN_RE = re.compile(r"^(?:\[(?P<v6>[0-9A-Fa-f:.%]+)\]|(?P<host>[^:\[\]]*)):(?P<port>[0-9]+)$")


def parse_listen_address(address: str) -> tuple[str, int]:
    """Split a listen address into host and port.

    Accepts ``host:port``, ``:port`` (all interfaces) and ``[v6]:port``.

    Raises:
        ValueError: If the address is malformed or the port out of range.
    """
    match = _LISTEN_RE.match(address.strip())
    if not match:
        raise ValueError(f"Invalid listen address '{address}', expected host:port")
    port = int(match.group("port"))
    if port > 65535:
        raise ValueError(f"Invalid port {port} in listen address '{address}'")
    host = match.group("v6") or match.group("host") or ""
    return host, port


class Listener:
    """Receiving peer.

    Startup checks every input before serving and reports all problems
    together as one StartupError, never running with partial state.
    """

    def __init__(
        self,
        cache_file: Path | str,
        action_path: Path | str,
        public_key_path: Path | str,
        listen_address: str = DEFAULT_LISTEN_ADDRESS,
        config: Optional[ListenerConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """Initialize listener.

        Args:
            cache_file: File holding the last-known peer address.
            action_path: Program run with --old/--new on address change.
            public_key_path: Reporting peer's public key.
            listen_address: ``host:port`` to serve on.
            config: Listener tuning (freshness window, action timeout).
            clock: Injectable UTC clock for the verifier.
        """
        self._cache_file = Path(cache_file)
        self._action_path = Path(action_path)
        self._public_key_path = Path(public_key_path)
        self._listen_address = listen_address
        self._config = config or ListenerConfig()
        self._clock = clock

        self._server: Optional[ListenerServer] = None
        self._reconciler: Optional[Reconciler] = None
        self._stopped = asyncio.Event()

    @property
    def port(self) -> int:
        """Bound port, 0 before start."""
        return self._server.port if self._server else 0

    @property
    def reconciler(self) -> Optional[Reconciler]:
        """Reconciler, available after start."""
        return self._reconciler

    async def start(self) -> None:
        """Validate inputs, load state and start serving.

        Raises:
            StartupError: Listing every problem found, or if the listen
                address cannot be bound.
        """
        logger.info("Starting listener...")
        problems: list[str] = []

        store = AddressStore(self._cache_file)
        current_address: Optional[str] = None
        if not self._cache_file.is_file():
            problems.append(f"Could not find file at '{self._cache_file}'")
        else:
            try:
                current_address = await store.aload()
            except StorageError as e:
                problems.append(str(e))

        if not self._action_path.is_file():
            problems.append(f"Could not find file at '{self._action_path}'")
        elif not os.access(self._action_path, os.X_OK):
            problems.append(f"Update action '{self._action_path}' is not executable")

        verifier: Optional[Verifier] = None
        if not self._public_key_path.is_file():
            problems.append(f"Could not find file at '{self._public_key_path}'")
        else:
            try:
                verifier = Verifier.from_path(
                    self._public_key_path,
                    window=timedelta(seconds=self._config.max_skew_seconds),
                    clock=self._clock,
                )
            except KeyLoadError as e:
                problems.append(str(e))

        try:
            host, port = parse_listen_address(self._listen_address)
        except ValueError as e:
            problems.append(str(e))

        if problems:
            raise StartupError("\n".join(problems))

        action = UpdateAction(self._action_path, timeout=self._config.action_timeout)
        reconciler = Reconciler(store, action, current_address)
        server = ListenerServer(verifier, reconciler)
        try:
            await server.start(host, port)
        except OSError as e:
            await server.stop()
            raise StartupError(f"Cannot listen on {self._listen_address}: {e}") from e

        self._reconciler = reconciler
        self._server = server

        logger.info("Listener started")
        logger.debug(f"Cached address: {current_address!r}")

    async def run_forever(self) -> None:
        """Serve until stop() is called or the task is cancelled."""
        if self._server is None:
            await self.start()

        try:
            await self._stopped.wait()
        except asyncio.CancelledError:
            pass
        finally:
            await self._shutdown()

    async def stop(self) -> None:
        """Ask run_forever() to return."""
        self._stopped.set()

    async def _shutdown(self) -> None:
        if self._server is not None:
            await self._server.stop()
            self._server = None
