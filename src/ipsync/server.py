"""HTTP listener.

Single aiohttp route:
- GET /ping - authenticated address report from the reporting peer

Responses:
- 404, empty body: authentication rejected (no reason given)
- 500, error text: the update action or persistence failed
- 200, requester address: accepted and reconciled
"""

import logging
from typing import Any, Optional

from aiohttp import web

from ipsync.auth import Verifier
from ipsync.errors import ActionError, StorageError
from ipsync.reconciler import Reconciler

logger = logging.getLogger(__name__)


def format_address(host: str, port: int) -> str:
    """Join host and port, bracketing IPv6 hosts."""
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


def remote_address(request: web.Request) -> str:
    """Requester address as ``host:port``."""
    peername: Any = None
    if request.transport is not None:
        peername = request.transport.get_extra_info("peername")
    if isinstance(peername, (tuple, list)) and len(peername) >= 2:
        return format_address(str(peername[0]), int(peername[1]))
    return request.remote or ""


class ListenerServer:
    """aiohttp server that verifies reports and reconciles the address."""

    def __init__(self, verifier: Verifier, reconciler: Reconciler):
        """Initialize listener server.

        Args:
            verifier: Checks the Authentication header.
            reconciler: Applies address changes.
        """
        self.verifier = verifier
        self.reconciler = reconciler

        self.app = web.Application()
        self._setup_routes()
        self._runner: Optional[web.AppRunner] = None
        self._site: Optional[web.TCPSite] = None
        self._port: int = 0

    def _setup_routes(self) -> None:
        self.app.router.add_get("/ping", self._handle_ping)

    async def _handle_ping(self, request: web.Request) -> web.Response:
        """Verify the report and reconcile the requester's address."""
        if not self.verifier.verify_request(request):
            logger.warning(f"Rejected unauthenticated ping from {request.remote}")
            return web.Response(status=404)

        address = remote_address(request)
        try:
            await self.reconciler.reconcile(address)
        except (ActionError, StorageError) as e:
            logger.error(f"Reconciliation failed: {e}")
            return web.Response(status=500, text=str(e))

        return web.Response(text=address)

    @property
    def port(self) -> int:
        """The actual bound port."""
        return self._port

    async def start(self, host: str, port: int) -> None:
        """Start the server.

        Args:
            host: Host to bind to. Empty string binds all interfaces.
            port: Port to bind to (0 for random).
        """
        self._runner = web.AppRunner(self.app)
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, host or None, port)
        await self._site.start()

        server = self._site._server
        if server is not None and getattr(server, "sockets", None):
            self._port = server.sockets[0].getsockname()[1]
        else:
            self._port = port

        logger.info(f"Listening on {host or '*'}:{self._port}")

    async def stop(self) -> None:
        """Stop the server."""
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
            self._site = None
        logger.info("Listener stopped")
