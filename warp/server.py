"""
Transfer Server - Main Controller

Runs one session:
- FastAPI app (download or upload endpoint) on uvicorn
- Best-effort mDNS advertisement of the session
"""

import asyncio
import logging
import socket
from typing import Optional

import uvicorn

from .api import create_app
from .discovery import Advertisement, ServiceRecord, instance_name, publish
from .network import advertised_host
from .session import Session

logger = logging.getLogger(__name__)


class TransferServer:
    """
    Serves a single session until stopped.

    Usage:
        server = TransferServer(session)
        url = await server.start()
        ...
        await server.stop()
    """

    def __init__(self, session: Session, advertise: bool = True,
                 log_level: str = "warning"):
        self.session = session
        self.advertise = advertise
        self.log_level = log_level

        self.app = create_app(session)
        self.port: Optional[int] = None
        self.address: Optional[str] = None

        self._server: Optional[uvicorn.Server] = None
        self._serve_task: Optional[asyncio.Task] = None
        self._advertise_task: Optional[asyncio.Task] = None
        self._advertisement: Optional[Advertisement] = None
        self._socket: Optional[socket.socket] = None

    @property
    def is_running(self) -> bool:
        return self._serve_task is not None and not self._serve_task.done()

    @property
    def url(self) -> Optional[str]:
        if self.port is None:
            return None
        return f"http://{self.address}:{self.port}{self.session.path}"

    def _bind(self) -> socket.socket:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((self.session.host, self.session.port))
        sock.set_inheritable(True)
        return sock

    async def start(self) -> str:
        """
        Bind, start serving and advertise.

        Returns:
            The session URL peers should open
        """
        if self.is_running:
            return self.url

        self._socket = self._bind()
        self.port = self._socket.getsockname()[1]
        self.address = advertised_host(self.session.host)

        config = uvicorn.Config(
            self.app,
            log_level=self.log_level,
            timeout_keep_alive=int(self.session.settings.idle_timeout),
            lifespan="off",
        )
        self._server = uvicorn.Server(config)
        self._serve_task = asyncio.create_task(self._server.serve(sockets=[self._socket]))

        while not self._server.started:
            if self._serve_task.done():
                # Surface the bind/startup failure
                self._serve_task.result()
                raise RuntimeError("server exited during startup")
            await asyncio.sleep(0.05)

        logger.info(f"Serving {self.session.describe()} at {self.url}")

        if self.advertise:
            self._advertise_task = asyncio.create_task(self._advertise())

        return self.url

    async def _advertise(self):
        """Publish the session over mDNS. Failure is logged, never raised."""
        record = ServiceRecord(
            name=instance_name(self.session.token),
            mode=self.session.mode.value,
            token=self.session.token,
            path=self.session.path,
            address=self.address,
            port=self.port,
        )
        try:
            self._advertisement = await publish(record)
        except Exception as e:
            logger.warning(f"mDNS advertise failed: {e}")

    async def serve_forever(self):
        """Block until the server task ends (Ctrl+C or stop())."""
        if self._serve_task is not None:
            await self._serve_task

    async def stop(self):
        """Retract the advertisement and shut the server down."""
        if self._advertise_task is not None:
            if not self._advertise_task.done():
                self._advertise_task.cancel()
            try:
                await self._advertise_task
            except asyncio.CancelledError:
                pass
            self._advertise_task = None

        if self._advertisement is not None:
            await self._advertisement.close()
            self._advertisement = None

        if self._server is not None:
            self._server.should_exit = True
        if self._serve_task is not None:
            await self._serve_task
            self._serve_task = None

        if self._socket is not None:
            self._socket.close()
            self._socket = None

        logger.info("Server stopped")

    def get_stats(self) -> dict:
        stats = {
            'url': self.url,
            'mode': self.session.mode.value,
            'running': self.is_running,
            'advertised': self._advertisement is not None,
            'buffers': self.app.state.pool.stats(),
        }
        ingestor = getattr(self.app.state, 'ingestor', None)
        if ingestor is not None:
            stats['uploads'] = ingestor.get_stats()
        return stats
