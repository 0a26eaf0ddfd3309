"""HTTP and Socket.IO server for deepsight.

Serves two read endpoints through FastAPI and the `system-info` /
`system-update` stream through python-socketio, both on one ASGI app.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

import socketio
import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from deepsight.config import Settings
from deepsight.errors import ProviderFailure
from deepsight.hub import BroadcastHub
from deepsight.provider import MetricProvider, PsutilProvider
from deepsight.sampler import Sampler, Ticker

logger = logging.getLogger(__name__)


class SocketIOChannel:
    """Channel that emits to one Socket.IO session."""

    def __init__(self, sio: socketio.AsyncServer, sid: str) -> None:
        self._sio = sio
        self._sid = sid

    @property
    def id(self) -> str:
        return self._sid

    async def send(self, event: str, payload: dict[str, Any]) -> None:
        await self._sio.emit(event, payload, to=self._sid)

    async def close(self) -> None:
        await self._sio.disconnect(self._sid)


def _cors_origins(value: str) -> list[str] | str:
    if value.strip() == "*":
        return "*"
    return [origin.strip() for origin in value.split(",") if origin.strip()]


class DeepSightServer:
    """
    Wires provider, sampler, hub and ticker to the HTTP and streaming surfaces.

    The ticker starts with the ASGI lifespan and is stopped, together with
    every subscriber channel, when the app shuts down.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        provider: MetricProvider | None = None,
        start_ticker: bool = True,
    ) -> None:
        self.settings = settings or Settings()
        self.sampler = Sampler(
            provider or PsutilProvider(),
            self.settings.top_processes,
            query_timeout=self.settings.query_timeout,
        )
        self.hub = BroadcastHub(self.sampler, self.settings.queue_size)
        self.ticker = Ticker(self.hub.broadcast_once, self.settings.interval, name="sampler")
        self._start_ticker = start_ticker

        origins = _cors_origins(self.settings.cors_origins)
        self.sio = socketio.AsyncServer(
            async_mode="asgi",
            cors_allowed_origins=origins,
            logger=False,
            engineio_logger=False,
        )
        self._setup_socket_handlers()
        self.api = self._build_api(origins)
        self.app = socketio.ASGIApp(self.sio, other_asgi_app=self.api)

    def _setup_socket_handlers(self) -> None:
        self.sio.on("connect", self._on_connect)
        self.sio.on("disconnect", self._on_disconnect)

    async def _on_connect(self, sid: str, environ: dict[str, Any], auth: Any = None) -> None:
        logger.info("A subscriber connected: %s", sid)
        # Registration waits for the static snapshot; do not hold up the handshake
        self.sio.start_background_task(self.hub.register, SocketIOChannel(self.sio, sid))

    async def _on_disconnect(self, sid: str, reason: Any = None) -> None:
        logger.info("Subscriber %s disconnected", sid)
        await self.hub.unregister(sid)

    @asynccontextmanager
    async def lifespan(self, app: FastAPI) -> AsyncIterator[None]:
        if self._start_ticker:
            self.ticker.start()
        try:
            yield
        finally:
            await self.ticker.stop()
            await self.hub.close()

    def _build_api(self, origins: list[str] | str) -> FastAPI:
        api = FastAPI(title="deepsight", lifespan=self.lifespan)
        api.add_middleware(
            CORSMiddleware,
            allow_origins=[origins] if isinstance(origins, str) else origins,
            allow_methods=["GET"],
            allow_headers=["*"],
        )

        @api.get("/api/info")
        async def static_info() -> Any:
            try:
                snapshot = await self.hub.static_info()
            except ProviderFailure as e:
                logger.error("Error retrieving static info: %s", e)
                return JSONResponse(status_code=500, content={"error": "Failed to retrieve static info"})
            return snapshot.to_dict()

        @api.get("/api/refresh")
        async def refresh() -> Any:
            try:
                report = await self.hub.refresh()
            except ProviderFailure as e:
                logger.error("Error retrieving dynamic data: %s", e)
                return JSONResponse(status_code=500, content={"error": "Failed to retrieve dynamic data"})
            return report.to_dict()

        @api.get("/api/health")
        async def health() -> dict[str, Any]:
            return {
                "status": "ok",
                "subscribers": self.hub.subscriber_count,
                "ticker_running": self.ticker.is_running,
            }

        return api


def create_app(settings: Settings | None = None) -> socketio.ASGIApp:
    """ASGI factory, e.g. `uvicorn deepsight.server:create_app --factory`."""
    return DeepSightServer(settings or Settings.from_env()).app


def run(settings: Settings) -> None:
    """Serve until interrupted."""
    server = DeepSightServer(settings)
    logger.info("deepsight server listening on %s:%d", settings.host, settings.port)
    uvicorn.run(
        server.app,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )
