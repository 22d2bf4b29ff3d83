"""HTTP and WebSocket request layer using FastAPI."""
from datetime import datetime, timezone
from typing import Optional
import asyncio
import logging
import time

from fastapi import FastAPI, HTTPException, Query, WebSocket, WebSocketDisconnect
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST
from pydantic import BaseModel

from seriesflow.broadcast import LiveBroadcast
from seriesflow.config import Config
from seriesflow.errors import ErrorKind, InvalidRange, StoreError
from seriesflow.ingestion import LoopRegistry
from seriesflow.metrics import SelfMetrics
from seriesflow.query import RangeQueryService
from seriesflow.series import Sample, canonical_key
from seriesflow.sources import SampleSource
from seriesflow.store import SeriesStore

logger = logging.getLogger(__name__)

LIVE_POLL_INTERVAL_S = 0.1


class LogLevelRequest(BaseModel):
    """Request to change log level."""
    level: str


def store_error_status(error: StoreError) -> int:
    """HTTP status for a store error that reached the boundary."""
    return 503 if error.kind is ErrorKind.TRANSIENT else 500


class SeriesAPI:
    """FastAPI application over the store, query service and live channel."""

    def __init__(
        self,
        config: Config,
        store: SeriesStore,
        query_service: RangeQueryService,
        source: SampleSource,
        broadcast: LiveBroadcast,
        loops: LoopRegistry,
        self_metrics: SelfMetrics
    ):
        self.config = config
        self.store = store
        self.query_service = query_service
        self.source = source
        self.broadcast = broadcast
        self.loops = loops
        self.self_metrics = self_metrics
        self.start_time = time.time()
        self.app = FastAPI(title="Sensor Series API")

        self._setup_routes()

    def _entity(self, city: Optional[str]) -> str:
        return (city or "").strip() or self.config.global_.default_entity

    def _setup_routes(self):
        """Setup API routes."""

        @self.app.get("/healthz")
        async def healthz():
            """Health check endpoint."""
            return {"status": "healthy", "timestamp": time.time()}

        @self.app.get("/status")
        async def status():
            """Get ingestion and live channel status."""
            return {
                "uptime_seconds": time.time() - self.start_time,
                "loops": {
                    key: {
                        "running": loop.is_running,
                        "tick_count": loop.tick_count,
                        "last_sample": loop.last_sample.to_dict() if loop.last_sample else None,
                    }
                    for key, loop in list(self.loops.loops.items())
                },
                "subscribers": self.broadcast.subscriber_count(),
                "config": {
                    "interval_s": self.config.ingestion.interval_s,
                    "read_timeout_s": self.config.ingestion.read_timeout_s,
                    "retention_ms": self.config.store.retention_ms,
                },
            }

        @self.app.get("/weather")
        async def current_reading(city: Optional[str] = None):
            """Read the current value, store it and publish it live."""
            entity = self._entity(city)
            key = canonical_key(entity)
            try:
                value, _observed_at = await asyncio.wait_for(
                    run_in_threadpool(self.source.read_current_value, key),
                    timeout=self.config.ingestion.read_timeout_s
                )
            except asyncio.TimeoutError:
                logger.warning(f"Reading '{key}' timed out")
                raise HTTPException(status_code=504, detail="Sample source timed out")

            sample = Sample(int(time.time() * 1000), float(value))
            try:
                await run_in_threadpool(self.store.append, key, sample.timestamp_ms, sample.value)
            except StoreError as e:
                logger.error(f"Error storing reading for '{key}': {e}")
                raise HTTPException(status_code=store_error_status(e), detail=str(e))
            self.broadcast.publish(key, sample)

            return {
                "city": entity,
                "value": sample.value,
                "updatedAt": datetime.fromtimestamp(
                    sample.timestamp_ms / 1000, tz=timezone.utc
                ).isoformat(),
            }

        @self.app.get("/weather/series")
        async def series(
            city: Optional[str] = None,
            from_: str = Query(..., alias="from"),
            to: str = Query(...)
        ):
            """Points for a city between two ISO-8601 instants."""
            try:
                return await run_in_threadpool(
                    self.query_service.get_series, self._entity(city), from_, to
                )
            except InvalidRange as e:
                raise HTTPException(status_code=400, detail=str(e))
            except StoreError as e:
                logger.error(f"Error querying series for '{city}': {e}")
                raise HTTPException(status_code=store_error_status(e), detail=str(e))

        @self.app.websocket("/weather/live")
        async def live(websocket: WebSocket, city: Optional[str] = None):
            """Stream live samples for a city until the client disconnects.

            Subscribing only listens; sampling is driven by configured loops
            and /weather reads.
            """
            key = canonical_key(self._entity(city))
            subscription = self.broadcast.subscribe(key)
            try:
                await websocket.accept()
            except Exception:
                subscription.close()
                raise
            receiver = asyncio.ensure_future(websocket.receive())
            try:
                while True:
                    if receiver.done():
                        message = receiver.result()
                        if message["type"] == "websocket.disconnect":
                            break
                        receiver = asyncio.ensure_future(websocket.receive())
                    samples = subscription.drain()
                    for sample in samples:
                        await websocket.send_json(sample.to_dict())
                    if not samples:
                        await asyncio.sleep(LIVE_POLL_INTERVAL_S)
            except WebSocketDisconnect:
                pass
            finally:
                receiver.cancel()
                subscription.close()

        @self.app.get("/metrics")
        async def metrics():
            """Prometheus exposition of self-metrics."""
            return Response(self.self_metrics.render(), media_type=CONTENT_TYPE_LATEST)

        @self.app.post("/control/loglevel")
        async def set_log_level(request: LogLevelRequest):
            """Change log level at runtime."""
            level = request.level.upper()

            if level not in ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]:
                raise HTTPException(
                    status_code=400,
                    detail=f"Invalid log level: {level}"
                )

            logging.getLogger().setLevel(getattr(logging, level))
            logger.info(f"Log level changed to: {level}")

            return {
                "status": "log_level_changed",
                "level": level,
                "timestamp": time.time()
            }

    def run(self, host: str = "0.0.0.0", port: int = 3001):
        """Run the API server."""
        import uvicorn
        uvicorn.run(self.app, host=host, port=port, log_level="info")
