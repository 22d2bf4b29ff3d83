"""Main entry point for the sensor series service."""
import argparse
import logging
import signal
import sys
from functools import partial
from typing import Optional

from seriesflow.api import SeriesAPI
from seriesflow.backends import TimeSeriesBackend, create_backend
from seriesflow.broadcast import LiveBroadcast
from seriesflow.config import Config, load_config
from seriesflow.ingestion import IngestionLoop, LoopRegistry
from seriesflow.metrics import SelfMetrics
from seriesflow.query import RangeQueryService
from seriesflow.session import ConsumerSession
from seriesflow.sources import SampleSource, make_source
from seriesflow.store import SeriesStore


def setup_logging(log_level: str):
    """Setup logging configuration."""
    level = getattr(logging, log_level.upper(), logging.INFO)

    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    # Reduce noise from some libraries
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def make_loop(
    key: str,
    config: Config,
    source: SampleSource,
    store: SeriesStore,
    broadcast: LiveBroadcast,
    self_metrics: Optional[SelfMetrics] = None
) -> IngestionLoop:
    return IngestionLoop(
        key,
        source,
        store,
        broadcast,
        interval_s=config.ingestion.interval_s,
        read_timeout_s=config.ingestion.read_timeout_s,
        self_metrics=self_metrics
    )


def build_api(
    config: Config,
    backend: Optional[TimeSeriesBackend] = None,
    source: Optional[SampleSource] = None
) -> SeriesAPI:
    """Wire store, source, live channel and loops into the request layer."""
    self_metrics = SelfMetrics()
    backend = backend or create_backend(config.store)
    source = source or make_source(config.ingestion)
    store = SeriesStore(
        backend,
        retention_ms=config.store.retention_ms,
        metric=config.store.metric,
        self_metrics=self_metrics
    )
    broadcast = LiveBroadcast(config.live.subscriber_queue_size, self_metrics=self_metrics)
    loops = LoopRegistry(partial(
        make_loop,
        config=config,
        source=source,
        store=store,
        broadcast=broadcast,
        self_metrics=self_metrics
    ))
    query_service = RangeQueryService(store, default_entity=config.global_.default_entity)
    return SeriesAPI(config, store, query_service, source, broadcast, loops, self_metrics)


def build_session(api: SeriesAPI, entity: Optional[str] = None, range_label: str = "6h") -> ConsumerSession:
    """Consumer session over the API's services, sized by the window configuration.

    The session owns its own ingestion loop rather than sharing the
    server's registry.
    """
    config = api.config
    return ConsumerSession(
        entity or config.global_.default_entity,
        range_label,
        api.query_service,
        api.broadcast,
        api.loops.factory,
        capacity=config.window.capacity,
        ranges=config.window.ranges,
    )


def main():
    """Main function."""
    parser = argparse.ArgumentParser(
        description="Sensor Series - ingest readings and serve range and live queries"
    )
    parser.add_argument(
        "--config",
        "-c",
        help="Path to configuration YAML file (defaults are used when omitted)"
    )

    args = parser.parse_args()

    # Load configuration
    try:
        config = load_config(args.config) if args.config else Config()
    except Exception as e:
        print(f"Error loading configuration: {e}", file=sys.stderr)
        sys.exit(1)

    # Setup logging
    setup_logging(config.global_.log_level)
    logger = logging.getLogger(__name__)

    logger.info("=" * 60)
    logger.info("Sensor Series")
    logger.info("=" * 60)
    logger.info(f"Configuration loaded from: {args.config or '<defaults>'}")
    logger.info(f"Store backend: {config.store.backend} (retention {config.store.retention_ms}ms)")
    logger.info(f"Tick interval: {config.ingestion.interval_s}s, read timeout: {config.ingestion.read_timeout_s}s")

    try:
        api = build_api(config)
    except Exception as e:
        logger.error(f"Failed to initialize services: {e}", exc_info=True)
        sys.exit(1)

    for entity in config.ingestion.entities:
        api.loops.ensure(entity)
    logger.info(f"Sampling {len(config.ingestion.entities)} entities")

    def shutdown():
        api.loops.stop_all()
        api.store.backend.close()

    # Setup signal handlers
    def signal_handler(signum, frame):
        logger.info(f"Received signal {signum}, shutting down...")
        shutdown()
        sys.exit(0)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    # Run API (blocking)
    logger.info(f"Starting API on {config.global_.api_host}:{config.global_.api_port}")
    try:
        api.run(host=config.global_.api_host, port=config.global_.api_port)
    except Exception as e:
        logger.error(f"API error: {e}", exc_info=True)
        shutdown()
        sys.exit(1)


if __name__ == "__main__":
    main()
