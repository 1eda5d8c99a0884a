import asyncio
from collections.abc import AsyncGenerator, Callable
from contextlib import asynccontextmanager
from datetime import date
from functools import partial
import logging

from fastapi import FastAPI

from snapcraft_exporter.collector import SnapcraftCollector, days_before_today
from snapcraft_exporter.config import Settings
from snapcraft_exporter.registry import MetricRegistry
from snapcraft_exporter.router import build_router
from snapcraft_exporter.schemas import SampleWindow, TransportKind
from snapcraft_exporter.transports.base import MetricsTransport
from snapcraft_exporter.transports.factory import build_transport

logger = logging.getLogger(__name__)


def build_collector(config: Settings, transport: MetricsTransport) -> SnapcraftCollector:
    reference_date: Callable[[], date] | None = None
    if config.SAMPLE_WINDOW is SampleWindow.LATEST:
        reference_date = partial(days_before_today, config.LATEST_OFFSET_DAYS)
    return SnapcraftCollector(
        config.SNAP_IDS,
        transport,
        MetricRegistry(entity_label=config.entity_label),
        failure_policy=config.FAILURE_POLICY,
        fetch_timeout=config.FETCH_TIMEOUT,
        max_concurrency=config.FETCH_CONCURRENCY,
        reference_date=reference_date,
        batch=config.TRANSPORT is TransportKind.API and config.BATCH_REQUESTS,
    )


def create_app(config: Settings, transport: MetricsTransport | None = None) -> FastAPI:
    transport = transport or build_transport(config)
    collector = build_collector(config, transport)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        await transport.start()
        logger.info(
            'Exporter started',
            extra={
                'snap_ids': list(config.SNAP_IDS),
                'transport': config.TRANSPORT.value,
                'metrics_path': config.METRICS_PATH,
            },
        )
        try:
            if config.STARTUP_PROBE:
                count = await collector.probe()
                logger.info('Startup probe succeeded', extra={'samples': count})
            yield
        finally:
            logger.info('Shutting down...')
            await asyncio.gather(transport.stop(), return_exceptions=True)
            logger.info('Shutdown complete')

    app = FastAPI(title='Snapcraft Exporter', lifespan=lifespan)
    app.state.collector = collector

    @app.get('/health')
    async def health_check() -> dict[str, str]:
        logger.debug('Health check...')
        return {'status': 'ok'}

    app.include_router(build_router(config.METRICS_PATH))
    return app
