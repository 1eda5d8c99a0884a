import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import HTMLResponse, PlainTextResponse

from snapcraft_exporter.collector import SnapcraftCollector
from snapcraft_exporter.errors import ExporterError
from snapcraft_exporter.prometheus_formatter import CONTENT_TYPE, PrometheusFormatter
from snapcraft_exporter.schemas import Sample

logger = logging.getLogger(__name__)

formatter = PrometheusFormatter()

_INDEX_TEMPLATE = """<html>
<head><title>Snapcraft Metrics Exporter</title></head>
<body>
<h1>Snapcraft Exporter</h1>
<p><a href='{metrics_path}'>Metrics</a></p>
</body>
</html>
"""


def get_collector(request: Request) -> SnapcraftCollector:
    return request.app.state.collector


def build_router(metrics_path: str) -> APIRouter:
    router = APIRouter()
    index_page = _INDEX_TEMPLATE.format(metrics_path=metrics_path)

    @router.get(metrics_path, response_class=PlainTextResponse)
    async def scrape_metrics(
        collector: Annotated[SnapcraftCollector, Depends(get_collector)],
    ) -> PlainTextResponse:
        samples: list[Sample] = []
        try:
            async for sample in collector.collect():
                samples.append(sample)
        except ExporterError as e:
            logger.exception('Scrape aborted', extra={'error': str(e)})
            raise HTTPException(status_code=503, detail=f'Scrape aborted: {e}') from e

        logger.debug('Scrape complete', extra={'samples': len(samples)})
        body = formatter.format_metrics(collector.describe(), samples)
        return PlainTextResponse(body, media_type=CONTENT_TYPE)

    @router.get('/', response_class=HTMLResponse)
    async def index() -> HTMLResponse:
        return HTMLResponse(index_page)

    return router
