from collections.abc import Sequence
from datetime import UTC, date, datetime, timedelta
import logging

import aiohttp
import orjson

from snapcraft_exporter.errors import TransportError
from snapcraft_exporter.schemas import MetricFilter, MetricFilters

logger = logging.getLogger(__name__)

_MAX_ERROR_BODY = 200


class DashboardTransport:
    """Fetches metrics from the Snap Store dashboard API over HTTP."""

    def __init__(
        self,
        url: str,
        macaroon: str | None,
        *,
        lookback_days: int = 0,
        timeout: float = 30.0,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self.url = url
        self.macaroon = macaroon
        self.lookback_days = lookback_days
        self.timeout = timeout
        self._session = session
        self._owns_session = session is None

    async def start(self) -> None:
        if self._session is not None:
            logger.debug('Dashboard session already initialized')
            return
        logger.info('Opening dashboard session', extra={'url': self.url})
        self._session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self.timeout)
        )
        self._owns_session = True

    async def stop(self) -> None:
        if self._session is not None and self._owns_session:
            logger.info('Closing dashboard session')
            await self._session.close()
        self._session = None

    def build_filters(
        self, pairs: Sequence[tuple[str, str]], today: date | None = None
    ) -> MetricFilters:
        start = end = None
        if self.lookback_days:
            end = today or datetime.now(UTC).date()
            start = end - timedelta(days=self.lookback_days)
        return MetricFilters(
            filters=[
                MetricFilter(
                    snap_id=snap_id, metric_name=metric_name, start=start, end=end
                )
                for snap_id, metric_name in pairs
            ]
        )

    async def fetch(self, snap_id: str, metric_name: str) -> bytes:
        return await self._post([(snap_id, metric_name)], snap_id, metric_name)

    async def fetch_all(self, pairs: Sequence[tuple[str, str]]) -> bytes:
        snap_ids = ','.join(dict.fromkeys(snap_id for snap_id, _ in pairs))
        return await self._post(pairs, snap_ids, f'{len(pairs)} metrics')

    async def _post(
        self, pairs: Sequence[tuple[str, str]], snap_id: str, metric_name: str
    ) -> bytes:
        if not self.macaroon:
            raise TransportError(snap_id, metric_name, 'SNAP_STORE_MACAROON is not set')
        if self._session is None:
            raise RuntimeError('Dashboard transport not started')

        body = orjson.dumps(
            self.build_filters(pairs).model_dump(mode='json', exclude_none=True)
        )
        headers = {
            'Authorization': self.macaroon,
            'Content-Type': 'application/json',
        }
        try:
            async with self._session.post(self.url, data=body, headers=headers) as response:
                payload = await response.read()
                status = response.status
        except aiohttp.ClientError as e:
            raise TransportError(snap_id, metric_name, f'request failed: {e}') from e

        if status != 200:
            detail = payload[:_MAX_ERROR_BODY].decode('utf-8', errors='replace')
            raise TransportError(snap_id, metric_name, f'HTTP {status}: {detail}')
        logger.debug(
            'Fetched dashboard metrics',
            extra={'filters': len(pairs), 'bytes': len(payload)},
        )
        return payload
