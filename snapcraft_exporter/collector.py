import asyncio
from collections.abc import AsyncIterator, Callable, Iterator, Sequence
from contextlib import aclosing
from datetime import UTC, date, datetime, timedelta
import logging
from typing import cast

from snapcraft_exporter.errors import (
    ConsistencyError,
    ExporterError,
    FormatError,
    TransportError,
)
from snapcraft_exporter.parser import parse_metric_response, parse_metrics_envelope
from snapcraft_exporter.registry import MetricRegistry
from snapcraft_exporter.schemas import (
    FailurePolicy,
    MetricDescriptor,
    MetricResponse,
    Sample,
    SeriesItem,
)
from snapcraft_exporter.transports.base import BatchMetricsTransport, MetricsTransport

logger = logging.getLogger(__name__)

FetchOutcome = tuple[str, str, MetricResponse | ExporterError]


def days_before_today(days: int) -> date:
    return datetime.now(UTC).date() - timedelta(days=days)


def check_series(snap_id: str, response: MetricResponse, item: SeriesItem) -> None:
    if len(item.values) != len(response.buckets):
        raise ConsistencyError(
            snap_id=snap_id,
            metric_name=response.metric_name,
            series_name=item.name,
            values_count=len(item.values),
            buckets_count=len(response.buckets),
        )


class SnapcraftCollector:
    """Turns snapcraft metric responses into labeled, timestamped samples.

    Every ``collect()`` call fetches all (snap id, metric name) pairs again,
    at most ``max_concurrency`` at a time and each bounded by
    ``fetch_timeout``. With ``batch`` the transport is asked for every pair
    in one ``fetch_all`` call instead, bounded by the same timeout. The
    instance holds no per-scrape state, so concurrent scrapes are safe.

    With ``reference_date`` set only buckets equal to its result are emitted;
    otherwise the whole window returned by the provider is exported.
    """

    def __init__(
        self,
        snap_ids: Sequence[str],
        transport: MetricsTransport,
        registry: MetricRegistry,
        *,
        failure_policy: FailurePolicy = FailurePolicy.SKIP,
        fetch_timeout: float = 30.0,
        max_concurrency: int = 4,
        reference_date: Callable[[], date] | None = None,
        batch: bool = False,
    ) -> None:
        if max_concurrency < 1:
            raise ValueError('max_concurrency must be at least 1')
        if fetch_timeout <= 0:
            raise ValueError('fetch_timeout must be positive')
        if batch and not isinstance(transport, BatchMetricsTransport):
            raise ValueError('batch requires a transport with fetch_all()')
        self.snap_ids = tuple(snap_ids)
        self.transport = transport
        self.registry = registry
        self.failure_policy = failure_policy
        self.fetch_timeout = fetch_timeout
        self.max_concurrency = max_concurrency
        self.reference_date = reference_date
        self.batch = batch

    def describe(self) -> list[MetricDescriptor]:
        return self.registry.describe()

    def collect(self) -> AsyncIterator[Sample]:
        return self._iter_samples(self.failure_policy)

    async def probe(self) -> int:
        """Run one fail-fast collection and return the number of samples."""
        count = 0
        async for _ in self._iter_samples(FailurePolicy.ABORT):
            count += 1
        return count

    async def _iter_samples(self, policy: FailurePolicy) -> AsyncIterator[Sample]:
        reference = self.reference_date() if self.reference_date else None
        pairs = [
            (snap_id, metric_name)
            for snap_id in self.snap_ids
            for metric_name in self.registry.metric_names
        ]
        outcomes = self._fetch_batch(pairs) if self.batch else self._fetch_each(pairs)
        async with aclosing(outcomes):
            async for snap_id, metric_name, outcome in outcomes:
                if isinstance(outcome, ExporterError):
                    if policy is FailurePolicy.ABORT:
                        raise outcome
                    logger.warning(
                        'Skipping snapcraft metric',
                        extra={
                            'snap_id': snap_id,
                            'metric_name': metric_name,
                            'error': str(outcome),
                        },
                    )
                    continue
                for sample in self._emit(snap_id, metric_name, outcome, reference):
                    yield sample

    async def _fetch_each(
        self, pairs: Sequence[tuple[str, str]]
    ) -> AsyncIterator[FetchOutcome]:
        semaphore = asyncio.Semaphore(self.max_concurrency)
        tasks = [
            asyncio.create_task(self._fetch(semaphore, snap_id, metric_name))
            for snap_id, metric_name in pairs
        ]
        try:
            for next_done in asyncio.as_completed(tasks):
                yield await next_done
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _fetch(
        self, semaphore: asyncio.Semaphore, snap_id: str, metric_name: str
    ) -> FetchOutcome:
        async with semaphore:
            try:
                raw = await asyncio.wait_for(
                    self.transport.fetch(snap_id, metric_name),
                    timeout=self.fetch_timeout,
                )
            except Exception as e:
                return snap_id, metric_name, self._fetch_failure(snap_id, metric_name, e)

        try:
            response = parse_metric_response(raw)
        except FormatError as e:
            return snap_id, metric_name, e

        # the command output may leave out the identifying fields
        if response.snap_id and response.snap_id != snap_id:
            return snap_id, metric_name, FormatError(
                f'Response is for snap {response.snap_id!r}, expected {snap_id!r}'
            )
        if response.metric_name and response.metric_name != metric_name:
            return snap_id, metric_name, FormatError(
                f'Response is for metric {response.metric_name!r}, '
                f'expected {metric_name!r}'
            )
        return snap_id, metric_name, response.model_copy(
            update={'snap_id': snap_id, 'metric_name': metric_name}
        )

    async def _fetch_batch(
        self, pairs: Sequence[tuple[str, str]]
    ) -> AsyncIterator[FetchOutcome]:
        transport = cast(BatchMetricsTransport, self.transport)
        try:
            raw = await asyncio.wait_for(
                transport.fetch_all(pairs), timeout=self.fetch_timeout
            )
            responses = parse_metrics_envelope(raw)
        except Exception as e:
            for snap_id, metric_name in pairs:
                yield snap_id, metric_name, self._fetch_failure(snap_id, metric_name, e)
            return

        requested = set(pairs)
        matched: dict[tuple[str, str], MetricResponse] = {}
        for response in responses:
            key = (response.snap_id, response.metric_name)
            if key not in requested:
                logger.warning(
                    'Ignoring unrequested snapcraft metric',
                    extra={
                        'snap_id': response.snap_id,
                        'metric_name': response.metric_name,
                    },
                )
                continue
            matched.setdefault(key, response)

        for snap_id, metric_name in pairs:
            response = matched.get((snap_id, metric_name))
            if response is None:
                yield snap_id, metric_name, TransportError(
                    snap_id, metric_name, 'missing from batched response'
                )
            else:
                yield snap_id, metric_name, response

    def _fetch_failure(
        self, snap_id: str, metric_name: str, error: Exception
    ) -> ExporterError:
        """Pin a failed transport call to one pair, keeping the cause."""
        if isinstance(error, TransportError):
            if (error.snap_id, error.metric_name) == (snap_id, metric_name):
                return error
            reason = error.reason
        elif isinstance(error, ExporterError):
            return error
        elif isinstance(error, TimeoutError):
            reason = f'timed out after {self.fetch_timeout}s'
        else:
            reason = f'{type(error).__name__}: {error}'
        failure = TransportError(snap_id, metric_name, reason)
        failure.__cause__ = error
        return failure

    def _emit(
        self,
        snap_id: str,
        metric_name: str,
        response: MetricResponse,
        reference: date | None,
    ) -> Iterator[Sample]:
        descriptor = self.registry.lookup(metric_name)
        for item in response.series:
            try:
                check_series(snap_id, response, item)
            except ConsistencyError as e:
                logger.warning(
                    'Dropping inconsistent series',
                    extra={
                        'snap_id': snap_id,
                        'metric_name': metric_name,
                        'series': item.name,
                        'error': str(e),
                    },
                )
                continue

            labels = dict(zip(descriptor.label_names, (item.name, snap_id)))
            for bucket, value in zip(response.buckets, item.values, strict=True):
                if reference is not None and bucket != reference:
                    continue
                yield Sample(
                    descriptor=descriptor,
                    labels=labels,
                    value=float(value),
                    timestamp=bucket,
                )
