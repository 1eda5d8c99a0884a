"""Integration tests for the dashboard HTTP transport."""

from collections.abc import AsyncGenerator
from datetime import date
from typing import Any

from aiohttp import test_utils, web
import orjson
import pytest

from snapcraft_exporter.collector import SnapcraftCollector
from snapcraft_exporter.errors import TransportError
from snapcraft_exporter.parser import parse_metric_response
from snapcraft_exporter.registry import METRIC_NAMES, MetricRegistry
from snapcraft_exporter.transports.dashboard import DashboardTransport
from tests.helpers import envelope_payload, metric_payload

API_PATH = '/dev/api/snaps/metrics'


class FakeDashboard:
    """Records requests and answers with a configurable status and body."""

    def __init__(self) -> None:
        self.requests: list[dict[str, Any]] = []
        self.status = 200
        self.body = b''

    async def handle(self, request: web.Request) -> web.Response:
        self.requests.append(
            {
                'authorization': request.headers.get('Authorization'),
                'content_type': request.headers.get('Content-Type'),
                'json': orjson.loads(await request.read()),
            }
        )
        return web.Response(
            status=self.status, body=self.body, content_type='application/json'
        )


@pytest.fixture
async def dashboard() -> AsyncGenerator[tuple[FakeDashboard, str], None]:
    fake = FakeDashboard()
    app = web.Application()
    app.router.add_post(API_PATH, fake.handle)
    server = test_utils.TestServer(app)
    await server.start_server()
    try:
        yield fake, str(server.make_url(API_PATH))
    finally:
        await server.close()


@pytest.fixture
async def transport(
    dashboard: tuple[FakeDashboard, str],
) -> AsyncGenerator[DashboardTransport, None]:
    _, url = dashboard
    client = DashboardTransport(url, 'macaroon-token', timeout=5.0)
    await client.start()
    try:
        yield client
    finally:
        await client.stop()


class TestDashboardFetch:
    """Tests for DashboardTransport.fetch()."""

    @pytest.mark.transport
    async def test_posts_filter_with_macaroon(
        self, dashboard: tuple[FakeDashboard, str], transport: DashboardTransport
    ) -> None:
        """One filter for the requested pair is sent with the credential."""
        fake, _ = dashboard
        fake.body = orjson.dumps({'metrics': []})

        await transport.fetch('foo', 'installed_base_by_country')

        assert fake.requests == [
            {
                'authorization': 'macaroon-token',
                'content_type': 'application/json',
                'json': {
                    'filters': [
                        {'snap_id': 'foo', 'metric_name': 'installed_base_by_country'}
                    ]
                },
            }
        ]

    @pytest.mark.transport
    async def test_returns_body_for_parser(
        self, dashboard: tuple[FakeDashboard, str], transport: DashboardTransport
    ) -> None:
        """The raw body is returned and decodes as a single metric."""
        fake, _ = dashboard
        metric = orjson.loads(
            metric_payload(
                'foo',
                'installed_base_by_channel',
                ['2024-01-01'],
                [{'name': 'stable', 'values': [42]}],
            )
        )
        fake.body = orjson.dumps({'metrics': [metric]})

        raw = await transport.fetch('foo', 'installed_base_by_channel')

        response = parse_metric_response(raw)
        assert response.series[0].values == [42]
        assert response.buckets == [date(2024, 1, 1)]

    @pytest.mark.transport
    async def test_error_status_is_transport_error(
        self, dashboard: tuple[FakeDashboard, str], transport: DashboardTransport
    ) -> None:
        """Non-200 answers carry the status and the start of the body."""
        fake, _ = dashboard
        fake.status = 401
        fake.body = b'{"error_list": [{"code": "macaroon-needs-refresh"}]}'

        with pytest.raises(TransportError) as exc_info:
            await transport.fetch('foo', 'daily_device_change')

        assert 'HTTP 401' in exc_info.value.reason
        assert 'macaroon-needs-refresh' in exc_info.value.reason

    @pytest.mark.transport
    async def test_missing_macaroon_sends_nothing(
        self, dashboard: tuple[FakeDashboard, str]
    ) -> None:
        """Without a credential the request is not attempted."""
        fake, url = dashboard
        client = DashboardTransport(url, None)
        await client.start()
        try:
            with pytest.raises(TransportError, match='SNAP_STORE_MACAROON'):
                await client.fetch('foo', 'daily_device_change')
        finally:
            await client.stop()

        assert fake.requests == []

    @pytest.mark.transport
    async def test_connection_failure_is_transport_error(self) -> None:
        """An unreachable endpoint is reported as a transport failure."""
        client = DashboardTransport('http://127.0.0.1:1/metrics', 'm', timeout=2.0)
        await client.start()
        try:
            with pytest.raises(TransportError, match='request failed'):
                await client.fetch('foo', 'daily_device_change')
        finally:
            await client.stop()

    @pytest.mark.transport
    async def test_fetch_before_start_is_an_error(self) -> None:
        """The session must be opened by start()."""
        client = DashboardTransport('http://127.0.0.1:1/metrics', 'm')

        with pytest.raises(RuntimeError, match='not started'):
            await client.fetch('foo', 'daily_device_change')


class TestFilters:
    """Tests for the request filter body."""

    @pytest.mark.transport
    def test_no_lookback_omits_dates(self) -> None:
        """Without a lookback window start and end are left out."""
        client = DashboardTransport('http://example.invalid', 'm')

        body = client.build_filters([('foo', 'daily_device_change')]).model_dump(
            mode='json', exclude_none=True
        )

        assert body == {'filters': [{'snap_id': 'foo', 'metric_name': 'daily_device_change'}]}

    @pytest.mark.transport
    def test_lookback_sets_window(self) -> None:
        """LOOKBACK_DAYS sets start and end around today."""
        client = DashboardTransport('http://example.invalid', 'm', lookback_days=30)

        body = client.build_filters(
            [('foo', 'daily_device_change')], today=date(2024, 3, 31)
        ).model_dump(mode='json', exclude_none=True)

        assert body['filters'][0]['start'] == '2024-03-01'
        assert body['filters'][0]['end'] == '2024-03-31'


class TestDashboardBatch:
    """Tests for DashboardTransport.fetch_all() and batched collection."""

    @pytest.mark.transport
    async def test_posts_every_filter_in_one_request(
        self, dashboard: tuple[FakeDashboard, str], transport: DashboardTransport
    ) -> None:
        """All pairs go out as filters of a single POST."""
        fake, _ = dashboard
        fake.body = orjson.dumps({'metrics': []})

        await transport.fetch_all(
            [('foo', 'daily_device_change'), ('bar', 'installed_base_by_version')]
        )

        assert [request['json'] for request in fake.requests] == [
            {
                'filters': [
                    {'snap_id': 'foo', 'metric_name': 'daily_device_change'},
                    {'snap_id': 'bar', 'metric_name': 'installed_base_by_version'},
                ]
            }
        ]

    @pytest.mark.transport
    async def test_error_status_names_the_snaps(
        self, dashboard: tuple[FakeDashboard, str], transport: DashboardTransport
    ) -> None:
        """A rejected batch is a transport failure for the requested snaps."""
        fake, _ = dashboard
        fake.status = 503

        with pytest.raises(TransportError) as exc_info:
            await transport.fetch_all(
                [('foo', 'daily_device_change'), ('bar', 'daily_device_change')]
            )

        assert exc_info.value.snap_id == 'foo,bar'
        assert 'HTTP 503' in exc_info.value.reason

    @pytest.mark.transport
    async def test_collector_scrapes_with_one_request(
        self, dashboard: tuple[FakeDashboard, str], transport: DashboardTransport
    ) -> None:
        """A batched scrape turns one dashboard answer into samples."""
        fake, _ = dashboard
        fake.body = envelope_payload(
            metric_payload(
                'foo',
                'installed_base_by_channel',
                ['2024-01-01'],
                [{'name': 'stable', 'values': [42]}],
            )
        )
        collector = SnapcraftCollector(
            ['foo'], transport, MetricRegistry(), batch=True
        )

        samples = [sample async for sample in collector.collect()]

        assert [(s.labels, s.value) for s in samples] == [({'channel': 'stable'}, 42.0)]
        assert len(fake.requests) == 1
        assert len(fake.requests[0]['json']['filters']) == len(METRIC_NAMES)
