from snapcraft_exporter.config import Settings
from snapcraft_exporter.schemas import TransportKind
from snapcraft_exporter.transports.base import MetricsTransport
from snapcraft_exporter.transports.command import CommandTransport
from snapcraft_exporter.transports.dashboard import DashboardTransport


def build_transport(config: Settings) -> MetricsTransport:
    if config.TRANSPORT is TransportKind.CLI:
        return CommandTransport(config.SNAPCRAFT_COMMAND)
    return DashboardTransport(
        url=config.SNAPCRAFT_API_URL,
        macaroon=config.SNAP_STORE_MACAROON,
        lookback_days=config.LOOKBACK_DAYS,
        timeout=config.FETCH_TIMEOUT,
    )
