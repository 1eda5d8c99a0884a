class ExporterError(Exception):
    """Base class for every failure raised by the exporter."""


class ConfigurationError(ExporterError):
    """Required configuration is missing or invalid. Fatal at startup."""


class UnknownMetricError(ExporterError):
    def __init__(self, metric_name: str) -> None:
        super().__init__(f'Unsupported snapcraft metric: {metric_name!r}')
        self.metric_name = metric_name


class TransportError(ExporterError):
    def __init__(self, snap_id: str, metric_name: str, reason: str) -> None:
        super().__init__(f'Failed to fetch {metric_name} for {snap_id}: {reason}')
        self.snap_id = snap_id
        self.metric_name = metric_name
        self.reason = reason


class FormatError(ExporterError):
    """Raw provider bytes did not decode into a metric response."""


class ConsistencyError(ExporterError):
    def __init__(
        self,
        snap_id: str,
        metric_name: str,
        series_name: str,
        values_count: int,
        buckets_count: int,
    ) -> None:
        super().__init__(
            f'Series {series_name!r} of {metric_name} for {snap_id} has '
            f'{values_count} values for {buckets_count} buckets'
        )
        self.snap_id = snap_id
        self.metric_name = metric_name
        self.series_name = series_name
        self.values_count = values_count
        self.buckets_count = buckets_count
