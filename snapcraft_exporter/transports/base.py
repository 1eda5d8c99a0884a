from collections.abc import Sequence
from typing import Protocol, runtime_checkable


@runtime_checkable
class MetricsTransport(Protocol):
    """Source of raw provider bytes for one (snap id, metric name) pair.

    Implementations raise ``TransportError`` for any fetch failure and must be
    safe for concurrent ``fetch`` calls between ``start`` and ``stop``.
    """

    async def start(self) -> None: ...

    async def stop(self) -> None: ...

    async def fetch(self, snap_id: str, metric_name: str) -> bytes: ...


@runtime_checkable
class BatchMetricsTransport(MetricsTransport, Protocol):
    """Transport that can ask for many pairs in one round trip.

    ``fetch_all`` returns a ``{"metrics": [...]}`` envelope; every metric in
    it names the snap id and metric name it answers.
    """

    async def fetch_all(self, pairs: Sequence[tuple[str, str]]) -> bytes: ...
