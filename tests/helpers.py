"""Builders and fakes shared by the test suite."""

import asyncio
from collections.abc import Mapping, Sequence
from typing import Any

import orjson

from snapcraft_exporter.errors import TransportError


def metric_payload(
    snap_id: str = '',
    metric_name: str = '',
    buckets: Sequence[Any] = (),
    series: Sequence[Mapping[str, Any]] = (),
    status: str | None = 'OK',
) -> bytes:
    """Encode a provider metric response the way snapcraft returns it."""
    payload: dict[str, Any] = {'buckets': list(buckets), 'series': list(series)}
    if snap_id:
        payload['snap_id'] = snap_id
    if metric_name:
        payload['metric_name'] = metric_name
    if status is not None:
        payload['status'] = status
    return orjson.dumps(payload)


class StubTransport:
    """In-memory transport keyed by (snap id, metric name).

    Pairs without a registered outcome answer with an empty response. An
    outcome that is an exception is raised instead of returned.
    """

    def __init__(
        self,
        responses: Mapping[tuple[str, str], bytes | Exception] | None = None,
        delays: Mapping[tuple[str, str], float] | None = None,
        default_delay: float = 0.0,
    ) -> None:
        self.responses = dict(responses or {})
        self.delays = dict(delays or {})
        self.default_delay = default_delay
        self.calls: list[tuple[str, str]] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.started = False
        self.stopped = False

    async def start(self) -> None:
        self.started = True

    async def stop(self) -> None:
        self.stopped = True

    async def fetch(self, snap_id: str, metric_name: str) -> bytes:
        key = (snap_id, metric_name)
        self.calls.append(key)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            delay = self.delays.get(key, self.default_delay)
            if delay:
                await asyncio.sleep(delay)
            outcome = self.responses.get(key)
            if outcome is None:
                return metric_payload(snap_id, metric_name)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome
        finally:
            self.in_flight -= 1


def failing(snap_id: str, metric_name: str) -> TransportError:
    return TransportError(snap_id, metric_name, 'upstream unavailable')


def envelope_payload(*metrics: bytes) -> bytes:
    """Wrap encoded metric responses in a dashboard ``{"metrics": [...]}`` body."""
    return orjson.dumps({'metrics': [orjson.loads(metric) for metric in metrics]})


class BatchStubTransport(StubTransport):
    """Stub that also answers every pair at once with a fixed envelope."""

    def __init__(self, envelope: bytes | Exception = b'{"metrics": []}') -> None:
        super().__init__()
        self.envelope = envelope
        self.batches: list[list[tuple[str, str]]] = []

    async def fetch_all(self, pairs: Sequence[tuple[str, str]]) -> bytes:
        self.batches.append(list(pairs))
        if isinstance(self.envelope, Exception):
            raise self.envelope
        return self.envelope
