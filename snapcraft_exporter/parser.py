from typing import Any, TypeVar

import orjson
from pydantic import BaseModel, ValidationError

from snapcraft_exporter.errors import FormatError
from snapcraft_exporter.schemas import MetricResponse, MetricsEnvelope

ModelT = TypeVar('ModelT', bound=BaseModel)


def _decode(raw: bytes) -> Any:
    try:
        return orjson.loads(raw)
    except orjson.JSONDecodeError as e:
        raise FormatError(f'Invalid JSON in metric response: {e}') from e


def _describe_errors(error: ValidationError) -> str:
    return '; '.join(
        f"{'.'.join(str(part) for part in item['loc']) or '<root>'}: {item['msg']}"
        for item in error.errors()
    )


def _validate(model: type[ModelT], data: Any) -> ModelT:
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise FormatError(
            f'Malformed {model.__name__}: {_describe_errors(e)}'
        ) from e


def parse_metrics_envelope(raw: bytes) -> list[MetricResponse]:
    """Decode a dashboard body of the form ``{"metrics": [...]}``."""
    return _validate(MetricsEnvelope, _decode(raw)).metrics


def parse_metric_response(raw: bytes) -> MetricResponse:
    """Decode one metric response.

    Accepts the bare metric object printed by ``snapcraft metrics`` as well
    as a dashboard envelope that carries exactly one metric. Bucket and value
    lengths are not reconciled here.
    """
    data = _decode(raw)
    if isinstance(data, dict) and 'metrics' in data:
        metrics = _validate(MetricsEnvelope, data).metrics
        if len(metrics) != 1:
            raise FormatError(
                f'Expected exactly one metric in response, got {len(metrics)}'
            )
        return metrics[0]
    return _validate(MetricResponse, data)
