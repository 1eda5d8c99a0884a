from datetime import date
from enum import Enum
import re
from typing import Any

from pydantic import BaseModel, ConfigDict, StrictInt, field_validator

_BUCKET_PATTERN = re.compile(r'\d{4}-\d{2}-\d{2}')


def parse_bucket(value: object) -> date:
    if not isinstance(value, str) or not _BUCKET_PATTERN.fullmatch(value):
        raise ValueError(f'Expected a YYYY-MM-DD bucket, got {value!r}')
    return date.fromisoformat(value)


def format_bucket(bucket: date) -> str:
    return bucket.isoformat()


class TransportKind(str, Enum):
    API = 'api'
    CLI = 'cli'


class SampleWindow(str, Enum):
    ALL = 'all'
    LATEST = 'latest'


class FailurePolicy(str, Enum):
    SKIP = 'skip'
    ABORT = 'abort'


class EntityLabelMode(str, Enum):
    AUTO = 'auto'
    ALWAYS = 'always'
    NEVER = 'never'


class SeriesItem(BaseModel):
    name: str
    values: list[StrictInt]
    currently_released: bool = False


class MetricResponse(BaseModel):
    snap_id: str = ''
    metric_name: str = ''
    buckets: list[date]
    series: list[SeriesItem]
    status: str = ''

    @field_validator('buckets', mode='before')
    @classmethod
    def _parse_buckets(cls, value: Any) -> Any:
        if isinstance(value, list):
            return [parse_bucket(item) for item in value]
        return value


class MetricsEnvelope(BaseModel):
    metrics: list[MetricResponse]


class MetricFilter(BaseModel):
    snap_id: str
    metric_name: str
    start: date | None = None
    end: date | None = None


class MetricFilters(BaseModel):
    filters: list[MetricFilter]


class MetricDescriptor(BaseModel):
    model_config = ConfigDict(frozen=True)

    metric_name: str
    exported_id: str
    help_text: str
    dimension_label: str
    entity_label: str | None = None

    @property
    def label_names(self) -> tuple[str, ...]:
        if self.entity_label is None:
            return (self.dimension_label,)
        return (self.dimension_label, self.entity_label)


class Sample(BaseModel):
    model_config = ConfigDict(frozen=True)

    descriptor: MetricDescriptor
    labels: dict[str, str]
    value: float
    timestamp: date
