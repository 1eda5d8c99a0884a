from collections import defaultdict
from collections.abc import Iterable, Sequence
from datetime import UTC, date, datetime
import logging

from snapcraft_exporter.schemas import MetricDescriptor, Sample

logger = logging.getLogger(__name__)

CONTENT_TYPE = 'text/plain; version=0.0.4; charset=utf-8'


class PrometheusFormatter:
    @staticmethod
    def _escape_label_value(value: str) -> str:
        return value.replace('\\', r'\\').replace('\n', r'\n').replace('"', r'\"')

    @staticmethod
    def _escape_help(text: str) -> str:
        return text.replace('\\', r'\\').replace('\n', r'\n')

    @classmethod
    def _format_labels(cls, labels: dict[str, str]) -> str:
        if not labels:
            return ''
        pairs = [f'{k}="{cls._escape_label_value(v)}"' for k, v in labels.items()]
        return '{' + ','.join(pairs) + '}'

    @staticmethod
    def timestamp_ms(bucket: date) -> int:
        midnight = datetime(bucket.year, bucket.month, bucket.day, tzinfo=UTC)
        return int(midnight.timestamp()) * 1000

    def _format_sample(self, sample: Sample) -> str:
        label_str = self._format_labels(sample.labels)
        return (
            f'{sample.descriptor.exported_id}{label_str} '
            f'{sample.value} {self.timestamp_ms(sample.timestamp)}'
        )

    def format_metrics(
        self, descriptors: Sequence[MetricDescriptor], samples: Iterable[Sample]
    ) -> str:
        grouped: dict[str, list[Sample]] = defaultdict(list)
        for sample in samples:
            grouped[sample.descriptor.exported_id].append(sample)

        lines = []
        for descriptor in descriptors:
            lines.append(
                f'# HELP {descriptor.exported_id} {self._escape_help(descriptor.help_text)}'
            )
            lines.append(f'# TYPE {descriptor.exported_id} gauge')
            lines.extend(
                self._format_sample(sample)
                for sample in grouped.pop(descriptor.exported_id, [])
            )

        if grouped:
            logger.warning(
                'Dropping samples of undeclared metrics',
                extra={'metrics': sorted(grouped)},
            )
        return '\n'.join(lines) + '\n'
