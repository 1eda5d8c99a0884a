from collections.abc import Mapping
import re
from types import MappingProxyType
from typing import NamedTuple

from snapcraft_exporter.errors import ConfigurationError, UnknownMetricError
from snapcraft_exporter.schemas import MetricDescriptor

HELP_PREFIX = 'Exported from https://snapcraft.io/docs/snapcraft-metrics.'

# names starting with __ are reserved for Prometheus internal use
_LABEL_NAME_PATTERN = re.compile(r'[a-zA-Z_][a-zA-Z0-9_]*')


class MetricSpec(NamedTuple):
    exported_id: str
    dimension_label: str
    summary: str


METRIC_TABLE: Mapping[str, MetricSpec] = MappingProxyType(
    {
        'daily_device_change': MetricSpec(
            'snapcraft_device_change_daily',
            'change',
            'contains the 3 series representing the number of new, continued '
            'and lost devices with the given snap installed compared to the '
            'previous day.',
        ),
        'weekly_device_change': MetricSpec(
            'snapcraft_device_change_weekly',
            'change',
            'similar to the ‘daily_device_change’ metric but operates on a 7 '
            'day window. i.e. new contains the number of devices that were seen '
            'during the last 7 days but not in the previous 7 day and so on for '
            'continued and lost.',
        ),
        'installed_base_by_channel': MetricSpec(
            'snapcraft_install_base_by_channel_daily',
            'channel',
            'contains one series per channel representing the number of '
            'devices with the given snap installed, channels with no data '
            'across the entire interval are omitted.',
        ),
        'installed_base_by_country': MetricSpec(
            'snapcraft_install_base_by_country_daily',
            'country',
            'contains one series per country representing the number of '
            'devices with the given snap installed.',
        ),
        'installed_base_by_operating_system': MetricSpec(
            'snapcraft_install_base_by_system_daily',
            'system',
            'contains one series per operating_system representing the number '
            'of devices with the given snap installed.',
        ),
        'installed_base_by_version': MetricSpec(
            'snapcraft_install_base_by_version_daily',
            'version',
            'contains one series per version representing the number of '
            'devices with the given snap installed.',
        ),
        'weekly_installed_base_by_channel': MetricSpec(
            'snapcraft_install_base_by_channel_weekly',
            'channel',
            'similar to the installed_base_by_channel metric but operates in a '
            '7 day window.',
        ),
        'weekly_installed_base_by_country': MetricSpec(
            'snapcraft_install_base_by_country_weekly',
            'country',
            'similar to the installed_base_by_country metric but operates in a '
            '7 day window.',
        ),
        'weekly_installed_base_by_operating_system': MetricSpec(
            'snapcraft_install_base_by_system_weekly',
            'system',
            'similar to the installed_base_by_operating_system metric but '
            'operates in a 7 day window.',
        ),
        'weekly_installed_base_by_version': MetricSpec(
            'snapcraft_install_base_by_version_weekly',
            'version',
            'similar to the installed_base_by_version metric but operates in a '
            '7 day window.',
        ),
    }
)

METRIC_NAMES: tuple[str, ...] = tuple(METRIC_TABLE)


def is_label_name(name: str) -> bool:
    return bool(_LABEL_NAME_PATTERN.fullmatch(name)) and not name.startswith('__')


class MetricRegistry:
    """Immutable metric name -> descriptor table, built once at startup.

    When ``entity_label`` is set every descriptor carries it next to its
    dimension label, so samples of several snaps can share a metric id.
    """

    def __init__(self, entity_label: str | None = None) -> None:
        if entity_label is not None and not is_label_name(entity_label):
            raise ConfigurationError(f'Invalid entity label name {entity_label!r}')
        dimension_labels = {spec.dimension_label for spec in METRIC_TABLE.values()}
        if entity_label is not None and entity_label in dimension_labels:
            raise ConfigurationError(
                f'Entity label {entity_label!r} clashes with a dimension label'
            )
        self.entity_label = entity_label
        self._descriptors: Mapping[str, MetricDescriptor] = MappingProxyType(
            {
                name: MetricDescriptor(
                    metric_name=name,
                    exported_id=spec.exported_id,
                    help_text=f'{HELP_PREFIX} {name}: {spec.summary}',
                    dimension_label=spec.dimension_label,
                    entity_label=entity_label,
                )
                for name, spec in METRIC_TABLE.items()
            }
        )

    @property
    def metric_names(self) -> tuple[str, ...]:
        return METRIC_NAMES

    def lookup(self, metric_name: str) -> MetricDescriptor:
        try:
            return self._descriptors[metric_name]
        except KeyError:
            raise UnknownMetricError(metric_name) from None

    def describe(self) -> list[MetricDescriptor]:
        return list(self._descriptors.values())
