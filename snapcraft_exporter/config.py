from typing import Annotated, Any

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode

from snapcraft_exporter.errors import ConfigurationError
from snapcraft_exporter.log_setup import LogFormat
from snapcraft_exporter.registry import is_label_name
from snapcraft_exporter.schemas import (
    EntityLabelMode,
    FailurePolicy,
    SampleWindow,
    TransportKind,
)

class Settings(BaseSettings):
    model_config = {
        'extra': 'ignore',
        'env_file': '.env',
        'env_file_encoding': 'utf-8',
        'frozen': True,
    }

    LISTEN_HOST: str = '0.0.0.0'
    LISTEN_PORT: int = 9888
    METRICS_PATH: str = '/metrics'

    SNAP_IDS: Annotated[list[str], NoDecode] = Field(default_factory=list)
    SNAP_STORE_MACAROON: str | None = None

    TRANSPORT: TransportKind = TransportKind.API
    SNAPCRAFT_API_URL: str = 'https://dashboard.snapcraft.io/dev/api/snaps/metrics'
    SNAPCRAFT_COMMAND: str = (
        'snapcraft metrics {snap_id} --name {metric_name} --format json'
    )
    FETCH_TIMEOUT: float = Field(default=30.0, gt=0)
    FETCH_CONCURRENCY: int = Field(default=4, ge=1)
    LOOKBACK_DAYS: int = Field(default=0, ge=0)
    BATCH_REQUESTS: bool = True

    SAMPLE_WINDOW: SampleWindow = SampleWindow.ALL
    LATEST_OFFSET_DAYS: int = Field(default=1, ge=0)
    FAILURE_POLICY: FailurePolicy = FailurePolicy.SKIP
    STARTUP_PROBE: bool = False

    ENTITY_LABEL_MODE: EntityLabelMode = EntityLabelMode.AUTO
    ENTITY_LABEL_NAME: str = 'snap_id'

    SERVICE_NAME: str = 'snapcraft-exporter'
    SERVICE_VERSION: str = '0.1.0'
    LOG_LEVEL: str = 'INFO'
    LOG_FORMAT: LogFormat = LogFormat.TEXT

    @field_validator('SNAP_IDS', mode='before')
    @classmethod
    def _split_snap_ids(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [item.strip() for item in value.split(',') if item.strip()]
        return value

    @field_validator('METRICS_PATH')
    @classmethod
    def _check_metrics_path(cls, value: str) -> str:
        if not value.startswith('/') or value == '/':
            raise ValueError(f'METRICS_PATH must be an absolute path, got {value!r}')
        return value

    @field_validator('ENTITY_LABEL_NAME')
    @classmethod
    def _check_entity_label_name(cls, value: str) -> str:
        if not is_label_name(value):
            raise ValueError(f'ENTITY_LABEL_NAME is not a valid label name: {value!r}')
        return value

    @property
    def entity_label(self) -> str | None:
        if self.ENTITY_LABEL_MODE is EntityLabelMode.ALWAYS:
            return self.ENTITY_LABEL_NAME
        if self.ENTITY_LABEL_MODE is EntityLabelMode.AUTO and len(self.SNAP_IDS) > 1:
            return self.ENTITY_LABEL_NAME
        return None


def validate_settings(config: Settings) -> None:
    if not config.SNAP_IDS:
        raise ConfigurationError('SNAP_IDS must list at least one snap id')
    if len(set(config.SNAP_IDS)) != len(config.SNAP_IDS):
        raise ConfigurationError(f'SNAP_IDS contains duplicates: {config.SNAP_IDS}')
    if len(config.SNAP_IDS) > 1 and config.entity_label is None:
        raise ConfigurationError(
            'ENTITY_LABEL_MODE=never cannot be used with more than one snap id'
        )
    if config.TRANSPORT is TransportKind.API and not config.SNAP_STORE_MACAROON:
        raise ConfigurationError('SNAP_STORE_MACAROON must be set for the api transport')


settings = Settings()
