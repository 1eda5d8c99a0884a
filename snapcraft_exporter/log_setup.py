from datetime import UTC, datetime
from enum import Enum
import logging
import sys
from typing import Any

import orjson

# attributes every LogRecord carries; anything else came in through ``extra``
_RECORD_FIELDS = frozenset(vars(logging.makeLogRecord({}))) | {
    'message',
    'asctime',
    'taskName',
    'color_message',
}

QUIET_LOGGERS = ('uvicorn.access', 'uvicorn.error', 'aiohttp', 'asyncio')


class LogFormat(str, Enum):
    TEXT = 'text'
    JSON = 'json'


class ExporterFormatter(logging.Formatter):
    """Renders records with the service identity and their ``extra`` fields.

    Text lines look like ``<ts> WARNING  collector: Skipping ... snap_id=foo``;
    JSON lines are one object per record with the extras as top-level keys.
    """

    def __init__(self, service_name: str, version: str, log_format: LogFormat):
        super().__init__()
        self.service_name = service_name
        self.version = version
        self.log_format = log_format

    @staticmethod
    def timestamp(record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=UTC)
        return created.isoformat(timespec='milliseconds')

    @staticmethod
    def extra_fields(record: logging.LogRecord) -> dict[str, Any]:
        return {
            key: value
            for key, value in vars(record).items()
            if key not in _RECORD_FIELDS and not key.startswith('_')
        }

    def format(self, record: logging.LogRecord) -> str:
        if self.log_format is LogFormat.JSON:
            return self._format_json(record)
        return self._format_text(record)

    def _format_json(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            'timestamp': self.timestamp(record),
            'level': record.levelname,
            'service': self.service_name,
            'version': self.version,
            'logger': record.name,
            'message': record.getMessage(),
            **self.extra_fields(record),
        }
        if record.exc_info:
            entry['exception'] = self.formatException(record.exc_info)
        return orjson.dumps(entry, default=str).decode('utf-8')

    def _format_text(self, record: logging.LogRecord) -> str:
        fields = ' '.join(f'{k}={v}' for k, v in self.extra_fields(record).items())
        line = (
            f'{self.timestamp(record)} {record.levelname:<8} {record.name}: '
            f'{record.getMessage()} {fields}'
        ).rstrip()
        if record.exc_info:
            line += f'\n{self.formatException(record.exc_info)}'
        return line


def setup_logging(
    service_name: str,
    level: str,
    log_format: LogFormat,
    version: str,
) -> None:
    log_level = getattr(logging, level.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(ExporterFormatter(service_name, version, log_format))
    handler.setLevel(log_level)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()
    root_logger.addHandler(handler)

    for logger_name in QUIET_LOGGERS:
        logging.getLogger(logger_name).setLevel(logging.WARNING)
