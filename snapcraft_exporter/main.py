import logging
import sys

import uvicorn

from snapcraft_exporter.app import create_app
from snapcraft_exporter.config import settings, validate_settings
from snapcraft_exporter.errors import ConfigurationError
from snapcraft_exporter.log_setup import setup_logging

setup_logging(
    service_name=settings.SERVICE_NAME,
    level=settings.LOG_LEVEL,
    log_format=settings.LOG_FORMAT,
    version=settings.SERVICE_VERSION,
)

logger = logging.getLogger(__name__)


def main() -> None:
    try:
        validate_settings(settings)
        app = create_app(settings)
    except ConfigurationError as e:
        logger.error('Refusing to start', extra={'error': str(e)})
        sys.exit(1)

    uvicorn.run(
        app,
        host=settings.LISTEN_HOST,
        port=settings.LISTEN_PORT,
        log_config=None,
    )


if __name__ == '__main__':
    main()
