import asyncio
import contextlib
import logging
import shlex

from snapcraft_exporter.errors import ConfigurationError, TransportError

logger = logging.getLogger(__name__)

_MAX_STDERR_CHARS = 500


class CommandTransport:
    """Fetches metrics by running a local command, ``snapcraft`` by default.

    ``command_template`` is split like a shell command line and every token is
    formatted with ``snap_id`` and ``metric_name``.
    """

    def __init__(self, command_template: str) -> None:
        placeholders = ('{snap_id}', '{metric_name}')
        if not all(placeholder in command_template for placeholder in placeholders):
            raise ConfigurationError(
                'SNAPCRAFT_COMMAND must contain {snap_id} and {metric_name} '
                f'placeholders, got {command_template!r}'
            )
        try:
            self._argv_template = shlex.split(command_template)
        except ValueError as e:
            raise ConfigurationError(
                f'Cannot parse SNAPCRAFT_COMMAND {command_template!r}: {e}'
            ) from e
        self.command_template = command_template
        self.build_argv('snap', 'metric')

    def build_argv(self, snap_id: str, metric_name: str) -> list[str]:
        try:
            return [
                part.format(snap_id=snap_id, metric_name=metric_name)
                for part in self._argv_template
            ]
        except (KeyError, IndexError, ValueError) as e:
            raise ConfigurationError(
                f'Invalid SNAPCRAFT_COMMAND template {self.command_template!r}: {e}'
            ) from e

    async def start(self) -> None:
        logger.debug('Command transport ready', extra={'command': self.command_template})

    async def stop(self) -> None:
        return None

    async def fetch(self, snap_id: str, metric_name: str) -> bytes:
        argv = self.build_argv(snap_id, metric_name)
        logger.debug(
            'Running metrics command',
            extra={'snap_id': snap_id, 'metric_name': metric_name, 'argv': argv},
        )
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except (OSError, ValueError) as e:
            raise TransportError(snap_id, metric_name, f'cannot run {argv[0]!r}: {e}') from e

        try:
            stdout, stderr = await process.communicate()
        except asyncio.CancelledError:
            with contextlib.suppress(ProcessLookupError):
                process.kill()
            await process.wait()
            raise

        if process.returncode != 0:
            detail = stderr.decode('utf-8', errors='replace').strip()[:_MAX_STDERR_CHARS]
            raise TransportError(
                snap_id,
                metric_name,
                f'{argv[0]} exited with status {process.returncode}: {detail}',
            )
        return stdout
