"""The two interchangeable ways of talking to adb.

``BuiltinExecutor`` speaks the adb server protocol through ``adbutils``;
``SystemExecutor`` spawns the installed ``adb`` binary. Each call opens its
own server connection or subprocess, so executors hold no session state and
calls block until the transport returns.
"""

from __future__ import annotations

import logging
import subprocess
import sys
from dataclasses import dataclass, field
from typing import Any, Callable, Protocol

import adbutils

from .parsers import DeviceRecord, parse_devices, to_trimmed_utf8

DEFAULT_SERVER_HOST = "127.0.0.1"
DEFAULT_SERVER_PORT = 5037

logger = logging.getLogger(__name__)


class ADBError(RuntimeError):
    """Base class for every adb failure surfaced by this package."""


class ADBConnectionError(ADBError):
    """The adb server or binary could not be reached."""


class DeviceNotFoundError(ADBError):
    """The requested serial is not attached."""

    def __init__(self, serial: str, available: list[str]) -> None:
        self.serial = serial
        self.available = available
        super().__init__(f"Device '{serial}' not found. Available: {', '.join(available)}")


class CommandFailedError(ADBError):
    """adb ran but reported a failure; the message is the backend's own text."""

    def __init__(self, message: str, *, returncode: int | None = None) -> None:
        self.returncode = returncode
        super().__init__(message)


class Executor(Protocol):
    def devices(self) -> list[DeviceRecord]:
        ...

    def version(self) -> str:
        ...

    def shell(self, serial: str | None, command: str) -> str:
        ...


ClientFactory = Callable[[], Any]


@dataclass(slots=True)
class BuiltinExecutor:
    """Executor backed by the adb server protocol (no ``adb`` binary needed)."""

    host: str = DEFAULT_SERVER_HOST
    port: int = DEFAULT_SERVER_PORT
    client_factory: ClientFactory | None = field(default=None, repr=False)

    def devices(self) -> list[DeviceRecord]:
        client = self._client()
        try:
            infos = client.list()
        except (adbutils.AdbError, OSError) as exc:
            logger.error("ADB: %s", exc)
            raise ADBConnectionError(f"Cannot connect to ADB server: {exc}") from exc
        return [DeviceRecord(serial=info.serial, status=str(info.state)) for info in infos]

    def version(self) -> str:
        client = self._client()
        try:
            version = client.server_version()
        except (adbutils.AdbError, OSError) as exc:
            logger.error("Failed to get ADB server version: %s", exc)
            raise ADBConnectionError(f"Cannot get ADB server version: {exc}") from exc
        return f"ADB Server Version: 1.0.{version}"

    def shell(self, serial: str | None, command: str) -> str:
        client = self._client()

        if serial:
            try:
                attached = [info.serial for info in client.list()]
            except (adbutils.AdbError, OSError) as exc:
                raise ADBConnectionError(f"Cannot get device list: {exc}") from exc
            if serial not in attached:
                raise DeviceNotFoundError(serial, attached)

        try:
            device = client.device(serial=serial or None)
        except (adbutils.AdbError, OSError) as exc:
            raise ADBConnectionError(f"Cannot connect to device: {exc}") from exc

        if not command.split():
            raise CommandFailedError("Empty shell command")

        logger.info("Ran command: adb shell %s", command)
        try:
            output = device.shell(command, timeout=None, encoding=None, rstrip=False)
        except (adbutils.AdbError, OSError) as exc:
            logger.error("ADB shell command failed: %s", exc)
            raise CommandFailedError(f"Shell command failed: {exc}") from exc
        return to_trimmed_utf8(output)

    def _client(self) -> Any:
        if self.client_factory is not None:
            return self.client_factory()
        return adbutils.AdbClient(host=self.host, port=self.port)


@dataclass(slots=True)
class SystemExecutor:
    """Executor that shells out to the ``adb`` found on ``PATH``."""

    executable: str = "adb"

    def devices(self) -> list[DeviceRecord]:
        return parse_devices(self._exec("devices"))

    def version(self) -> str:
        return self._exec("version")

    def shell(self, serial: str | None, command: str) -> str:
        args = ["-s", serial] if serial else []
        return self._exec(*args, "shell", command)

    def _exec(self, *args: str) -> str:
        # Windows opens a console window per spawned process otherwise.
        creationflags = subprocess.CREATE_NO_WINDOW if sys.platform == "win32" else 0
        logger.info("Ran command: adb %s", " ".join(args))
        try:
            completed = subprocess.run(
                [self.executable, *args],
                capture_output=True,
                stdin=subprocess.DEVNULL,
                check=False,
                creationflags=creationflags,
            )
        except OSError as exc:
            logger.error("ADB: %s", exc)
            raise ADBConnectionError("Cannot run ADB, likely not found") from exc

        stdout = to_trimmed_utf8(completed.stdout)
        if completed.returncode == 0:
            return stdout
        # adb sometimes reports errors on stdout instead of stderr
        message = stdout or to_trimmed_utf8(completed.stderr)
        raise CommandFailedError(message, returncode=completed.returncode)
