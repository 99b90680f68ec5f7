"""Staged builders for the narrow set of adb commands this package needs.

Each builder method maps to exactly one device command: there is no
chaining of commands and no client-side composition. Listing the state of a
package and then changing it are two round-trips, and the device may change
in between; callers that compose commands own that race.

Builders are single-use. ``AdbCommand`` narrows to ``ShellCommand``, which
narrows to ``PmCommand``; every transition or terminal call consumes the
builder it was called on, and calling it again raises
``BuilderConsumedError``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from .executors import (
    DEFAULT_SERVER_HOST,
    DEFAULT_SERVER_PORT,
    ADBConnectionError,
    ADBError,
    BuiltinExecutor,
    CommandFailedError,
    DeviceNotFoundError,
    Executor,
    SystemExecutor,
)
from .package_id import PackageId
from .parsers import MAX_USER_ID, DeviceRecord, UserInfo, parse_packages, parse_users

__all__ = [
    "ADBConnectionError",
    "ADBError",
    "AdbBackend",
    "AdbCommand",
    "BACKENDS",
    "BuilderConsumedError",
    "CommandFailedError",
    "DeviceNotFoundError",
    "DeviceRecord",
    "PmCommand",
    "PmListPacksFlag",
    "ShellCommand",
    "UserInfo",
]

PM_CLEAR_PACK = "pm clear"

logger = logging.getLogger(__name__)


class BuilderConsumedError(ADBError):
    """A builder stage was used after it already issued or narrowed a command."""


class AdbBackend(Enum):
    """Which transport runs the commands."""

    BUILTIN = "builtin"
    SYSTEM = "system"

    def __str__(self) -> str:
        if self is AdbBackend.BUILTIN:
            return "Builtin"
        return "System (adb)"

    @classmethod
    def default(cls) -> AdbBackend:
        return cls.BUILTIN

    @classmethod
    def parse(cls, text: str) -> AdbBackend:
        try:
            return cls(text.strip().lower())
        except ValueError as exc:
            choices = ", ".join(member.value for member in cls)
            raise ValueError(f"Unknown adb backend '{text}', expected one of: {choices}") from exc

    def executor(
        self,
        *,
        executable: str = "adb",
        host: str = DEFAULT_SERVER_HOST,
        port: int = DEFAULT_SERVER_PORT,
    ) -> Executor:
        if self is AdbBackend.BUILTIN:
            return BuiltinExecutor(host=host, port=port)
        return SystemExecutor(executable=executable)


BACKENDS: tuple[AdbBackend, ...] = (AdbBackend.BUILTIN, AdbBackend.SYSTEM)


class PmListPacksFlag(Enum):
    """``pm list packages`` state filter."""

    INCLUDE_UNINSTALLED = "-u"  # not to be confused with -a
    ONLY_ENABLED = "-e"
    ONLY_DISABLED = "-d"

    def __str__(self) -> str:
        return self.value


@dataclass(slots=True, frozen=True)
class _CommandState:
    backend: AdbBackend
    executor: Executor
    device_serial: str | None = None


class _Stage:
    __slots__ = ("_state", "_consumed")

    def __init__(self, state: _CommandState) -> None:
        self._state = state
        self._consumed = False

    @property
    def backend(self) -> AdbBackend:
        return self._state.backend

    @property
    def device_serial(self) -> str | None:
        return self._state.device_serial

    def _take(self) -> _CommandState:
        if self._consumed:
            raise BuilderConsumedError(f"{type(self).__name__} has already been used")
        self._consumed = True
        return self._state

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(backend={self._state.backend.value!r}, "
            f"device_serial={self._state.device_serial!r}, consumed={self._consumed})"
        )


class AdbCommand(_Stage):
    """Root builder for an adb command."""

    __slots__ = ()

    def __init__(
        self,
        backend: AdbBackend | None = None,
        *,
        executor: Executor | None = None,
    ) -> None:
        backend = backend or AdbBackend.default()
        super().__init__(_CommandState(backend=backend, executor=executor or backend.executor()))

    def shell(self, device_serial: str | None = None) -> ShellCommand:
        """Narrow to a shell command. An empty serial lets adb pick the device."""

        state = self._take()
        return ShellCommand(
            _CommandState(
                backend=state.backend,
                executor=state.executor,
                device_serial=device_serial or None,
            )
        )

    def devices(self) -> list[DeviceRecord]:
        """Attached devices (USB, TCP/IP and emulators) with their status.

        Status is opaque, e.g. ``device`` or ``unauthorized``.
        """

        return self._take().executor.devices()

    def version(self) -> str:
        """``ADB Server Version: 1.0.41`` for the builtin backend, the raw
        ``adb version`` banner for the system backend."""

        return self._take().executor.version()


class ShellCommand(_Stage):
    """A command run by the device's default ``sh``."""

    __slots__ = ()

    def pm(self) -> PmCommand:
        return PmCommand(self._take())

    def getprop(self, key: str) -> str:
        # Properties may hold booleans, ints or strings; keep them as text.
        return _run_shell(self._take(), f"getprop {key}")

    def reboot(self) -> str:
        return _run_shell(self._take(), "reboot")

    def raw(self, action: str) -> str:
        """Run ``action`` verbatim; the remote shell does the word splitting."""

        return _run_shell(self._take(), action)


class PmCommand(_Stage):
    """Android package manager command."""

    __slots__ = ()

    def list_packages_sys(
        self,
        flag: PmListPacksFlag | None = None,
        user_id: int | None = None,
    ) -> list[str]:
        """``pm list packages -s`` with the ``package:`` prefix stripped.

        Results are unsorted, may contain ``android`` (not a valid package ID)
        and are not guaranteed to be unique.
        """

        command = "pm list packages -s"
        if flag is not None:
            command += f" {flag}"
        if user_id is not None:
            command += f" --user {check_user_id(user_id)}"
        return parse_packages(_run_shell(self._take(), command))

    def list_users(self) -> list[UserInfo]:
        return parse_users(_run_shell(self._take(), "pm list users"))

    def clear_data(self, package: PackageId) -> str:
        return _run_shell(self._take(), f"{PM_CLEAR_PACK} {package}")


def check_user_id(user_id: int) -> int:
    if isinstance(user_id, bool) or not isinstance(user_id, int) or not 0 <= user_id <= MAX_USER_ID:
        raise ValueError(f"user_id must be an integer between 0 and {MAX_USER_ID}")
    return user_id


def _run_shell(state: _CommandState, command: str) -> str:
    logger.debug("adb shell on %s via %s: %s", state.device_serial or "<default>", state.backend, command)
    return state.executor.shell(state.device_serial, command)
