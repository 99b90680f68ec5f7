"""Device discovery and metadata."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable

from .adb import AdbCommand
from .parsers import DeviceRecord, UserInfo

CommandFactory = Callable[[], AdbCommand]

PROP_MODEL = "ro.product.model"
PROP_ANDROID_RELEASE = "ro.build.version.release"
PROP_SDK = "ro.build.version.sdk"
READY_STATUS = "device"


@dataclass(slots=True, frozen=True)
class DeviceInfo:
    serial: str
    model: str
    android_release: str
    sdk: int | None
    users: tuple[UserInfo, ...] = field(default_factory=tuple)


class DeviceManager:
    """Discovers connected devices and reads their metadata.

    Every lookup is its own adb command issued through a fresh builder.
    """

    def __init__(self, commands: CommandFactory) -> None:
        self._commands = commands

    def discover(self, *, ready_only: bool = False) -> list[DeviceRecord]:
        records = self._commands().devices()
        if ready_only:
            return [record for record in records if record.status == READY_STATUS]
        return records

    def describe(self, serial: str | None = None) -> DeviceInfo:
        model = self._getprop(serial, PROP_MODEL)
        release = self._getprop(serial, PROP_ANDROID_RELEASE)
        sdk_raw = self._getprop(serial, PROP_SDK)
        users = self._commands().shell(serial).pm().list_users()
        return DeviceInfo(
            serial=serial or "",
            model=model,
            android_release=release,
            sdk=int(sdk_raw) if sdk_raw.isascii() and sdk_raw.isdigit() else None,
            users=tuple(users),
        )

    def _getprop(self, serial: str | None, key: str) -> str:
        return self._commands().shell(serial).getprop(key).strip()
