"""Parsers for raw adb output.

Every listing parser treats lines independently: a line that does not have
the expected shape is dropped instead of failing the whole listing.
"""

from __future__ import annotations

from dataclasses import dataclass

PACKAGE_PREFIX = "package:"
USER_INFO_PREFIX = "UserInfo{"
USER_RUNNING_SUFFIX = "running"
MAX_USER_ID = 0xFFFF

BANNER_ADB_VERSION = "Android Debug Bridge version "
BANNER_VERSION = "Version "
BANNER_INSTALLED_AS = "Installed as "
BANNER_RUNNING_ON = "Running on "


@dataclass(slots=True, frozen=True)
class DeviceRecord:
    serial: str
    status: str


@dataclass(slots=True, frozen=True)
class UserInfo:
    """Mirror of the AOSP ``UserInfo`` class, reduced to the user ID."""

    id: int


def to_trimmed_utf8(data: bytes) -> str:
    """Decode adb output, replacing invalid UTF-8 and trimming trailing whitespace."""

    return data.decode("utf-8", errors="replace").rstrip()


def parse_devices(output: str) -> list[DeviceRecord]:
    """Parse ``adb devices`` output (header line followed by ``serial\\tstatus``)."""

    records: list[DeviceRecord] = []
    for line in output.splitlines()[1:]:
        serial, sep, status = line.partition("\t")
        if not sep:
            continue
        records.append(DeviceRecord(serial=serial, status=status))
    return records


def parse_packages(output: str) -> list[str]:
    """Strip the ``package:`` prefix; other lines are dropped.

    Order is preserved and duplicates are kept.
    """

    return [
        line[len(PACKAGE_PREFIX):]
        for line in output.splitlines()
        if line.startswith(PACKAGE_PREFIX)
    ]


def parse_user_line(line: str) -> UserInfo | None:
    # UserInfo{<id>:<name>:<flags>}[ running]
    text = line.strip()
    text = text.removeprefix(USER_INFO_PREFIX)
    if text.endswith(USER_RUNNING_SUFFIX):
        text = text[: -len(USER_RUNNING_SUFFIX)].rstrip()
    text = text.removesuffix("}")
    head = text.split(":", 1)[0]
    if not head or not head.isascii() or not head.isdigit():
        return None
    user_id = int(head)
    if user_id > MAX_USER_ID:
        return None
    return UserInfo(id=user_id)


def parse_users(output: str) -> list[UserInfo]:
    """Parse ``pm list users`` output, skipping the ``Users:`` header."""

    users: list[UserInfo] = []
    for line in output.splitlines()[1:]:
        user = parse_user_line(line)
        if user is not None:
            users.append(user)
    return users


def is_version_triple(text: str) -> bool:
    parts = text.split(".")
    return len(parts) == 3 and all(part.isascii() and part.isdigit() for part in parts)


def is_version_banner(output: str) -> bool:
    """Check the exact four-line shape printed by ``adb version``."""

    lines = output.splitlines()
    if len(lines) != 4:
        return False
    first, second, third, fourth = lines
    if not first.startswith(BANNER_ADB_VERSION):
        return False
    if not is_version_triple(first[len(BANNER_ADB_VERSION):]):
        return False
    if not second.startswith(BANNER_VERSION):
        return False
    if not is_version_triple(second[len(BANNER_VERSION):].split("-", 1)[0]):
        return False
    if not third.startswith(BANNER_INSTALLED_AS) or not third.endswith(("adb", "adb.exe")):
        return False
    return fourth.startswith(BANNER_RUNNING_ON)
