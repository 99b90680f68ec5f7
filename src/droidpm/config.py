"""Configuration loading helpers."""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from .adb import AdbBackend, AdbCommand
from .executors import DEFAULT_SERVER_HOST, DEFAULT_SERVER_PORT, Executor
from .parsers import MAX_USER_ID

SAFE_EXECUTABLE_PATTERN = re.compile(r"^[\w./\\:-]+$")
SAFE_SERIAL_PATTERN = re.compile(r"^[\w.:\-]*$")


@dataclass(slots=True, frozen=True)
class AdbSettings:
    backend: AdbBackend = AdbBackend.BUILTIN
    executable: str = "adb"
    server_host: str = DEFAULT_SERVER_HOST
    server_port: int = DEFAULT_SERVER_PORT

    def build_executor(self) -> Executor:
        return self.backend.executor(
            executable=self.executable,
            host=self.server_host,
            port=self.server_port,
        )


@dataclass(slots=True, frozen=True)
class Settings:
    adb: AdbSettings
    default_device: str | None = None
    default_user: int = 0

    def command(self) -> AdbCommand:
        """Fresh root builder bound to the configured backend."""

        return AdbCommand(self.adb.backend, executor=self.adb.build_executor())


def load_settings(path: Path) -> Settings:
    """Load configuration from a YAML document."""

    raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    return parse_settings(raw)


def parse_settings(raw: dict[str, Any]) -> Settings:
    settings_raw = raw.get("settings") or {}
    adb_raw = settings_raw.get("adb") or {}

    backend_raw = adb_raw.get("backend", AdbBackend.default().value)
    if not isinstance(backend_raw, str):
        raise ValueError("Field 'backend' must be a string")
    try:
        backend = AdbBackend.parse(backend_raw)
    except ValueError as exc:
        raise ValueError(f"Field 'backend': {exc}") from exc

    port = _optional_int(adb_raw, "server_port", DEFAULT_SERVER_PORT)
    if not 0 < port < 65536:
        raise ValueError("Field 'server_port' must be between 1 and 65535")

    adb_settings = AdbSettings(
        backend=backend,
        executable=_require_safe_executable(adb_raw, "executable", "adb"),
        server_host=_optional_str(adb_raw, "server_host", DEFAULT_SERVER_HOST),
        server_port=port,
    )

    default_device = _optional_str(settings_raw, "default_device", "")
    if not SAFE_SERIAL_PATTERN.fullmatch(default_device):
        raise ValueError("Field 'default_device' contains unsupported characters")

    default_user = _optional_int(settings_raw, "default_user", 0)
    if not 0 <= default_user <= MAX_USER_ID:
        raise ValueError(f"Field 'default_user' must be between 0 and {MAX_USER_ID}")

    return Settings(
        adb=adb_settings,
        default_device=default_device or None,
        default_user=default_user,
    )


def _optional_str(source: dict[str, Any], key: str, default: str) -> str:
    value = source.get(key)
    if value is None:
        return default
    if not isinstance(value, str):
        raise ValueError(f"Field '{key}' must be a string")
    return value.strip()


def _optional_int(source: dict[str, Any], key: str, default: int) -> int:
    value = source.get(key)
    if value is None:
        return default
    if isinstance(value, bool):
        raise ValueError(f"Field '{key}' must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Field '{key}' must be an integer") from exc


def _require_safe_executable(source: dict[str, Any], key: str, default: str) -> str:
    value = _optional_str(source, key, default)
    if not value:
        raise ValueError(f"Field '{key}' must be a non-empty string")
    if not SAFE_EXECUTABLE_PATTERN.fullmatch(value):
        raise ValueError(
            (
                f"Field '{key}' must only contain letters, numbers, dots, slashes, "
                "colons, underscores, or hyphens"
            )
        )
    if value.startswith("-"):
        raise ValueError(f"Field '{key}' cannot start with '-'")
    return value
