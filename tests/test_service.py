from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from droidpm.adb import AdbCommand
from droidpm.config import Settings
from droidpm.executors import CommandFailedError, DeviceNotFoundError
from droidpm.parsers import DeviceRecord
from droidpm.service import create_app


class StubExecutor:
    def __init__(self, *, devices: list[DeviceRecord]) -> None:
        self.records = devices
        self.shell_calls: list[tuple[str | None, str]] = []
        self.outputs: dict[str, str] = {
            "pm list users": "Users:\n\tUserInfo{0:Owner:c13} running",
            "getprop ro.product.model": "Pixel 8",
            "getprop ro.build.version.release": "14",
            "getprop ro.build.version.sdk": "34",
        }

    def devices(self) -> list[DeviceRecord]:
        return self.records

    def version(self) -> str:
        return "ADB Server Version: 1.0.41"

    def shell(self, serial: str | None, command: str) -> str:
        self.shell_calls.append((serial, command))
        known = [record.serial for record in self.records]
        if serial is not None and serial not in known:
            raise DeviceNotFoundError(serial, known)
        if command.startswith("pm list packages"):
            return "package:com.foo.bar\npackage:android"
        return self.outputs.get(command, "Success")


def _write_config(tmp_path: Path) -> Path:
    yaml_text = """
    settings:
      adb:
        backend: builtin
      default_device: SER123
      default_user: 0
    """
    path = tmp_path / "config.yaml"
    path.write_text(yaml_text, encoding="utf-8")
    return path


@pytest.fixture
def app(tmp_path: Path) -> Iterator[tuple[TestClient, StubExecutor]]:
    config_path = _write_config(tmp_path)
    adb = StubExecutor(devices=[DeviceRecord(serial="SER123", status="device")])
    application = create_app(config_path=str(config_path), executor=adb)
    with TestClient(application) as client:
        yield client, adb


def test_root_reports_service_metadata(app: tuple[TestClient, StubExecutor]) -> None:
    client, _ = app
    response = client.get("/")
    data = response.json()

    assert response.status_code == 200
    assert data["service"] == "droidpm"
    assert data["backend"] == "Builtin"
    assert data["auth_enabled"] is False


def test_adb_reports_backend_and_version(app: tuple[TestClient, StubExecutor]) -> None:
    client, _ = app
    data = client.get("/adb").json()

    assert data["backend"] == "Builtin"
    assert data["version"] == "ADB Server Version: 1.0.41"


def test_devices_lists_records(app: tuple[TestClient, StubExecutor]) -> None:
    client, _ = app
    response = client.get("/devices")

    assert response.status_code == 200
    assert response.json()["devices"] == [{"serial": "SER123", "status": "device"}]


def test_device_info(app: tuple[TestClient, StubExecutor]) -> None:
    client, _ = app
    data = client.get("/devices/SER123").json()

    assert data == {
        "serial": "SER123",
        "model": "Pixel 8",
        "android_release": "14",
        "sdk": 34,
        "users": [0],
    }


def test_list_packages_with_filter(app: tuple[TestClient, StubExecutor]) -> None:
    client, adb = app
    response = client.get("/devices/SER123/packages", params={"state": "only-disabled", "user": 10})

    assert response.status_code == 200
    assert response.json()["packages"] == ["com.foo.bar", "android"]
    assert adb.shell_calls[-1] == ("SER123", "pm list packages -s -d --user 10")


def test_default_alias_uses_configured_device(app: tuple[TestClient, StubExecutor]) -> None:
    client, adb = app
    response = client.get("/devices/default/users")

    assert response.status_code == 200
    assert response.json()["users"] == [0]
    assert adb.shell_calls[-1] == ("SER123", "pm list users")


def test_unknown_device_returns_404(app: tuple[TestClient, StubExecutor]) -> None:
    client, _ = app
    response = client.get("/devices/NOPE/packages")

    assert response.status_code == 404
    assert response.json()["detail"]["available"] == ["SER123"]


def test_change_packages_reports_each_package(app: tuple[TestClient, StubExecutor]) -> None:
    client, adb = app
    response = client.post(
        "/devices/SER123/packages/disabled",
        json={"packages": ["com.foo.bar", "bad name"]},
    )
    data = response.json()

    assert response.status_code == 200
    assert data["failed"] == 1
    assert [result["ok"] for result in data["results"]] == [True, False]
    assert adb.shell_calls == [("SER123", "pm disable-user --user 0 com.foo.bar")]


def test_change_packages_rejects_unknown_state(app: tuple[TestClient, StubExecutor]) -> None:
    client, _ = app
    response = client.post("/devices/SER123/packages/frozen", json={"packages": ["com.foo.bar"]})

    assert response.status_code == 422


def test_fleet_change_runs_on_every_device(app: tuple[TestClient, StubExecutor]) -> None:
    client, adb = app
    response = client.post("/fleet/packages/uninstalled", json={"packages": ["com.foo.bar"], "dry_run": True})
    data = response.json()

    assert response.status_code == 200
    assert [device["serial"] for device in data["devices"]] == ["SER123"]
    assert data["devices"][0]["results"][0]["dry_run"] is True
    assert adb.shell_calls == []


def test_fleet_change_returns_400_when_no_devices(app: tuple[TestClient, StubExecutor]) -> None:
    client, adb = app
    adb.records = []

    response = client.post("/fleet/packages/disabled", json={"packages": ["com.foo.bar"]})

    assert response.status_code == 400
    assert response.json()["detail"]["message"] == "No ADB devices detected"


class ErrorExecutor(StubExecutor):
    def version(self) -> str:
        raise CommandFailedError("adb server version (40) doesn't match this client (41)")


def test_adb_failure_returns_502(tmp_path: Path) -> None:
    config_path = _write_config(tmp_path)
    adb = ErrorExecutor(devices=[])
    application = create_app(config_path=str(config_path), executor=adb)

    with TestClient(application) as client:
        response = client.get("/adb")

    assert response.status_code == 502


def test_change_requires_token_when_enabled(tmp_path: Path) -> None:
    config_path = _write_config(tmp_path)
    adb = StubExecutor(devices=[DeviceRecord(serial="SER123", status="device")])
    token = "secret-token"  # noqa: S105 - test-only token literal
    application = create_app(config_path=str(config_path), executor=adb, api_token=token)
    body = {"packages": ["com.foo.bar"]}

    with TestClient(application) as client:
        unauthorized = client.post("/devices/SER123/packages/enabled", json=body)
        assert unauthorized.status_code == 401

        response = client.post(
            "/devices/SER123/packages/enabled",
            json=body,
            headers={"Authorization": f"Bearer {token}"},
        )
        assert response.status_code == 200


def test_change_packages_on_missing_device_keeps_per_package_results(
    app: tuple[TestClient, StubExecutor]
) -> None:
    client, _ = app
    response = client.post(
        "/devices/GONE/packages/uninstalled",
        json={"packages": ["com.a.one", "com.a.two"]},
    )
    data = response.json()

    assert response.status_code == 200
    assert data["failed"] == 2
    assert [result["attempted"] for result in data["results"]] == [True, False]
    assert data["results"][0]["output"] == "Device 'GONE' not found. Available: SER123"


def test_configured_backend_builds_commands_when_no_executor_injected(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    config_path = _write_config(tmp_path)
    adb = StubExecutor(devices=[DeviceRecord(serial="SER123", status="device")])
    built: list[Settings] = []

    def command(self: Settings) -> AdbCommand:
        built.append(self)
        return AdbCommand(self.adb.backend, executor=adb)

    monkeypatch.setattr(Settings, "command", command)
    application = create_app(config_path=str(config_path))

    with TestClient(application) as client:
        response = client.get("/adb")

    assert response.status_code == 200
    assert response.json()["version"] == "ADB Server Version: 1.0.41"
    assert len(built) == 1
