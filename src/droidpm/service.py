"""FastAPI integration entrypoint."""

from __future__ import annotations

import json
import logging
import os
from contextlib import asynccontextmanager
from dataclasses import asdict
from enum import Enum
from pathlib import Path
from typing import Annotated, Any, Iterable, NoReturn

from fastapi import Depends, FastAPI, HTTPException, Query, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, Field

from .actions import PackageActions, PackageState
from .adb import AdbCommand, PmListPacksFlag
from .config import Settings, load_settings
from .devices import DeviceManager
from .executors import ADBConnectionError, ADBError, CommandFailedError, DeviceNotFoundError, Executor
from .session import FleetSession

SERVICE_NAME = "droidpm"
CONFIG_ENV_VAR = "DROIDPM_CONFIG_PATH"
CONFIG_SEARCH_PATHS_ENV_VAR = "DROIDPM_CONFIG_SEARCH_PATHS"
DEFAULT_CONFIG_FILENAME = "config.yaml"
API_TOKEN_ENV_VAR = "DROIDPM_API_TOKEN"  # noqa: S105 - env var name, not a secret
LOG_LEVEL_ENV_VAR = "DROIDPM_LOG_LEVEL"
DEFAULT_DEVICE_ALIAS = "default"
DEFAULT_CONFIG_SEARCH_PATHS: tuple[Path, ...] = (
    Path("config.yaml"),
    Path("config/config.yaml"),
    Path(__file__).resolve().parent / DEFAULT_CONFIG_FILENAME,
)

logger = logging.getLogger(SERVICE_NAME)
auth_scheme = HTTPBearer(auto_error=False)
AuthCredentials = Annotated[HTTPAuthorizationCredentials | None, Security(auth_scheme)]


class ListFilter(str, Enum):
    INCLUDE_UNINSTALLED = "include-uninstalled"
    ONLY_ENABLED = "only-enabled"
    ONLY_DISABLED = "only-disabled"

    def to_flag(self) -> PmListPacksFlag:
        return {
            ListFilter.INCLUDE_UNINSTALLED: PmListPacksFlag.INCLUDE_UNINSTALLED,
            ListFilter.ONLY_ENABLED: PmListPacksFlag.ONLY_ENABLED,
            ListFilter.ONLY_DISABLED: PmListPacksFlag.ONLY_DISABLED,
        }[self]


class PackageChangeRequest(BaseModel):
    packages: list[str] = Field(min_length=1)
    user: int | None = Field(default=None, ge=0, le=0xFFFF)
    dry_run: bool = False
    currently_disabled: bool = False


def create_app(
    *,
    config_path: str | None = None,
    executor: Executor | None = None,
    api_token: str | None = None,
    config_search_paths: Iterable[str | os.PathLike[str]] | None = None,
) -> FastAPI:
    """Instantiate the FastAPI application."""

    _configure_logging()

    state: dict[str, Any] = {
        "settings": None,
        "executor": executor,
        "config_path": config_path,
        "api_token": api_token or os.getenv(API_TOKEN_ENV_VAR),
        "config_search_paths": tuple(config_search_paths or ()),
    }

    @asynccontextmanager
    async def _lifespan(app: FastAPI):  # pragma: no cover - exercised via tests
        resolved_path = _resolve_config_path(state["config_path"], state["config_search_paths"])
        try:
            settings = load_settings(resolved_path)
        except Exception:
            _log_event("config.load_failed", path=str(resolved_path))
            raise

        state["settings"] = settings
        state["config_path"] = str(resolved_path)
        _log_event("config.loaded", path=str(resolved_path), backend=settings.adb.backend.value)
        try:
            yield
        finally:
            state["settings"] = None
            _log_event("config.unloaded")

    app = FastAPI(
        title="droidpm",
        description="Inspect and manage packages on attached Android devices over adb.",
        version="1.0.0",
        lifespan=_lifespan,
    )

    def _require_settings() -> Settings:
        settings = state.get("settings")
        if settings is None:
            raise HTTPException(status_code=503, detail={"message": "Service not initialized"})
        return settings

    def _command() -> AdbCommand:
        settings = _require_settings()
        executor = state.get("executor")
        if executor is None:
            return settings.command()
        return AdbCommand(settings.adb.backend, executor=executor)

    def _serial(serial: str) -> str | None:
        if serial == DEFAULT_DEVICE_ALIAS:
            return _require_settings().default_device
        return serial

    def _user(user: int | None) -> int:
        return _require_settings().default_user if user is None else user

    async def _authorize(credentials: AuthCredentials) -> None:
        token = state.get("api_token")
        if token is None:
            return
        if credentials is None or credentials.credentials != token:
            raise HTTPException(status_code=401, detail={"message": "Invalid or missing API token"})

    @app.get("/")
    async def root() -> dict[str, Any]:
        settings = state.get("settings")
        return {
            "service": SERVICE_NAME,
            "version": app.version,
            "config_path": state.get("config_path"),
            "backend": str(settings.adb.backend) if settings else None,
            "auth_enabled": bool(state.get("api_token")),
        }

    @app.get("/adb")
    def adb_info() -> dict[str, Any]:
        command = _command()
        backend = command.backend
        try:
            version = command.version()
        except ADBError as exc:
            _log_event("adb.version_failed", reason=str(exc))
            _raise_http(exc)
        return {"service": SERVICE_NAME, "backend": str(backend), "version": version}

    @app.get("/devices")
    def devices() -> dict[str, Any]:
        manager = DeviceManager(_command)
        try:
            records = manager.discover()
        except ADBError as exc:
            _log_event("devices.failed", reason=str(exc))
            _raise_http(exc)
        _log_event("devices.listed", devices=len(records))
        return {"service": SERVICE_NAME, "devices": [asdict(record) for record in records]}

    @app.get("/devices/{serial}")
    def device_info(serial: str) -> dict[str, Any]:
        manager = DeviceManager(_command)
        try:
            info = manager.describe(_serial(serial))
        except ADBError as exc:
            _log_event("device.describe_failed", serial=serial, reason=str(exc))
            _raise_http(exc)
        payload = asdict(info)
        payload["users"] = [user.id for user in info.users]
        return payload

    @app.get("/devices/{serial}/packages")
    def list_packages(
        serial: str,
        state_filter: Annotated[ListFilter | None, Query(alias="state")] = None,
        user: Annotated[int | None, Query(ge=0, le=0xFFFF)] = None,
    ) -> dict[str, Any]:
        flag = state_filter.to_flag() if state_filter else None
        try:
            packages = _command().shell(_serial(serial)).pm().list_packages_sys(flag, _user(user))
        except ADBError as exc:
            _log_event("packages.list_failed", serial=serial, reason=str(exc))
            _raise_http(exc)
        _log_event("packages.listed", serial=serial, count=len(packages))
        return {"serial": serial, "count": len(packages), "packages": packages}

    @app.get("/devices/{serial}/users")
    def list_users(serial: str) -> dict[str, Any]:
        try:
            users = _command().shell(_serial(serial)).pm().list_users()
        except ADBError as exc:
            _log_event("users.list_failed", serial=serial, reason=str(exc))
            _raise_http(exc)
        return {"serial": serial, "users": [user.id for user in users]}

    @app.post("/devices/{serial}/packages/{target}")
    def change_packages(
        serial: str,
        target: PackageState,
        request: PackageChangeRequest,
        _: None = Depends(_authorize),
    ) -> dict[str, Any]:
        actions = PackageActions(_command, serial=_serial(serial))
        current = PackageState.DISABLED if request.currently_disabled else None
        _log_event("packages.change_start", serial=serial, target=target.value, count=len(request.packages))
        results = actions.apply(
            request.packages,
            target,
            user_id=_user(request.user),
            current=current,
            dry_run=request.dry_run,
        )
        failed = sum(1 for result in results if not result.ok)
        _log_event("packages.change_done", serial=serial, target=target.value, failed=failed)
        return {
            "serial": serial,
            "target": target.value,
            "failed": failed,
            "results": [asdict(result) for result in results],
        }

    @app.post("/fleet/packages/{target}")
    async def change_fleet_packages(
        target: PackageState,
        request: PackageChangeRequest,
        _: None = Depends(_authorize),
    ) -> dict[str, Any]:
        session = FleetSession(
            device_manager=DeviceManager(_command),
            actions_factory=lambda serial: PackageActions(_command, serial=serial),
        )
        try:
            outcomes = await session.apply_all(
                request.packages,
                target,
                user_id=_user(request.user),
                dry_run=request.dry_run,
            )
        except ADBError as exc:
            _log_event("fleet.failed", reason=str(exc))
            _raise_http(exc)
        except RuntimeError as exc:
            _log_event("fleet.failed", reason=str(exc))
            raise HTTPException(status_code=400, detail={"message": str(exc)}) from exc

        _log_event("fleet.done", target=target.value, devices=len(outcomes))
        return {
            "service": SERVICE_NAME,
            "target": target.value,
            "devices": [asdict(outcome) for outcome in outcomes],
        }

    return app


def _raise_http(exc: ADBError) -> NoReturn:
    if isinstance(exc, DeviceNotFoundError):
        raise HTTPException(
            status_code=404,
            detail={"message": str(exc), "available": exc.available},
        ) from exc
    if isinstance(exc, (ADBConnectionError, CommandFailedError)):
        raise HTTPException(status_code=502, detail={"message": str(exc)}) from exc
    raise HTTPException(status_code=500, detail={"message": str(exc)}) from exc


def _resolve_config_path(
    override: str | None = None,
    extra_search_paths: Iterable[str | os.PathLike[str]] | None = None,
) -> Path:
    candidate = override or os.getenv(CONFIG_ENV_VAR)
    if candidate:
        path = _normalize_path(candidate)
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found at {path}")
        return path

    search_candidates: list[Path] = []
    env_search = os.getenv(CONFIG_SEARCH_PATHS_ENV_VAR)
    if env_search:
        for raw in env_search.split(os.pathsep):
            cleaned = raw.strip()
            if cleaned:
                search_candidates.append(Path(cleaned))

    if extra_search_paths:
        for configured in extra_search_paths:
            search_candidates.append(Path(str(configured)))

    search_candidates.extend(DEFAULT_CONFIG_SEARCH_PATHS)

    evaluated_paths: list[Path] = []
    for candidate_path in search_candidates:
        path = _normalize_path(candidate_path)
        evaluated_paths.append(path)
        if path.exists():
            return path

    searched = ", ".join(str(p) for p in evaluated_paths)
    raise FileNotFoundError(
        (
            "Unable to locate configuration file. Set "
            f"{CONFIG_ENV_VAR} or place config.yaml in one of: {searched}"
        )
    )


def _normalize_path(candidate: str | os.PathLike[str]) -> Path:
    path = Path(candidate).expanduser()
    if not path.is_absolute():
        path = Path.cwd() / path
    return path


def _configure_logging() -> None:
    level_name = os.getenv(LOG_LEVEL_ENV_VAR, "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    logger.setLevel(level)
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=level, format="%(message)s")


def _log_event(event: str, **fields: Any) -> None:
    record = {"event": event, "service": SERVICE_NAME, **fields}
    logger.info(json.dumps(record, sort_keys=True))
