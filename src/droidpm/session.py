"""Runs package actions on several devices at once."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Callable, Iterable, Protocol

from .actions import ActionResult, PackageActions, PackageState
from .executors import ADBError
from .parsers import DeviceRecord


class DeviceManagerProtocol(Protocol):
    def discover(self, *, ready_only: bool = False) -> list[DeviceRecord]:
        ...


ActionsFactory = Callable[[str], PackageActions]


@dataclass(slots=True)
class DeviceOutcome:
    serial: str
    results: list[ActionResult]
    error: str | None = None


class FleetSession:
    """Applies the same change to every ready device.

    Each device is driven by its own builders in a worker thread; nothing is
    shared between devices.
    """

    def __init__(
        self,
        *,
        device_manager: DeviceManagerProtocol,
        actions_factory: ActionsFactory,
    ) -> None:
        self._device_manager = device_manager
        self._actions_factory = actions_factory

    async def ready_serials(self) -> list[str]:
        records = await asyncio.to_thread(self._device_manager.discover, ready_only=True)
        if not records:
            raise RuntimeError("No ADB devices detected")
        return [record.serial for record in records]

    async def apply_all(
        self,
        packages: Iterable[str],
        target: PackageState,
        *,
        user_id: int = 0,
        dry_run: bool = False,
        serials: Iterable[str] | None = None,
    ) -> list[DeviceOutcome]:
        if serials is None:
            serials = await self.ready_serials()
        packages = list(packages)

        outcomes = await asyncio.gather(
            *(
                self._apply_one(serial, packages, target, user_id=user_id, dry_run=dry_run)
                for serial in serials
            )
        )
        return list(outcomes)

    async def _apply_one(
        self,
        serial: str,
        packages: list[str],
        target: PackageState,
        *,
        user_id: int,
        dry_run: bool,
    ) -> DeviceOutcome:
        actions = self._actions_factory(serial)
        try:
            results = await asyncio.to_thread(
                actions.apply,
                packages,
                target,
                user_id=user_id,
                dry_run=dry_run,
            )
        except ADBError as exc:
            return DeviceOutcome(serial=serial, results=[], error=str(exc))
        stopped = next((result for result in results if not result.attempted), None)
        return DeviceOutcome(serial=serial, results=results, error=stopped.output if stopped else None)
