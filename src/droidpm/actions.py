"""Package state changes, one package-manager command per package."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable

from .adb import AdbCommand, CommandFailedError, check_user_id
from .executors import ADBError
from .package_id import is_known_package

logger = logging.getLogger(__name__)

CommandFactory = Callable[[], AdbCommand]


class PackageState(Enum):
    ENABLED = "enabled"
    DISABLED = "disabled"
    UNINSTALLED = "uninstalled"


@dataclass(slots=True, frozen=True)
class ActionResult:
    package: str
    command: str | None
    ok: bool
    output: str
    dry_run: bool = False
    attempted: bool = True


def state_change_command(
    package: str,
    target: PackageState,
    user_id: int,
    *,
    current: PackageState | None = None,
) -> str:
    """Return the single pm sub-operation moving ``package`` to ``target``.

    Enabling defaults to ``install-existing`` which restores a package removed
    for the user; pass ``current=PackageState.DISABLED`` to use ``pm enable``.
    """

    user_id = check_user_id(user_id)
    if target is PackageState.UNINSTALLED:
        return f"pm uninstall -k --user {user_id} {package}"
    if target is PackageState.DISABLED:
        return f"pm disable-user --user {user_id} {package}"
    if current is PackageState.DISABLED:
        return f"pm enable --user {user_id} {package}"
    return f"cmd package install-existing --user {user_id} {package}"


class PackageActions:
    """Applies a state change to several packages on one device.

    Each package gets its own command and its own result; a failure on one
    package does not stop the others. A connection failure or a vanished device
    ends the batch: the package it hit is reported as failed and every package
    after it as not attempted.
    """

    def __init__(self, commands: CommandFactory, *, serial: str | None = None) -> None:
        self._commands = commands
        self._serial = serial

    def apply(
        self,
        packages: Iterable[str],
        target: PackageState,
        *,
        user_id: int = 0,
        current: PackageState | None = None,
        dry_run: bool = False,
    ) -> list[ActionResult]:
        check_user_id(user_id)
        results: list[ActionResult] = []
        packages = list(packages)
        for index, package in enumerate(packages):
            if not is_known_package(package):
                results.append(
                    ActionResult(package=package, command=None, ok=False, output="Invalid package name")
                )
                continue

            command = state_change_command(package, target, user_id, current=current)
            if dry_run:
                results.append(
                    ActionResult(package=package, command=command, ok=True, output="", dry_run=True)
                )
                continue

            try:
                output = self._commands().shell(self._serial).raw(command)
            except CommandFailedError as exc:
                logger.warning("%s failed for %s: %s", target.value, package, exc)
                results.append(ActionResult(package=package, command=command, ok=False, output=str(exc)))
                continue
            except ADBError as exc:
                logger.error("%s stopped at %s: %s", target.value, package, exc)
                results.append(ActionResult(package=package, command=command, ok=False, output=str(exc)))
                results.extend(_not_attempted(packages[index + 1 :], str(exc)))
                break
            results.append(ActionResult(package=package, command=command, ok=_succeeded(output), output=output))
        return results


def _not_attempted(packages: list[str], reason: str) -> list[ActionResult]:
    return [
        ActionResult(
            package=package,
            command=None,
            ok=False,
            output=f"Not attempted: {reason}",
            attempted=False,
        )
        for package in packages
    ]


def _succeeded(output: str) -> bool:
    # pm exits 0 on some failures and reports them as text instead.
    lowered = output.lower()
    return not (lowered.startswith("failure") or lowered.startswith("error") or "exception" in lowered)
