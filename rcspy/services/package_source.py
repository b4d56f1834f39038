"""Sources of installed packages.

The orchestrator only depends on ``PackageSource.list_installed_packages``.
``DirectoryPackageSource`` treats every ``*.apk`` file in a directory as an
installed package; ``StaticPackageSource`` serves a fixed list.
"""

import asyncio
import logging
from pathlib import Path
from typing import Protocol

from rcspy.models.schemas import PackageInfo

logger = logging.getLogger(__name__)


class PackageSource(Protocol):
    """Supplies the packages to analyze."""

    async def list_installed_packages(self) -> list[PackageInfo]:
        ...


class StaticPackageSource:
    """Serves a fixed package list."""

    def __init__(self, packages: list[PackageInfo]):
        self.packages = list(packages)

    async def list_installed_packages(self) -> list[PackageInfo]:
        return list(self.packages)


class DirectoryPackageSource:
    """Lists ``*.apk`` archives found directly under a directory.

    The archive file stem is used as the package id. An icon is picked up
    from a sibling ``<stem>.png`` when present.
    """

    def __init__(self, root: Path):
        self.root = Path(root)

    def _scan(self) -> list[PackageInfo]:
        if not self.root.is_dir():
            logger.warning(f"Package directory does not exist: {self.root}")
            return []

        packages: list[PackageInfo] = []
        for apk in sorted(self.root.glob("*.apk")):
            icon = apk.with_suffix(".png")
            packages.append(PackageInfo(
                id=apk.stem,
                display_name=apk.stem,
                icon_bytes=icon.read_bytes() if icon.is_file() else None,
                installer_path=str(apk),
            ))
        return packages

    async def list_installed_packages(self) -> list[PackageInfo]:
        return await asyncio.to_thread(self._scan)
