"""Analysis orchestrator for batch scanning of installed packages.

Drives the per-package pipeline over a package list:

    1. **Extraction**: credential extraction from the APK archive, run on the
       worker pool so archives of one batch are scanned in parallel.
    2. **Remote Config probe**: when both App IDs and API keys were found.
    3. **Supabase probe**: when both project URLs and keys were found.
    4. **Persistence**: the finished ``PackageAnalysis`` is written to the
       result cache.

Packages are processed in fixed-size batches. Batches run strictly one after
another; the packages of a batch run concurrently and aggregate progress is
published once the whole batch has finished. Results already in the cache
are not analyzed again by ``load_and_resume``.

Typical usage:
    The orchestrator is created once per ``AnalysisContext``. The FastAPI
    lifespan builds it at start-up and routers schedule ``load_and_resume``,
    ``rescan_all`` and ``rescan_one`` as background tasks.
"""

import asyncio
import logging
from collections.abc import Sequence
from enum import Enum
from typing import TypeVar

from rcspy.models.schemas import (
    AnalysisProgress,
    AnalysisStage,
    AppFilter,
    PackageAnalysis,
    PackageInfo,
)
from rcspy.services.analyzers.credential_extractor import CredentialExtractor
from rcspy.services.context import AnalysisContext
from rcspy.services.filters import is_really_vulnerable, matches_filter
from rcspy.services.package_source import PackageSource
from rcspy.services.remote_config_service import RemoteConfigService
from rcspy.services.supabase_service import SupabaseService

logger = logging.getLogger(__name__)

T = TypeVar("T")

NO_APK_PATH = "No APK path"


class OrchestratorState(str, Enum):
    """Run state of the orchestrator."""

    IDLE = "idle"
    LOADING_PACKAGES = "loading_packages"
    SCANNING = "scanning"


class AnalysisInProgressError(RuntimeError):
    """Raised when a run is requested while another one is active."""


def create_batches(items: Sequence[T], batch_size: int) -> list[list[T]]:
    """Split ``items`` into consecutive batches of at most ``batch_size``."""
    if batch_size < 1:
        raise ValueError("batch_size must be at least 1")
    return [list(items[i:i + batch_size]) for i in range(0, len(items), batch_size)]


class AnalysisOrchestrator:
    """Runs the extraction and probe pipeline over the installed packages.

    Attributes:
        context: Shared cache, HTTP client and worker pool.
        source: Supplier of the installed package list.
        extractor: Credential extractor.
        remote_config: Firebase Remote Config probe.
        supabase: Supabase probe.
        batches_run: Number of batches processed since creation.
    """

    def __init__(
        self,
        context: AnalysisContext,
        source: PackageSource,
        extractor: CredentialExtractor | None = None,
        remote_config: RemoteConfigService | None = None,
        supabase: SupabaseService | None = None,
    ):
        """Initialize the orchestrator.

        Probes default to instances bound to the context's HTTP client, so
        the context must be opened before the first run.
        """
        self.context = context
        self.source = source
        self.settings = context.settings
        self.extractor = extractor or CredentialExtractor()
        self._remote_config = remote_config
        self._supabase = supabase
        self.batches_run = 0

        self._packages: list[PackageInfo] = []
        self._records: dict[str, PackageAnalysis] = {}
        self._stages: dict[str, AnalysisStage] = {}
        self._cached_ids: set[str] = set()
        self._progress = AnalysisProgress()
        self._state = OrchestratorState.IDLE
        self._is_analyzing = False
        self._run_reserved = False
        self._new_packages_count = 0

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    @property
    def remote_config(self) -> RemoteConfigService:
        if self._remote_config is None:
            self._remote_config = RemoteConfigService(self.context.client, self.settings)
        return self._remote_config

    @property
    def supabase(self) -> SupabaseService:
        if self._supabase is None:
            self._supabase = SupabaseService(self.context.client, self.settings)
        return self._supabase

    @property
    def progress(self) -> AnalysisProgress:
        return self._progress

    @property
    def state(self) -> OrchestratorState:
        return self._state

    @property
    def is_analyzing(self) -> bool:
        return self._is_analyzing

    @property
    def new_packages_count(self) -> int:
        return self._new_packages_count

    @property
    def packages(self) -> list[PackageInfo]:
        return list(self._packages)

    @property
    def records(self) -> dict[str, PackageAnalysis]:
        return dict(self._records)

    def get_record(self, package_id: str) -> PackageAnalysis | None:
        return self._records.get(package_id)

    def stage_of(self, package_id: str) -> AnalysisStage:
        """Return the in-flight stage of a package (``done`` once a record exists)."""
        if package_id in self._stages:
            return self._stages[package_id]
        return AnalysisStage.DONE if package_id in self._records else AnalysisStage.PENDING

    def filtered(self, app_filter: AppFilter) -> list[tuple[PackageInfo, PackageAnalysis | None]]:
        """Return the known packages matching ``app_filter`` with their records."""
        return [
            (package, self._records.get(package.package_id))
            for package in self._packages
            if matches_filter(self._records.get(package.package_id), app_filter, self.settings)
        ]

    def is_vulnerable(self, record: PackageAnalysis) -> bool:
        return is_really_vulnerable(record, self.settings)

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    def reserve_run(self) -> None:
        """Claim the run flag ahead of a run that will start later.

        The next run started consumes the reservation; ``release_run`` drops
        it if that run never starts.

        Raises:
            AnalysisInProgressError: If a run is active or already reserved.
        """
        if self._is_analyzing:
            raise AnalysisInProgressError("An analysis run is already in progress")
        self._is_analyzing = True
        self._run_reserved = True

    def release_run(self) -> None:
        """Drop a reservation that was not consumed by a run."""
        if self._run_reserved:
            self._run_reserved = False
            self._is_analyzing = False

    def _begin_run(self, state: OrchestratorState) -> None:
        if self._run_reserved:
            self._run_reserved = False
        elif self._is_analyzing:
            raise AnalysisInProgressError("An analysis run is already in progress")
        self._is_analyzing = True
        self._state = state

    def _end_run(self) -> None:
        self._is_analyzing = False
        self._state = OrchestratorState.IDLE

    async def _load_packages(self) -> None:
        packages = await self.source.list_installed_packages()
        self._packages = sorted(packages, key=lambda p: p.sort_key)

    async def load_and_resume(self) -> AnalysisProgress:
        """Load cached results and analyze every package not analyzed yet.

        Progress counters are seeded from the cached records, so only new
        packages move them.

        Raises:
            AnalysisInProgressError: If another run is active.
        """
        self._begin_run(OrchestratorState.LOADING_PACKAGES)
        try:
            cached = self.context.cache.load_all()
            analyzed_ids = self.context.cache.analyzed_ids()
            await self._load_packages()

            self._records = dict(cached)
            self._cached_ids = set(cached)
            self._stages.clear()

            new_packages = [p for p in self._packages if p.package_id not in analyzed_ids]
            self._new_packages_count = len(new_packages)

            installed_records = [
                cached[p.package_id]
                for p in self._packages
                if p.package_id in analyzed_ids
            ]
            seeded = AnalysisProgress.from_records(
                total=len(self._packages),
                records=installed_records,
                cached=len(cached),
                is_complete=not new_packages,
                is_vulnerable=self.is_vulnerable,
            )
            self._progress = seeded.model_copy(update={
                "completed": len(self._packages) - len(new_packages),
            })
            logger.info(
                f"Loaded {len(self._packages)} packages, {len(cached)} cached results, "
                f"{len(new_packages)} new packages"
            )

            if new_packages:
                self._state = OrchestratorState.SCANNING
                await self._scan_batches(new_packages, full=False)
            return self._progress
        finally:
            self._end_run()

    async def rescan_all(self) -> AnalysisProgress:
        """Clear the cache and analyze every known package from scratch.

        Raises:
            AnalysisInProgressError: If another run is active.
        """
        self._begin_run(OrchestratorState.SCANNING)
        try:
            if not self._packages:
                self._state = OrchestratorState.LOADING_PACKAGES
                await self._load_packages()
                self._state = OrchestratorState.SCANNING

            await self.context.cache.clear_all()
            self._records.clear()
            self._stages.clear()
            self._cached_ids.clear()
            self._new_packages_count = len(self._packages)

            await self._scan_batches(self._packages, full=True)
            return self._progress
        finally:
            self._end_run()

    async def rescan_one(self, package_id: str) -> PackageAnalysis:
        """Analyze one package again and recompute progress from all records.

        Raises:
            KeyError: If ``package_id`` is not a known package.
            AnalysisInProgressError: If another run is active.
        """
        package = next((p for p in self._packages if p.package_id == package_id), None)
        if package is None:
            raise KeyError(package_id)

        self._begin_run(OrchestratorState.SCANNING)
        try:
            await self.context.cache.remove(package_id)
            self._records.pop(package_id, None)
            self._cached_ids.discard(package_id)
            self._stages[package_id] = AnalysisStage.EXTRACTING

            record = await self._analyze_package(package)

            known_ids = {p.package_id for p in self._packages}
            self._progress = AnalysisProgress.from_records(
                total=len(self._packages),
                records=[r for pid, r in self._records.items() if pid in known_ids],
                cached=len(self._cached_ids),
                is_complete=True,
                is_vulnerable=self.is_vulnerable,
            )
            return record
        finally:
            self._end_run()

    async def _scan_batches(self, packages: list[PackageInfo], full: bool) -> None:
        """Analyze ``packages`` in sequential batches of concurrent packages.

        Args:
            packages: Packages to analyze.
            full: Start counters from zero instead of the current progress.
        """
        start = AnalysisProgress() if full else self._progress
        completed = start.completed
        with_firebase = start.with_firebase
        with_supabase = start.with_supabase
        vulnerable = start.vulnerable
        total = len(self._packages)

        self._progress = AnalysisProgress(
            total=total,
            completed=completed,
            with_firebase=with_firebase,
            with_supabase=with_supabase,
            vulnerable=vulnerable,
            cached=len(self._cached_ids),
        )

        batches = create_batches(packages, self.settings.max_parallel_analysis)
        logger.info(f"Analyzing {len(packages)} packages in {len(batches)} batches")

        for index, batch in enumerate(batches, start=1):
            for package in batch:
                self._stages[package.package_id] = AnalysisStage.PENDING

            results = await asyncio.gather(*(self._analyze_package(p) for p in batch))

            for record in results:
                completed += 1
                if record.has_firebase:
                    with_firebase += 1
                if record.has_supabase:
                    with_supabase += 1
                if self.is_vulnerable(record):
                    vulnerable += 1

            self.batches_run += 1
            self._progress = AnalysisProgress(
                total=total,
                completed=completed,
                with_firebase=with_firebase,
                with_supabase=with_supabase,
                vulnerable=vulnerable,
                cached=len(self._cached_ids),
            )
            logger.debug(f"Batch {index}/{len(batches)} done ({completed}/{total})")

        self._new_packages_count = 0
        self._progress = self._progress.model_copy(update={"is_complete": True})
        logger.info(f"Analysis complete: {vulnerable} vulnerable of {completed} packages")

    async def _analyze_package(self, package: PackageInfo) -> PackageAnalysis:
        """Run the pipeline for one package and persist the outcome.

        Never raises: any failure becomes an error-tagged record.
        """
        package_id = package.package_id
        try:
            record = await self._run_pipeline(package)
        except Exception as e:
            logger.error(f"Analysis of {package_id} failed: {e}")
            record = PackageAnalysis.failed(package_id, str(e) or type(e).__name__)

        self._records[package_id] = record
        self._stages.pop(package_id, None)

        try:
            await self.context.cache.save(record)
        except (OSError, RuntimeError) as e:
            logger.error(f"Failed to cache result of {package_id}: {e}")

        return record

    async def _run_pipeline(self, package: PackageInfo) -> PackageAnalysis:
        package_id = package.package_id
        if not package.installer_path:
            return PackageAnalysis.failed(package_id, NO_APK_PATH)

        self._stages[package_id] = AnalysisStage.EXTRACTING
        credentials = await self.extractor.analyze(package.installer_path, self.context.pool)
        if credentials.error is not None:
            return PackageAnalysis(
                package_id=package_id,
                credentials=credentials,
                error=credentials.error,
            )

        remote_config = None
        if credentials.can_probe_firebase:
            self._stages[package_id] = AnalysisStage.PROBING_CONFIG
            remote_config = await self.remote_config.check_multiple_combinations(
                sorted(credentials.app_ids),
                sorted(credentials.api_keys),
            )

        supabase = None
        if credentials.can_probe_supabase:
            self._stages[package_id] = AnalysisStage.PROBING_BACKEND
            supabase = await self.supabase.check_multiple_combinations(
                sorted(credentials.project_urls),
                sorted(credentials.backend_keys),
            )

        return PackageAnalysis(
            package_id=package_id,
            credentials=credentials,
            remote_config=remote_config,
            supabase=supabase,
        )
