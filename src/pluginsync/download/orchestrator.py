"""Drive a complete plugin download run.

A run downloads the root manifest's plugins, then the members of any
extension packs found among them, then ``extensionDependencies`` until no
new ids appear. Every id is attempted at most once per run.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Callable, Iterable, List, Optional

from pluginsync.config.models import DownloadOptions, RootManifest
from pluginsync.registry.openvsx import OpenVSXClient

from .downloader import Downloader
from .errors import PluginSyncError, StoreError
from .lockfile import Lockfile
from .models import DownloadReport, Failure, Outcome, Phase, PluginReference, Success
from .rate_limiter import RateLimiter
from .resolver import ReferenceResolver, detect_target_platform
from .scanner import ManifestScanner
from .store import ArtifactStore
from .transport import HttpTransport

logger = logging.getLogger(__name__)


class PluginDownloadOrchestrator:
    """Runs the download phases for one root manifest.

    Collaborators default to the real implementations; tests inject
    fakes for the registry, transport, extractor, rate limiter and sleep.
    Set ``cancel_event`` to stop starting new downloads.
    """

    def __init__(
        self,
        manifest: RootManifest,
        options: DownloadOptions,
        base_dir: Path,
        registry=None,
        transport=None,
        extractor=None,
        rate_limiter: RateLimiter | None = None,
        cancel_event: threading.Event | None = None,
        sleep: Callable[[float], None] | None = None,
        on_phase: Callable[[Phase], None] | None = None,
    ) -> None:
        self.manifest = manifest
        self.options = options
        self.base_dir = Path(base_dir)
        self.plugins_dir = self.base_dir / manifest.plugins_dir
        self.lockfile_path = self.base_dir / options.lockfile_name
        self.target_platform = options.target_platform or detect_target_platform()
        self.rate_limiter = rate_limiter or RateLimiter(options.rate_limit)
        self.cancel_event = cancel_event or threading.Event()
        self.store = ArtifactStore(self.plugins_dir, packed=options.packed, extractor=extractor)
        self.scanner = ManifestScanner(self.plugins_dir, manifest.exclude_ids)

        self._registry = registry
        self._transport = transport
        self._sleep = sleep
        self._on_phase = on_phase
        self._seen: set[str] = set()
        self._seen_lock = threading.Lock()
        self.phase = Phase.INIT

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def _enter(self, report: DownloadReport, phase: Phase) -> None:
        self.phase = phase
        report.phases.append(phase)
        logger.debug(f"Phase: {phase.value}")
        if self._on_phase is not None:
            self._on_phase(phase)

    def _claim(self, refs: Iterable[PluginReference]) -> List[PluginReference]:
        """Keep references whose id has not been attempted yet, marking them."""
        claimed = []
        with self._seen_lock:
            for ref in refs:
                if ref.id in self._seen:
                    continue
                self._seen.add(ref.id)
                claimed.append(ref)
        return claimed

    def _derived_references(self, ids: Iterable[str]) -> List[PluginReference]:
        with self._seen_lock:
            fresh = sorted(set(ids) - self._seen)
        return [PluginReference(id=plugin_id, spec=plugin_id) for plugin_id in fresh]

    def _process(
        self,
        ref: PluginReference,
        resolver: ReferenceResolver,
        downloader: Downloader,
    ) -> Optional[Outcome]:
        if self.cancelled:
            return None
        existing = self.store.find_existing(ref.id)
        if existing is not None:
            logger.debug(f"{ref.id}: already present at {existing}")
            return Success(id=ref.id)
        try:
            resolved = resolver.resolve(ref)
            return downloader.download(resolved)
        except PluginSyncError as e:
            logger.error(f"{ref.id}: {e}")
            return Failure(id=ref.id, reason=str(e))
        except Exception as e:
            logger.exception(f"Unexpected error while downloading {ref.id}")
            return Failure(id=ref.id, reason=f"{type(e).__name__}: {e}")

    def _download_wave(
        self,
        refs: Iterable[PluginReference],
        resolver: ReferenceResolver,
        downloader: Downloader,
    ) -> List[Outcome]:
        claimed = self._claim(refs)
        if not claimed:
            return []

        if not self.options.parallel or len(claimed) == 1:
            outcomes = [self._process(ref, resolver, downloader) for ref in claimed]
        else:
            workers = self.options.max_workers or len(claimed)
            with ThreadPoolExecutor(
                max_workers=workers, thread_name_prefix="pluginsync-download"
            ) as pool:
                futures = [
                    pool.submit(self._process, ref, resolver, downloader)
                    for ref in claimed
                ]
                outcomes = [future.result() for future in futures]
        return [o for o in outcomes if o is not None]

    def _root_references(self, report: DownloadReport) -> List[PluginReference]:
        cached = set(self.store.cached_pack_ids())
        refs = []
        for plugin_id, spec in (self.manifest.plugins or {}).items():
            if plugin_id in cached:
                logger.info(f"{plugin_id}: extension pack already cached, skipping")
                if self._claim([PluginReference(id=plugin_id, spec=spec)]):
                    report.outcomes.append(Success(id=plugin_id))
                continue
            refs.append(PluginReference(id=plugin_id, spec=spec))
        return refs

    def _cache_packs(self, pack_paths: Iterable[Path]) -> None:
        for path in pack_paths:
            try:
                self.store.cache_extension_pack(path)
            except StoreError as e:
                logger.warning(str(e))

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def _run_phases(
        self,
        report: DownloadReport,
        resolver: ReferenceResolver,
        downloader: Downloader,
    ) -> None:
        self._enter(report, Phase.DOWNLOADING_ROOT)
        roots = self._root_references(report)
        report.outcomes.extend(self._download_wave(roots, resolver, downloader))
        if self.cancelled:
            return

        self._enter(report, Phase.SCANNING_PACKS)
        packs = self.scanner.scan_extension_packs()
        if packs:
            logger.info(f"Found {len(packs)} extension pack(s)")
            self._cache_packs(packs)
        pack_refs = self._derived_references(
            member for members in packs.values() for member in members
        )
        if pack_refs:
            self._enter(report, Phase.DOWNLOADING_PACKS)
            report.outcomes.extend(self._download_wave(pack_refs, resolver, downloader))

        max_rounds = self.options.max_dependency_rounds
        for _ in range(max_rounds):
            if self.cancelled:
                return
            self._enter(report, Phase.SCANNING_DEPENDENCIES)
            dep_refs = self._derived_references(self.scanner.scan_dependencies())
            if not dep_refs:
                return
            self._enter(report, Phase.DOWNLOADING_DEPENDENCIES)
            report.outcomes.extend(self._download_wave(dep_refs, resolver, downloader))
        logger.warning(
            f"Stopped resolving dependencies after {max_rounds} rounds; "
            "some transitive dependencies may be missing"
        )

    def run(self) -> DownloadReport:
        """Execute every phase and return the aggregated report."""
        report = DownloadReport(
            ignore_errors=self.options.ignore_errors,
            lockfile_path=self.lockfile_path,
        )
        self._enter(report, Phase.INIT)
        lockfile = Lockfile.load(self.lockfile_path)

        registry = self._registry
        owned_registry = None
        if registry is None:
            registry = owned_registry = OpenVSXClient(
                api_url=self.options.api_url, timeout=self.options.request_timeout
            )
        transport = self._transport
        owned_transport = None
        if transport is None:
            transport = owned_transport = HttpTransport(timeout=self.options.request_timeout)

        resolver = ReferenceResolver(
            registry=registry,
            lockfile=lockfile,
            rate_limiter=self.rate_limiter,
            target_platform=self.target_platform,
            api_version=self.options.api_version,
        )
        downloader = Downloader(
            transport=transport,
            store=self.store,
            lockfile=lockfile,
            rate_limiter=self.rate_limiter,
            max_attempts=self.options.max_attempts,
            retry_delay=self.options.retry_delay,
            exponential_backoff=self.options.exponential_backoff,
            cancel_event=self.cancel_event,
            sleep=self._sleep,
        )

        logger.info(
            f"Downloading {len(self.manifest.plugins or {})} plugin(s) into "
            f"{self.plugins_dir} for {self.target_platform}"
        )
        try:
            self._run_phases(report, resolver, downloader)
        finally:
            if owned_registry is not None:
                owned_registry.close()
            if owned_transport is not None:
                owned_transport.close()
            try:
                lockfile.flush(self.lockfile_path)
            except OSError as e:
                report.lockfile_error = f"Cannot write lockfile {self.lockfile_path}: {e}"

        self._enter(report, Phase.REPORTING)
        report.cancelled = self.cancelled
        if report.cancelled:
            logger.warning("Download run cancelled")
        if report.lockfile_error:
            logger.error(report.lockfile_error)
        for failure in report.failures:
            logger.error(f"Failed: {failure.id}: {failure.reason}")
        logger.info(
            f"{len(report.succeeded)} plugin(s) present, "
            f"{len(report.downloaded)} downloaded, {len(report.failures)} failed"
        )

        self._enter(report, Phase.DONE)
        return report
